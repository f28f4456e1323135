"""Snapshot assembly: gathers every input the reminder feed needs."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterable, List, Mapping, Protocol, Sequence, Set, TypeVar, Union

from agents.records import Appointment, Client, Quote
from agents.reminders import ReminderSnapshot

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT")


class ShopDataClient(Protocol):
    """Reads the reminder feed relies on."""

    def get_appointments_by_date(self, day: Union[date, str]) -> Sequence[Mapping[str, Any]]:
        """Return the appointment rows booked on *day*."""

    def get_all_quotes(self) -> Sequence[Mapping[str, Any]]:
        """Return every quote row."""

    def get_all_clients(self) -> Sequence[Mapping[str, Any]]:
        """Return every client row."""

    def get_sent_notification_keys(self) -> Set[str]:
        """Return the keys of reminders already delivered."""


def parse_rows(
    rows: Iterable[Any],
    parse: Callable[[Mapping[str, Any]], RecordT],
    kind: str,
) -> List[RecordT]:
    """Parse ``rows`` with ``parse``, skipping the ones it rejects."""

    records: List[RecordT] = []
    for row in rows or ():
        try:
            records.append(parse(row))
        except ValueError as exc:
            logger.warning("Skipping invalid %s row %r: %s", kind, row, exc)
    return records


class SnapshotAssembler:
    """Fetches the reminder inputs concurrently and builds a snapshot.

    Nothing is returned until every read has completed; a failed read
    propagates instead of producing a partial snapshot.
    """

    def __init__(self, client: ShopDataClient, *, max_workers: int = 4) -> None:
        self._client = client
        self._max_workers = max(1, max_workers)

    def assemble(self, now: datetime) -> ReminderSnapshot:
        today = now.date()
        tomorrow = today + timedelta(days=1)

        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="snapshot") as pool:
            today_future = pool.submit(self._client.get_appointments_by_date, today)
            tomorrow_future = pool.submit(self._client.get_appointments_by_date, tomorrow)
            quotes_future = pool.submit(self._client.get_all_quotes)
            clients_future = pool.submit(self._client.get_all_clients)
            sent_future = pool.submit(self._client.get_sent_notification_keys)

            appointment_rows = list(today_future.result()) + list(tomorrow_future.result())
            quote_rows = quotes_future.result()
            client_rows = clients_future.result()
            sent_keys = set(sent_future.result() or ())

        snapshot = ReminderSnapshot(
            appointments=parse_rows(appointment_rows, Appointment.from_row, "appointment"),
            quotes=parse_rows(quote_rows, Quote.from_row, "quote"),
            clients=parse_rows(client_rows, Client.from_row, "client"),
            sent_log=frozenset(sent_keys),
        )
        logger.debug(
            "Snapshot for %s: %d appointments, %d quotes, %d clients, %d sent keys",
            today.isoformat(),
            len(snapshot.appointments),
            len(snapshot.quotes),
            len(snapshot.clients),
            len(sent_keys),
        )
        return snapshot
