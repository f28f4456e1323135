"""Upcoming client birthdays for the dashboard birthday widget."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Optional

from agents.records import Client, coerce_date

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7
# Years before this are placeholders, not real birth years.
MIN_MEANINGFUL_YEAR = 1900


@dataclass(frozen=True)
class UpcomingBirthday:
    client: Client
    next_date: date
    days_until: int
    turning: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "client_id": self.client.id,
            "client_name": self.client.full_name,
            "phone": self.client.phone,
            "email": self.client.email,
            "next_date": self.next_date.isoformat(),
            "days_until": self.days_until,
            "turning": self.turning,
        }


def _anniversary(birth_date: date, year: int) -> date:
    try:
        return birth_date.replace(year=year)
    except ValueError:
        # 29 February outside leap years
        return date(year, 2, 28)


def next_birthday(birth_date: date, today: date) -> date:
    """Return the first anniversary of ``birth_date`` on or after ``today``."""

    candidate = _anniversary(birth_date, today.year)
    if candidate < today:
        candidate = _anniversary(birth_date, today.year + 1)
    return candidate


def upcoming_birthdays(
    clients: Iterable[Client],
    today: date,
    days: int = DEFAULT_WINDOW_DAYS,
) -> List[UpcomingBirthday]:
    """Clients whose birthday falls within ``days`` days from ``today``."""

    if days < 0:
        raise ValueError("days must be zero or positive")

    horizon = today + timedelta(days=days)
    upcoming: List[UpcomingBirthday] = []
    for client in clients or ():
        if client.birth_date in (None, ""):
            continue
        try:
            born = coerce_date(client.birth_date)
        except ValueError as exc:
            logger.debug("Ignoring birth date of client %s: %s", client.id, exc)
            continue

        next_date = next_birthday(born, today)
        if next_date > horizon:
            continue

        turning: Optional[int] = None
        if MIN_MEANINGFUL_YEAR <= born.year <= today.year:
            turning = next_date.year - born.year
        upcoming.append(
            UpcomingBirthday(
                client=client,
                next_date=next_date,
                days_until=(next_date - today).days,
                turning=turning,
            )
        )

    upcoming.sort(key=lambda entry: (entry.next_date, entry.client.full_name.lower()))
    return upcoming


__all__ = ["DEFAULT_WINDOW_DAYS", "UpcomingBirthday", "next_birthday", "upcoming_birthdays"]
