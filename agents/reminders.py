"""Reminder derivation for the workshop dashboard.

Scans a snapshot of appointments, quotes and clients and derives the list of
reminders still waiting to be sent: appointments today and tomorrow, quotes
recently sent, completed jobs due a feedback request, and birthdays.
Reminders whose key is already in the sent-notification log are dropped and
the rest are ranked by priority, then by recency.

The derivation is a pure function of the snapshot and ``now``. It never
writes to the sent log; delivery code records ``ReminderCandidate.key`` once
a message has actually gone out.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import (
    Any,
    Callable,
    Container,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
)

from agents.records import (
    Appointment,
    AppointmentStatus,
    Client,
    Quote,
    QuoteStatus,
    coerce_date,
    coerce_timestamp,
)

logger = logging.getLogger(__name__)

QUOTE_FOLLOWUP_MAX_HOURS = 48
FEEDBACK_MIN_HOURS = 48
FEEDBACK_MAX_HOURS = 72


class ReminderType(str, Enum):
    TODAY_APPOINTMENT = "today_appointment"
    TOMORROW_APPOINTMENT = "tomorrow_appointment"
    QUOTE_FOLLOWUP = "quote_followup"
    FEEDBACK_REQUEST = "feedback_request"
    BIRTHDAY = "birthday"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PRIORITY_RANK: Dict[Priority, int] = {
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}

PRIORITY_BY_TYPE: Dict[ReminderType, Priority] = {
    ReminderType.TODAY_APPOINTMENT: Priority.HIGH,
    ReminderType.TOMORROW_APPOINTMENT: Priority.HIGH,
    ReminderType.QUOTE_FOLLOWUP: Priority.MEDIUM,
    ReminderType.FEEDBACK_REQUEST: Priority.MEDIUM,
    ReminderType.BIRTHDAY: Priority.MEDIUM,
}

KEY_PREFIX_BY_TYPE: Dict[ReminderType, str] = {
    ReminderType.TODAY_APPOINTMENT: "reminder_today",
    ReminderType.TOMORROW_APPOINTMENT: "reminder_tomorrow",
    ReminderType.QUOTE_FOLLOWUP: "quote_sent",
    ReminderType.FEEDBACK_REQUEST: "feedback",
    ReminderType.BIRTHDAY: "birthday",
}

URGENCY_LABEL_BY_TYPE: Dict[ReminderType, str] = {
    ReminderType.TODAY_APPOINTMENT: "TODAY",
    ReminderType.TOMORROW_APPOINTMENT: "TOMORROW",
    ReminderType.QUOTE_FOLLOWUP: "QUOTE",
    ReminderType.FEEDBACK_REQUEST: "FEEDBACK",
    ReminderType.BIRTHDAY: "BIRTHDAY",
}


class SkipRecord(ValueError):
    """Raised inside a rule when a single source record cannot be used."""


@dataclass(frozen=True)
class ReminderCandidate:
    """A reminder derived from one source record by one rule."""

    key: str
    type: ReminderType
    client_name: str
    client_phone: str
    target_info: str
    priority: Priority
    urgency_label: str
    created_at: datetime
    source_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "type": self.type.value,
            "client_name": self.client_name,
            "client_phone": self.client_phone,
            "target_info": self.target_info,
            "priority": self.priority.value,
            "urgency_label": self.urgency_label,
            "created_at": self.created_at.isoformat(),
            "source_id": self.source_id,
        }


@dataclass
class ReminderSnapshot:
    """Point-in-time inputs for one derivation pass.

    ``sent_log`` only needs to support membership tests.
    """

    appointments: Optional[Sequence[Appointment]] = None
    quotes: Optional[Sequence[Quote]] = None
    clients: Optional[Sequence[Client]] = None
    sent_log: Optional[Container[str]] = None


@dataclass(frozen=True)
class ReminderFeed:
    items: List[ReminderCandidate] = field(default_factory=list)
    count: int = 0

    def head(self, limit: Optional[int]) -> List[ReminderCandidate]:
        if limit is None:
            return list(self.items)
        return list(self.items[: max(0, limit)])

    def to_dict(self, limit: Optional[int] = None) -> Dict[str, Any]:
        return {
            "count": self.count,
            "items": [item.to_dict() for item in self.head(limit)],
        }


def reminder_key(reminder_type: ReminderType, record_id: str) -> str:
    """Return the dedup key for ``record_id`` under ``reminder_type``."""

    return f"{KEY_PREFIX_BY_TYPE[ReminderType(reminder_type)]}_{record_id}"


def hours_since(moment: datetime, now: datetime) -> float:
    """Hours elapsed from ``moment`` to ``now``, both cut to whole milliseconds."""

    aligned = _truncate_to_millisecond(_align_timezone(moment, now))
    delta_ms = (_truncate_to_millisecond(now) - aligned) / timedelta(milliseconds=1)
    return delta_ms / 3_600_000


def _truncate_to_millisecond(moment: datetime) -> datetime:
    return moment.replace(microsecond=moment.microsecond - moment.microsecond % 1000)


def _align_timezone(moment: datetime, now: datetime) -> datetime:
    if now.tzinfo is None:
        if moment.tzinfo is None:
            return moment
        return moment.astimezone().replace(tzinfo=None)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=now.tzinfo)
    return moment.astimezone(now.tzinfo)


def _require_id(record: Any) -> str:
    record_id = getattr(record, "id", None)
    if record_id is None or not str(record_id).strip():
        raise SkipRecord("record has no id")
    return str(record_id).strip()


def _build(
    reminder_type: ReminderType,
    record_id: str,
    *,
    client_name: str,
    client_phone: str,
    target_info: str,
    created_at: datetime,
) -> ReminderCandidate:
    return ReminderCandidate(
        key=reminder_key(reminder_type, record_id),
        type=reminder_type,
        client_name=client_name or "",
        client_phone=client_phone or "",
        target_info=target_info,
        priority=PRIORITY_BY_TYPE[reminder_type],
        urgency_label=URGENCY_LABEL_BY_TYPE[reminder_type],
        created_at=created_at,
        source_id=record_id,
    )


def _each_record(
    rule: str,
    records: Optional[Iterable[Any]],
    build: Callable[[Any], Optional[ReminderCandidate]],
) -> List[ReminderCandidate]:
    candidates: List[ReminderCandidate] = []
    for record in records or ():
        try:
            candidate = build(record)
        except (SkipRecord, ValueError, TypeError, AttributeError) as exc:
            logger.debug("Skipping record %r in %s rule: %s", getattr(record, "id", None), rule, exc)
            continue
        if candidate is not None:
            candidates.append(candidate)
    return candidates


def _appointments_on(
    reminder_type: ReminderType,
    snapshot: ReminderSnapshot,
    now: datetime,
    day_offset: int,
    label: str,
) -> List[ReminderCandidate]:
    target_day = now.date() + timedelta(days=day_offset)

    def build(appointment: Appointment) -> Optional[ReminderCandidate]:
        record_id = _require_id(appointment)
        if coerce_date(appointment.date) != target_day:
            return None
        if appointment.status == AppointmentStatus.COMPLETED:
            return None
        return _build(
            reminder_type,
            record_id,
            client_name=appointment.client_name,
            client_phone=appointment.phone,
            target_info=f"{appointment.plate or ''} - {label}",
            created_at=now,
        )

    return _each_record(reminder_type.value, snapshot.appointments, build)


def evaluate_today_appointments(snapshot: ReminderSnapshot, now: datetime) -> List[ReminderCandidate]:
    return _appointments_on(ReminderType.TODAY_APPOINTMENT, snapshot, now, 0, "Appointment Today")


def evaluate_tomorrow_appointments(snapshot: ReminderSnapshot, now: datetime) -> List[ReminderCandidate]:
    return _appointments_on(ReminderType.TOMORROW_APPOINTMENT, snapshot, now, 1, "Appointment Tomorrow")


def quote_timestamp(quote: Quote, now: datetime) -> datetime:
    """Return the moment the quote last changed, aligned to ``now``.

    Falls back to ``created_at`` and then to ``now`` when no timestamp is
    stored; a stored but unparseable value raises ``ValueError``.
    """

    raw = quote.updated_at if quote.updated_at is not None else quote.created_at
    if raw is None:
        return now
    return _align_timezone(coerce_timestamp(raw), now)


def evaluate_quote_followups(snapshot: ReminderSnapshot, now: datetime) -> List[ReminderCandidate]:
    """Quotes sent to the client within the last 48 hours."""

    def build(quote: Quote) -> Optional[ReminderCandidate]:
        record_id = _require_id(quote)
        if quote.status != QuoteStatus.SENT:
            return None
        changed_at = quote_timestamp(quote, now)
        if hours_since(changed_at, now) > QUOTE_FOLLOWUP_MAX_HOURS:
            return None
        return _build(
            ReminderType.QUOTE_FOLLOWUP,
            record_id,
            client_name=quote.client_name,
            client_phone=quote.phone,
            target_info=f"{quote.plate or ''} - Quote Sent",
            created_at=changed_at,
        )

    return _each_record(ReminderType.QUOTE_FOLLOWUP.value, snapshot.quotes, build)


def evaluate_feedback_requests(snapshot: ReminderSnapshot, now: datetime) -> List[ReminderCandidate]:
    """Completed jobs whose quote closed between 48 and 72 hours ago (inclusive)."""

    def build(quote: Quote) -> Optional[ReminderCandidate]:
        record_id = _require_id(quote)
        if quote.status != QuoteStatus.COMPLETED:
            return None
        changed_at = quote_timestamp(quote, now)
        elapsed = hours_since(changed_at, now)
        if not FEEDBACK_MIN_HOURS <= elapsed <= FEEDBACK_MAX_HOURS:
            return None
        return _build(
            ReminderType.FEEDBACK_REQUEST,
            record_id,
            client_name=quote.client_name,
            client_phone=quote.phone,
            target_info=f"{quote.plate or ''} - Feedback Request",
            created_at=changed_at,
        )

    return _each_record(ReminderType.FEEDBACK_REQUEST.value, snapshot.quotes, build)


def evaluate_birthdays(snapshot: ReminderSnapshot, now: datetime) -> List[ReminderCandidate]:
    today = now.date()

    def build(client: Client) -> Optional[ReminderCandidate]:
        record_id = _require_id(client)
        if client.birth_date is None or client.birth_date == "":
            return None
        born = coerce_date(client.birth_date)
        if (born.month, born.day) != (today.month, today.day):
            return None
        return _build(
            ReminderType.BIRTHDAY,
            record_id,
            client_name=f"{client.name or ''} {client.surname or ''}".strip(),
            client_phone=client.phone,
            target_info="Birthday Today",
            created_at=now,
        )

    return _each_record(ReminderType.BIRTHDAY.value, snapshot.clients, build)


# Evaluation order doubles as the final tie-break order.
RULE_EVALUATORS: Tuple[Callable[[ReminderSnapshot, datetime], List[ReminderCandidate]], ...] = (
    evaluate_today_appointments,
    evaluate_tomorrow_appointments,
    evaluate_quote_followups,
    evaluate_feedback_requests,
    evaluate_birthdays,
)


def filter_sent(
    candidates: Iterable[ReminderCandidate],
    sent_log: Optional[Container[str]],
) -> List[ReminderCandidate]:
    """Drop candidates already in ``sent_log`` and repeated keys in the pool."""

    sent_log = sent_log if sent_log is not None else frozenset()
    seen = set()
    remaining: List[ReminderCandidate] = []
    for candidate in candidates:
        if candidate.key in sent_log or candidate.key in seen:
            continue
        seen.add(candidate.key)
        remaining.append(candidate)
    return remaining


def rank_candidates(candidates: Iterable[ReminderCandidate]) -> List[ReminderCandidate]:
    """Order by priority, then most recent first; equal items keep their order."""

    return sorted(
        candidates,
        key=lambda candidate: (PRIORITY_RANK[candidate.priority], candidate.created_at),
        reverse=True,
    )


def derive_reminders(snapshot: ReminderSnapshot, *, now: Optional[datetime] = None) -> ReminderFeed:
    """Derive the ranked, deduplicated reminder feed for ``snapshot``.

    ``now`` is read once per call when omitted; pass it explicitly for
    reproducible results.
    """

    if snapshot is None:
        raise TypeError("snapshot must be provided")
    if now is None:
        now = datetime.now(timezone.utc).astimezone()
    if not isinstance(now, datetime):
        raise TypeError("now must be a datetime instance")

    pool: List[ReminderCandidate] = []
    for evaluate in RULE_EVALUATORS:
        pool.extend(evaluate(snapshot, now))

    remaining = filter_sent(pool, snapshot.sent_log)
    ranked = rank_candidates(remaining)
    logger.debug(
        "Derived %d reminders (%d candidates, %d already sent or repeated)",
        len(ranked),
        len(pool),
        len(pool) - len(remaining),
    )
    return ReminderFeed(items=ranked, count=len(ranked))


__all__ = [
    "KEY_PREFIX_BY_TYPE",
    "PRIORITY_BY_TYPE",
    "PRIORITY_RANK",
    "Priority",
    "RULE_EVALUATORS",
    "ReminderCandidate",
    "ReminderFeed",
    "ReminderSnapshot",
    "ReminderType",
    "URGENCY_LABEL_BY_TYPE",
    "derive_reminders",
    "evaluate_birthdays",
    "evaluate_feedback_requests",
    "evaluate_quote_followups",
    "evaluate_today_appointments",
    "evaluate_tomorrow_appointments",
    "filter_sent",
    "hours_since",
    "quote_timestamp",
    "rank_candidates",
    "reminder_key",
]
