"""Record types for appointments, quotes and clients read from the shop backend.

Rows are mapped leniently: values are copied as they come so the reminder
rules can decide, record by record, what counts as malformed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence


class AppointmentStatus:
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class QuoteStatus:
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    EXPIRED = "expired"
    ARCHIVED = "archived"


# Values written by older versions of the backend.
LEGACY_STATUS_ALIASES: Dict[str, str] = {
    "bozza": QuoteStatus.DRAFT,
    "inviato": QuoteStatus.SENT,
    "accettato": QuoteStatus.ACCEPTED,
    "completato": QuoteStatus.COMPLETED,
    "scaduto": QuoteStatus.EXPIRED,
    "archiviato": QuoteStatus.ARCHIVED,
    "programmato": AppointmentStatus.SCHEDULED,
    "in_lavorazione": AppointmentStatus.IN_PROGRESS,
    "annullato": AppointmentStatus.CANCELLED,
}


def normalize_status(value: Any) -> str:
    if value is None:
        return ""
    status = str(value).strip().lower()
    return LEGACY_STATUS_ALIASES.get(status, status)


def coerce_date(value: Any) -> date:
    """Return ``value`` as a calendar date, raising ``ValueError`` when impossible."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return coerce_timestamp(text).date()
        except ValueError as exc:
            raise ValueError(f"Invalid calendar date: {value!r}") from exc
    raise ValueError(f"Unsupported date value: {value!r}")


def coerce_timestamp(value: Any) -> datetime:
    """Return ``value`` as a datetime.

    Accepts datetimes, ISO-8601 strings (a trailing ``Z`` is read as UTC),
    plain dates (midnight) and millisecond epoch numbers.
    """

    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool):
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise ValueError(f"Invalid epoch timestamp: {value!r}") from exc
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid timestamp: {value!r}") from exc
    raise ValueError(f"Unsupported timestamp value: {value!r}")


APPOINTMENT_DATE_KEYS = ("date", "appointment_date", "appointmentDate")


def extract_first(row: Mapping[str, Any], keys: Sequence[str]) -> Any:
    """Return the first non-null value among ``keys``."""

    for key in keys:
        if key in row and row[key] is not None:
            return row[key]
    return None


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _identifier(value: Any) -> Optional[str]:
    if value is None:
        return None
    identifier = str(value).strip()
    return identifier or None


def _require_row(row: Any, kind: str) -> Mapping[str, Any]:
    if not isinstance(row, Mapping):
        raise ValueError(f"{kind} row must be a mapping, got {type(row).__name__}")
    if not row:
        raise ValueError(f"{kind} row payload is empty")
    return row


@dataclass(frozen=True)
class Appointment:
    """A workshop appointment; ``date`` keeps the value as stored."""

    id: Optional[str]
    client_name: str = ""
    phone: str = ""
    plate: str = ""
    date: Any = None
    status: str = AppointmentStatus.SCHEDULED
    time: str = ""
    model: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Appointment":
        row = _require_row(row, "Appointment")
        return cls(
            id=_identifier(extract_first(row, ("id", "appointment_id", "appointmentId"))),
            client_name=_text(extract_first(row, ("client_name", "clientName"))),
            phone=_text(extract_first(row, ("phone", "client_phone", "clientPhone"))),
            plate=_text(extract_first(row, ("plate", "vehicle_plate", "vehiclePlate"))),
            date=extract_first(row, APPOINTMENT_DATE_KEYS),
            status=normalize_status(extract_first(row, ("status",))),
            time=_text(extract_first(row, ("time", "appointment_time"))),
            model=_text(extract_first(row, ("model", "vehicle_model", "vehicleModel"))),
        )


@dataclass(frozen=True)
class Quote:
    id: Optional[str]
    client_name: str = ""
    phone: str = ""
    plate: str = ""
    status: str = QuoteStatus.DRAFT
    updated_at: Any = None
    created_at: Any = None
    total_price: float = 0.0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Quote":
        row = _require_row(row, "Quote")
        raw_price = extract_first(row, ("total_price", "totalPrice"))
        try:
            total_price = float(raw_price) if raw_price is not None else 0.0
        except (TypeError, ValueError):
            total_price = 0.0
        return cls(
            id=_identifier(extract_first(row, ("id", "quote_id", "quoteId"))),
            client_name=_text(extract_first(row, ("client_name", "clientName"))),
            phone=_text(extract_first(row, ("phone", "client_phone", "clientPhone"))),
            plate=_text(extract_first(row, ("plate", "vehicle_plate", "vehiclePlate"))),
            status=normalize_status(extract_first(row, ("status",))),
            updated_at=extract_first(row, ("updated_at", "updatedAt")),
            created_at=extract_first(row, ("created_at", "createdAt")),
            total_price=total_price,
        )


@dataclass(frozen=True)
class Client:
    id: Optional[str]
    name: str = ""
    surname: str = ""
    phone: str = ""
    email: str = ""
    birth_date: Any = None

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.surname}".strip()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Client":
        row = _require_row(row, "Client")
        return cls(
            id=_identifier(extract_first(row, ("id", "client_id", "clientId"))),
            name=_text(extract_first(row, ("name",))),
            surname=_text(extract_first(row, ("surname",))),
            phone=_text(extract_first(row, ("phone",))),
            email=_text(extract_first(row, ("email",))),
            birth_date=extract_first(row, ("birth_date", "birthDate")),
        )


__all__ = [
    "Appointment",
    "AppointmentStatus",
    "Client",
    "LEGACY_STATUS_ALIASES",
    "Quote",
    "QuoteStatus",
    "coerce_date",
    "coerce_timestamp",
    "normalize_status",
]
