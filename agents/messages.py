"""Message composition for derived reminders.

Picks the WhatsApp template matching a reminder, fills its ``{{variable}}``
placeholders and builds the click-to-chat link used by the front desk.
Sending the message is left to the operator.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple
from urllib.parse import quote as url_quote

from agents.records import Appointment, Client, coerce_date
from agents.reminders import ReminderCandidate, ReminderType

DISPLAY_DATE_FORMAT = "%d/%m/%Y"
WHATSAPP_BASE_URL = "https://wa.me"
DEFAULT_COUNTRY_CODE = "39"

TEMPLATE_CATEGORY_BY_TYPE: Dict[ReminderType, str] = {
    ReminderType.TODAY_APPOINTMENT: "reminders",
    ReminderType.TOMORROW_APPOINTMENT: "reminders",
    ReminderType.QUOTE_FOLLOWUP: "quotes",
    ReminderType.FEEDBACK_REQUEST: "completed",
    ReminderType.BIRTHDAY: "courtesy",
}

# Each entry lists alternatives; every word of one alternative must appear in the title.
TEMPLATE_TITLE_KEYWORDS: Dict[ReminderType, Tuple[Tuple[str, ...], ...]] = {
    ReminderType.TODAY_APPOINTMENT: (("reminder", "today"),),
    ReminderType.TOMORROW_APPOINTMENT: (("reminder", "tomorrow"),),
    ReminderType.QUOTE_FOLLOWUP: (("quote", "sent"), ("quote", "processed")),
    ReminderType.FEEDBACK_REQUEST: (("closing",), ("completed",), ("feedback",)),
    ReminderType.BIRTHDAY: (("birthday",), ("wishes",)),
}

_PLACEHOLDER = re.compile(r"\{\{\s*([a-z_]+)\s*\}\}")


@dataclass(frozen=True)
class MessageTemplate:
    title: str
    category: str
    content: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "MessageTemplate":
        if not isinstance(row, Mapping):
            raise ValueError("Template row must be a mapping")
        return cls(
            title=str(row.get("title") or ""),
            category=str(row.get("category") or ""),
            content=str(row.get("content") or ""),
        )


def select_template(
    reminder_type: ReminderType,
    templates: Iterable[MessageTemplate],
) -> Optional[MessageTemplate]:
    """Return the first template suited to ``reminder_type``, if any."""

    category = TEMPLATE_CATEGORY_BY_TYPE[reminder_type]
    alternatives = TEMPLATE_TITLE_KEYWORDS[reminder_type]
    for template in templates:
        if template.category != category:
            continue
        title = template.title.lower()
        if any(all(word in title for word in words) for words in alternatives):
            return template
    return None


def _format_date(value: Any) -> str:
    try:
        return coerce_date(value).strftime(DISPLAY_DATE_FORMAT)
    except ValueError:
        return "" if value is None else str(value)


def build_context(
    candidate: ReminderCandidate,
    *,
    now: datetime,
    appointment: Optional[Appointment] = None,
    client: Optional[Client] = None,
) -> Dict[str, str]:
    """Return the placeholder values available to every template."""

    full_name = client.full_name if client is not None else candidate.client_name.strip()
    first_name, _, last_name = full_name.partition(" ")
    today: date = now.date()

    context = {
        "first_name": first_name,
        "last_name": last_name.strip(),
        "full_name": full_name,
        "phone": candidate.client_phone or (client.phone if client else ""),
        "email": client.email if client else "",
        "plate": "",
        "appointment_date": "",
        "appointment_time": "",
        "vehicle_model": "",
        "today": today.strftime(DISPLAY_DATE_FORMAT),
        "tomorrow": (today + timedelta(days=1)).strftime(DISPLAY_DATE_FORMAT),
    }
    if appointment is not None:
        context.update(
            plate=appointment.plate,
            appointment_date=_format_date(appointment.date),
            appointment_time=appointment.time,
            vehicle_model=appointment.model,
        )
    elif " - " in candidate.target_info:
        context["plate"] = candidate.target_info.split(" - ", 1)[0].strip()
    return context


def render_template(content: str, context: Mapping[str, str]) -> str:
    """Replace ``{{name}}`` placeholders; unknown names are left as written."""

    def substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name not in context:
            return match.group(0)
        return str(context[name])

    return _PLACEHOLDER.sub(substitute, content)


def normalize_phone(phone: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        raise ValueError("phone must contain at least one digit")
    if digits.startswith("00"):
        digits = digits[2:]
    elif len(digits) == 10 and digits.startswith("3"):
        digits = f"{country_code}{digits}"
    return digits


def whatsapp_link(phone: str, text: str, *, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    number = normalize_phone(phone, country_code)
    return f"{WHATSAPP_BASE_URL}/{number}?text={url_quote(text, safe='')}"


__all__ = [
    "MessageTemplate",
    "TEMPLATE_CATEGORY_BY_TYPE",
    "TEMPLATE_TITLE_KEYWORDS",
    "build_context",
    "normalize_phone",
    "render_template",
    "select_template",
    "whatsapp_link",
]
