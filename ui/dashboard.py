"""Dashboard web application for the workshop reminder feed.

This module exposes a small Flask application listing the reminders still
waiting to be sent, the upcoming client birthdays and the orchestration task
log. Shop data is read from the JSON data directory; missing files are
tolerated so the application can run before the datasets are populated.
"""
from __future__ import annotations

from datetime import datetime, timezone
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, MutableMapping, Optional, Sequence

from flask import Flask, Response, abort, jsonify, render_template_string, request

from agents.birthdays import DEFAULT_WINDOW_DAYS, upcoming_birthdays
from agents.messages import MessageTemplate, build_context, render_template, select_template, whatsapp_link
from agents.records import Appointment, Client, coerce_timestamp
from agents.reminders import ReminderCandidate, ReminderType
from connector import LocalShopClient
from orchestrator.agents.reminder import ReminderAgent
from orchestrator.agents.snapshot import parse_rows
from orchestrator.main import DEFAULT_DATA_DIR, LOG_PATH, TaskLogger

DEFAULT_LIST_LIMIT = 5

# Presentation per reminder type; every ReminderType must have an entry.
TYPE_PRESENTATION: Dict[ReminderType, Dict[str, str]] = {
    ReminderType.TODAY_APPOINTMENT: {"icon": "calendar", "color": "danger", "title": "Appointment today"},
    ReminderType.TOMORROW_APPOINTMENT: {"icon": "calendar", "color": "warning", "title": "Appointment tomorrow"},
    ReminderType.QUOTE_FOLLOWUP: {"icon": "file-text", "color": "primary", "title": "Quote sent"},
    ReminderType.FEEDBACK_REQUEST: {"icon": "chat", "color": "success", "title": "Feedback request"},
    ReminderType.BIRTHDAY: {"icon": "gift", "color": "purple", "title": "Birthday"},
}

_missing = set(ReminderType) - set(TYPE_PRESENTATION)
if _missing:
    raise RuntimeError(f"Missing presentation for reminder types: {sorted(t.value for t in _missing)}")

URGENCY_BADGE_CLASS: Dict[str, str] = {
    "TODAY": "bg-danger",
    "TOMORROW": "bg-warning text-dark",
    "QUOTE": "bg-primary",
    "FEEDBACK": "bg-success",
    "BIRTHDAY": "bg-purple",
}


APPOINTMENT_TYPES = frozenset({ReminderType.TODAY_APPOINTMENT, ReminderType.TOMORROW_APPOINTMENT})


def index_by_id(records: Optional[Iterable[Any]]) -> Dict[str, Any]:
    indexed: Dict[str, Any] = {}
    for record in records or ():
        if record.id is not None and str(record.id).strip():
            indexed.setdefault(str(record.id).strip(), record)
    return indexed


def present(
    candidate: ReminderCandidate,
    templates: Sequence[MessageTemplate] = (),
    now: Optional[datetime] = None,
    *,
    appointment: Optional[Appointment] = None,
    client: Optional[Client] = None,
) -> MutableMapping[str, object]:
    entry: MutableMapping[str, object] = dict(candidate.to_dict())
    entry.update(TYPE_PRESENTATION[candidate.type])
    entry["badge_class"] = URGENCY_BADGE_CLASS.get(candidate.urgency_label, "bg-secondary")
    entry["whatsapp_url"] = None

    template = select_template(candidate.type, templates)
    if template is not None and any(char.isdigit() for char in candidate.client_phone):
        context = build_context(
            candidate,
            now=now or datetime.now(timezone.utc),
            appointment=appointment,
            client=client,
        )
        entry["whatsapp_url"] = whatsapp_link(candidate.client_phone, render_template(template.content, context))
    return entry


def parse_limit(value: Optional[str], default: Optional[int], name: str = "limit") -> Optional[int]:
    if value is None or value == "":
        return default
    try:
        limit = int(value)
    except ValueError:
        abort(400, description=f"{name} must be an integer")
    if limit < 0:
        abort(400, description=f"{name} must be zero or positive")
    return limit


def parse_now(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc).astimezone()
    try:
        moment = coerce_timestamp(value)
    except ValueError:
        abort(400, description="now must be an ISO-8601 timestamp")
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment


def create_app(data_dir: Optional[Path] = None, task_log: Optional[Path] = None) -> Flask:
    """Build the dashboard application over the JSON data directory."""

    application = Flask(__name__)
    client = LocalShopClient(data_dir or DEFAULT_DATA_DIR)
    agent = ReminderAgent(client)
    task_logger = TaskLogger(task_log or LOG_PATH)

    @application.route("/api/reminders", methods=["GET"])
    def reminders_api() -> Response:
        limit = parse_limit(request.args.get("limit"), None)
        feed = agent.feed(parse_now(request.args.get("now")))
        return jsonify(feed.to_dict(limit))

    @application.route("/api/reminders/<path:key>/sent", methods=["POST"])
    def mark_sent(key: str) -> Response:
        agent.mark_sent(key)
        return Response(status=204)

    @application.route("/api/reminders/<path:key>/sent", methods=["DELETE"])
    def unmark_sent(key: str) -> Response:
        agent.unmark_sent(key)
        return Response(status=204)

    @application.route("/api/birthdays/upcoming", methods=["GET"])
    def birthdays_api() -> Response:
        days = parse_limit(request.args.get("days"), DEFAULT_WINDOW_DAYS, "days")
        today = parse_now(request.args.get("now")).date()
        clients = parse_rows(client.get_all_clients(), Client.from_row, "client")
        entries = upcoming_birthdays(clients, today, days=days)
        return jsonify([entry.to_dict() for entry in entries])

    @application.route("/tasks", methods=["GET"])
    def tasks() -> Response:
        """Return orchestration log entries as JSON."""
        return jsonify(task_logger.read_history())

    @application.route("/reminders", methods=["GET"])
    def reminders_page() -> str:
        limit = parse_limit(request.args.get("limit"), DEFAULT_LIST_LIMIT)
        now = parse_now(request.args.get("now"))
        snapshot = agent.snapshot(now)
        feed = agent.feed(now, snapshot)
        appointments = index_by_id(snapshot.appointments)
        clients = index_by_id(snapshot.clients)
        templates = parse_rows(client.get_all_templates(), MessageTemplate.from_row, "template")
        reminders: List[MutableMapping[str, object]] = []
        for item in feed.head(limit):
            reminders.append(
                present(
                    item,
                    templates,
                    now,
                    appointment=appointments.get(item.source_id) if item.type in APPOINTMENT_TYPES else None,
                    client=clients.get(item.source_id) if item.type == ReminderType.BIRTHDAY else None,
                )
            )
        return render_template_string(
            reminders_template,
            reminders=reminders,
            count=feed.count,
            generated_at=now.isoformat(),
        )

    return application


reminders_template = """
<!doctype html>
<html lang=\"en\">
  <head>
    <meta charset=\"utf-8\">
    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\">
    <meta http-equiv=\"refresh\" content=\"300\">
    <title>Workshop Reminders</title>
    <link
      href=\"https://cdn.jsdelivr.net/npm/bootstrap@5.3.3/dist/css/bootstrap.min.css\"
      rel=\"stylesheet\"
      integrity=\"sha384-QWTKZyjpPEjISv5WaRU9OFeRpok6YctnYmDr5pNlyT2bRjXh0JMhjY6hW+ALEwIH\"
      crossorigin=\"anonymous\"
    >
    <style>.bg-purple { background-color: #6f42c1; color: #fff; }</style>
  </head>
  <body class=\"bg-light\">
    <nav class=\"navbar navbar-expand-lg navbar-dark bg-primary\">
      <div class=\"container-fluid\">
        <a class=\"navbar-brand\" href=\"#\">Reminders to send</a>
        <span class=\"badge bg-danger\">{{ count }}</span>
      </div>
    </nav>
    <main class=\"container my-4\">
      <div class=\"card shadow-sm\">
        <div class=\"card-header\">Pending reminders <small class=\"text-muted\">({{ generated_at }})</small></div>
        <div class=\"card-body\">
          {% if reminders %}
            <ul class=\"list-group\">
              {% for reminder in reminders %}
                <li class=\"list-group-item d-flex justify-content-between align-items-start\">
                  <div>
                    <div class=\"fw-semibold\">{{ reminder.client_name or '—' }}</div>
                    <div class=\"small text-muted\">{{ reminder.title }}: {{ reminder.target_info }}</div>
                    {% if reminder.client_phone %}
                      <div class=\"small\">{{ reminder.client_phone }}</div>
                    {% endif %}
                    {% if reminder.whatsapp_url %}
                      <a class=\"small\" href=\"{{ reminder.whatsapp_url }}\" target=\"_blank\" rel=\"noopener\">Send on WhatsApp</a>
                    {% endif %}
                  </div>
                  <span class=\"badge {{ reminder.badge_class }}\">{{ reminder.urgency_label }}</span>
                </li>
              {% endfor %}
            </ul>
            {% if count > reminders|length %}
              <p class=\"text-muted small mt-2 mb-0\">+ {{ count - reminders|length }} more</p>
            {% endif %}
          {% else %}
            <p class=\"text-muted mb-0\">No reminders pending.</p>
          {% endif %}
        </div>
      </div>
    </main>
  </body>
</html>
"""


app = create_app()


if __name__ == "__main__":
    app.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "5000")),
        debug=False,
    )
