import unittest
from datetime import datetime, timezone

from agents.messages import (
    MessageTemplate,
    build_context,
    normalize_phone,
    render_template,
    select_template,
    whatsapp_link,
)
from agents.records import Appointment, Client
from agents.reminders import ReminderSnapshot, ReminderType, derive_reminders

NOW = datetime(2026, 3, 15, 9, 0, tzinfo=timezone.utc)

TEMPLATES = [
    MessageTemplate(title="Welcome", category="general", content="Hi {{first_name}}"),
    MessageTemplate(title="Reminder tomorrow", category="reminders", content="See you tomorrow"),
    MessageTemplate(
        title="Reminder today",
        category="reminders",
        content="Hi {{first_name}}, your {{vehicle_model}} ({{plate}}) is expected today at {{appointment_time}}.",
    ),
    MessageTemplate(title="Happy birthday", category="courtesy", content="Best wishes {{full_name}}!"),
]


class TemplateSelectionTests(unittest.TestCase):
    def test_selects_by_category_and_title(self) -> None:
        template = select_template(ReminderType.TODAY_APPOINTMENT, TEMPLATES)

        self.assertIsNotNone(template)
        self.assertEqual(template.title, "Reminder today")

    def test_no_match_returns_none(self) -> None:
        self.assertIsNone(select_template(ReminderType.FEEDBACK_REQUEST, TEMPLATES))

    def test_template_from_row(self) -> None:
        template = MessageTemplate.from_row({"title": "Quote sent", "category": "quotes", "content": None})

        self.assertEqual(template.content, "")
        self.assertIs(select_template(ReminderType.QUOTE_FOLLOWUP, [template]), template)


class RenderingTests(unittest.TestCase):
    def test_full_message_for_today_appointment(self) -> None:
        appointment = Appointment(
            id="a1",
            client_name="Anna Rossi",
            phone="333 123 4567",
            plate="AB123CD",
            date="2026-03-15",
            time="09:30",
            model="Panda",
        )
        feed = derive_reminders(ReminderSnapshot(appointments=[appointment]), now=NOW)
        candidate = feed.items[0]
        template = select_template(candidate.type, TEMPLATES)

        context = build_context(candidate, now=NOW, appointment=appointment)
        message = render_template(template.content, context)

        self.assertEqual(message, "Hi Anna, your Panda (AB123CD) is expected today at 09:30.")
        self.assertEqual(context["appointment_date"], "15/03/2026")
        self.assertEqual(context["tomorrow"], "16/03/2026")

    def test_birthday_context_uses_client_record(self) -> None:
        client = Client(id="c1", name="Carla", surname="De Luca", email="carla@example.com", birth_date="1970-03-15")
        candidate = derive_reminders(ReminderSnapshot(clients=[client]), now=NOW).items[0]

        context = build_context(candidate, now=NOW, client=client)

        self.assertEqual(context["first_name"], "Carla")
        self.assertEqual(context["last_name"], "De Luca")
        self.assertEqual(context["email"], "carla@example.com")

    def test_plate_taken_from_target_info_without_appointment(self) -> None:
        appointment = Appointment(id="a1", client_name="Anna", plate="ZZ000ZZ", date="2026-03-15")
        candidate = derive_reminders(ReminderSnapshot(appointments=[appointment]), now=NOW).items[0]

        self.assertEqual(build_context(candidate, now=NOW)["plate"], "ZZ000ZZ")

    def test_unknown_placeholders_are_preserved(self) -> None:
        self.assertEqual(
            render_template("Hi {{ first_name }} {{coupon}}", {"first_name": "Anna"}),
            "Hi Anna {{coupon}}",
        )


class WhatsAppLinkTests(unittest.TestCase):
    def test_italian_mobile_gets_country_code(self) -> None:
        self.assertEqual(normalize_phone("333 123 4567"), "393331234567")

    def test_international_prefix(self) -> None:
        self.assertEqual(normalize_phone("0039 333 1234567"), "393331234567")
        self.assertEqual(normalize_phone("+44 7700 900123"), "447700900123")

    def test_link_encodes_text(self) -> None:
        link = whatsapp_link("+39 333 1234567", "Ciao Anna, a domani!")

        self.assertEqual(link, "https://wa.me/393331234567?text=Ciao%20Anna%2C%20a%20domani%21")

    def test_phone_without_digits_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            whatsapp_link("", "hello")


if __name__ == "__main__":
    unittest.main()
