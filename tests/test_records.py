import unittest
from datetime import date, datetime, timezone

from agents.records import (
    Appointment,
    Client,
    Quote,
    QuoteStatus,
    coerce_date,
    coerce_timestamp,
    normalize_status,
)


class RecordMappingTests(unittest.TestCase):
    def test_appointment_from_snake_case_row(self) -> None:
        appointment = Appointment.from_row(
            {
                "id": 12,
                "client_name": "Anna Rossi",
                "phone": "3331234567",
                "plate": "AB123CD",
                "date": "2026-03-15",
                "time": "09:30",
                "status": "programmato",
                "model": "Panda",
            }
        )

        self.assertEqual(appointment.id, "12")
        self.assertEqual(appointment.client_name, "Anna Rossi")
        self.assertEqual(appointment.date, "2026-03-15")
        self.assertEqual(appointment.status, "scheduled")
        self.assertEqual(appointment.model, "Panda")

    def test_quote_from_camel_case_row(self) -> None:
        quote = Quote.from_row(
            {
                "id": "q1",
                "clientName": "Bruno",
                "plate": "XY987ZW",
                "status": "Inviato",
                "updatedAt": "2026-03-14T08:00:00Z",
                "totalPrice": "120.50",
            }
        )

        self.assertEqual(quote.status, QuoteStatus.SENT)
        self.assertEqual(quote.updated_at, "2026-03-14T08:00:00Z")
        self.assertEqual(quote.total_price, 120.5)
        self.assertEqual(quote.phone, "")

    def test_quote_with_unreadable_price_defaults_to_zero(self) -> None:
        quote = Quote.from_row({"id": "q1", "total_price": "n/a"})

        self.assertEqual(quote.total_price, 0.0)

    def test_client_ignores_unknown_columns(self) -> None:
        client = Client.from_row(
            {"id": "c1", "name": "Carla", "surname": "Bianchi", "birthDate": "1970-05-01", "notes": "VIP"}
        )

        self.assertEqual(client.full_name, "Carla Bianchi")
        self.assertEqual(client.birth_date, "1970-05-01")
        self.assertEqual(client, Client(id="c1", name="Carla", surname="Bianchi", birth_date="1970-05-01"))

    def test_missing_id_is_kept_as_none(self) -> None:
        self.assertIsNone(Appointment.from_row({"date": "2026-03-15"}).id)

    def test_non_mapping_rows_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            Appointment.from_row(["a1"])  # type: ignore[arg-type]
        with self.assertRaises(ValueError):
            Client.from_row({})

    def test_unknown_status_kept_lower_case(self) -> None:
        self.assertEqual(normalize_status(" On_Hold "), "on_hold")
        self.assertEqual(normalize_status(None), "")


class CoercionTests(unittest.TestCase):
    def test_coerce_date_variants(self) -> None:
        self.assertEqual(coerce_date("2026-03-15"), date(2026, 3, 15))
        self.assertEqual(coerce_date(datetime(2026, 3, 15, 23, 0)), date(2026, 3, 15))
        self.assertEqual(coerce_date("2026-03-15T10:00:00+01:00"), date(2026, 3, 15))

    def test_coerce_date_rejects_garbage(self) -> None:
        for value in ("not-a-date", "", None, 42, "2026-02-30"):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    coerce_date(value)

    def test_coerce_timestamp_variants(self) -> None:
        self.assertEqual(
            coerce_timestamp("2026-03-15T10:00:00Z"),
            datetime(2026, 3, 15, 10, 0, tzinfo=timezone.utc),
        )
        self.assertEqual(
            coerce_timestamp(1_773_568_800_000),
            datetime(2026, 3, 15, 10, 0, tzinfo=timezone.utc),
        )
        self.assertEqual(coerce_timestamp(date(2026, 3, 15)), datetime(2026, 3, 15))

    def test_coerce_timestamp_rejects_garbage(self) -> None:
        for value in ("yesterday", True, None, ""):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    coerce_timestamp(value)


if __name__ == "__main__":
    unittest.main()
