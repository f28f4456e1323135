import json
import tempfile
import unittest
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import requests

from connector import (
    LocalShopClient,
    ShopAPIError,
    ShopConfigurationError,
    SupabaseRESTClient,
)


def _response(status: int, payload=None, text: str = "") -> MagicMock:
    response = MagicMock(spec=requests.Response)
    response.status_code = status
    response.headers = {"Content-Type": "application/json"}
    response.text = text or (json.dumps(payload) if payload is not None else "")
    if payload is None:
        response.json.side_effect = ValueError("no body")
    else:
        response.json.return_value = payload
    return response


class LocalShopClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._tmp.name)
        (self.data_dir / "appointments.json").write_text(
            json.dumps(
                [
                    {"id": "a1", "date": "2026-03-15", "client_name": "Anna"},
                    {"id": "a2", "date": "2026-03-16T00:00:00", "client_name": "Bruno"},
                    "garbage",
                ]
            ),
            encoding="utf-8",
        )
        (self.data_dir / "quotes.json").write_text(json.dumps({"data": [{"id": "q1"}]}), encoding="utf-8")
        (self.data_dir / "clients.json").write_text("{not json", encoding="utf-8")
        self.client = LocalShopClient(self.data_dir)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_appointments_filtered_by_date(self) -> None:
        self.assertEqual([row["id"] for row in self.client.get_appointments_by_date(date(2026, 3, 15))], ["a1"])
        self.assertEqual([row["id"] for row in self.client.get_appointments_by_date("2026-03-16")], ["a2"])

    def test_appointments_with_alternate_date_columns(self) -> None:
        (self.data_dir / "appointments.json").write_text(
            json.dumps(
                [
                    {"id": "a1", "appointmentDate": "2026-03-15", "clientName": "Anna"},
                    {"id": "a2", "appointment_date": "2026-03-15T08:30:00", "client_name": "Bruno"},
                    {"id": "a3", "appointmentDate": "2026-03-16"},
                    {"id": "a4"},
                ]
            ),
            encoding="utf-8",
        )

        rows = self.client.get_appointments_by_date(date(2026, 3, 15))

        self.assertEqual([row["id"] for row in rows], ["a1", "a2"])

    def test_wrapped_and_unreadable_collections(self) -> None:
        self.assertEqual(self.client.get_all_quotes(), [{"id": "q1"}])
        self.assertEqual(self.client.get_all_clients(), [])
        self.assertEqual(self.client.get_sent_notification_keys(), set())

    def test_mark_and_unmark_sent(self) -> None:
        self.assertTrue(self.client.mark_notification_sent("reminder_today_a1"))
        self.assertFalse(self.client.mark_notification_sent("reminder_today_a1"))
        self.assertEqual(self.client.get_sent_notification_keys(), {"reminder_today_a1"})

        self.assertTrue(self.client.unmark_notification_sent("reminder_today_a1"))
        self.assertFalse(self.client.unmark_notification_sent("reminder_today_a1"))
        self.assertEqual(self.client.get_sent_notification_keys(), set())

    def test_empty_key_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.client.mark_notification_sent("")

    def test_clean_old_sent_notifications(self) -> None:
        now = datetime(2026, 3, 15, tzinfo=timezone.utc)
        self.client.mark_notification_sent("old", sent_at=now - timedelta(days=45))
        self.client.mark_notification_sent("recent", sent_at=now - timedelta(days=2))

        removed = self.client.clean_old_sent_notifications(days_old=30, now=now)

        self.assertEqual(removed, 1)
        self.assertEqual(self.client.get_sent_notification_keys(), {"recent"})


class SupabaseRESTClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = MagicMock(spec=requests.Session)
        self.client = SupabaseRESTClient(
            base_url="https://shop.example.supabase.co/",
            api_key="secret",
            timeout=5,
            session=self.session,
        )

    def test_requires_configuration(self) -> None:
        with self.assertRaises(ShopConfigurationError):
            SupabaseRESTClient(base_url="", api_key="secret", session=self.session)
        with self.assertRaises(ShopConfigurationError):
            SupabaseRESTClient(base_url="https://x", api_key=None, session=self.session)

    def test_get_appointments_by_date_builds_query(self) -> None:
        self.session.request.return_value = _response(200, [{"id": "a1"}, "junk"])

        rows = self.client.get_appointments_by_date(date(2026, 3, 15))

        self.assertEqual(rows, [{"id": "a1"}])
        kwargs = self.session.request.call_args.kwargs
        self.assertEqual(kwargs["method"], "GET")
        self.assertEqual(kwargs["url"], "https://shop.example.supabase.co/rest/v1/appointments")
        self.assertEqual(kwargs["params"]["date"], "eq.2026-03-15")
        self.assertEqual(kwargs["headers"]["apikey"], "secret")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer secret")
        self.assertEqual(kwargs["timeout"], 5)

    def test_sent_notification_keys(self) -> None:
        self.session.request.return_value = _response(200, [{"message_id": "feedback_q1"}, {"message_id": None}])

        self.assertEqual(self.client.get_sent_notification_keys(), {"feedback_q1"})

    def test_mark_sent_treats_unique_violation_as_already_sent(self) -> None:
        self.session.request.return_value = _response(409, {"code": "23505", "message": "duplicate key"})

        self.assertFalse(self.client.mark_notification_sent("feedback_q1"))

    def test_mark_sent_success(self) -> None:
        self.session.request.return_value = _response(201)

        self.assertTrue(self.client.mark_notification_sent("feedback_q1"))
        payload = self.session.request.call_args.kwargs["json"]
        self.assertEqual(payload[0]["message_id"], "feedback_q1")

    def test_other_conflicts_raise(self) -> None:
        self.session.request.return_value = _response(409, {"code": "23503", "message": "fk violation"})

        with self.assertRaises(ShopAPIError):
            self.client.mark_notification_sent("feedback_q1")

    def test_unexpected_status_raises(self) -> None:
        self.session.request.return_value = _response(500, {"message": "boom"})

        with self.assertRaises(ShopAPIError):
            self.client.get_all_quotes()

    def test_transport_error_is_wrapped(self) -> None:
        self.session.request.side_effect = requests.ConnectionError("down")

        with self.assertRaises(ShopAPIError) as ctx:
            self.client.get_all_clients()
        self.assertIsInstance(ctx.exception.__cause__, requests.ConnectionError)

    def test_non_list_payload_raises(self) -> None:
        self.session.request.return_value = _response(200, {"id": "q1"})

        with self.assertRaises(ShopAPIError):
            self.client.get_all_quotes()

    def test_clean_old_sent_notifications_counts_deleted_rows(self) -> None:
        self.session.request.return_value = _response(200, [{"id": 1}, {"id": 2}])
        now = datetime(2026, 3, 15, tzinfo=timezone.utc)

        removed = self.client.clean_old_sent_notifications(days_old=30, now=now)

        self.assertEqual(removed, 2)
        params = self.session.request.call_args.kwargs["params"]
        self.assertEqual(params["sent_at"], "lt.2026-02-13T00:00:00+00:00")


if __name__ == "__main__":
    unittest.main()
