"""Connector interfaces for the workshop back office."""

from __future__ import annotations

import json
import logging
import threading
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from agents.records import APPOINTMENT_DATE_KEYS, extract_first

from .supabase_client import (
    ShopAPIError,
    ShopClientError,
    ShopConfigurationError,
    SupabaseRESTClient,
    _date_string,
)

logger = logging.getLogger(__name__)

__all__ = [
    "LocalShopClient",
    "ShopAPIError",
    "ShopClientError",
    "ShopConfigurationError",
    "SupabaseRESTClient",
]


class LocalShopClient:
    """Shop data stored as JSON files in a directory.

    Serves the same reads as the hosted backend and keeps the
    sent-notification log in ``sent_notifications.json``.
    """

    APPOINTMENTS_FILE = "appointments.json"
    QUOTES_FILE = "quotes.json"
    CLIENTS_FILE = "clients.json"
    TEMPLATES_FILE = "whatsapp_templates.json"
    SENT_FILE = "sent_notifications.json"

    def __init__(self, data_dir: Union[Path, str]) -> None:
        self._data_dir = Path(data_dir)
        self._lock = threading.Lock()

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def _load_collection(self, name: str) -> List[Dict[str, Any]]:
        path = self._data_dir / name
        if not path.exists():
            return []
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Could not read %s: %s", path, exc)
            return []
        if isinstance(payload, dict):
            for key in ("data", "results", "items"):
                if isinstance(payload.get(key), list):
                    payload = payload[key]
                    break
        if not isinstance(payload, list):
            logger.warning("%s does not contain a list of records", path)
            return []
        return [item for item in payload if isinstance(item, dict)]

    def get_appointments_by_date(self, day: Union[date, str]) -> List[Dict[str, Any]]:
        wanted = _date_string(day)
        return [
            row
            for row in self._load_collection(self.APPOINTMENTS_FILE)
            if str(extract_first(row, APPOINTMENT_DATE_KEYS) or "")[:10] == wanted
        ]

    def get_all_quotes(self) -> List[Dict[str, Any]]:
        return self._load_collection(self.QUOTES_FILE)

    def get_all_clients(self) -> List[Dict[str, Any]]:
        return self._load_collection(self.CLIENTS_FILE)

    def get_all_templates(self) -> List[Dict[str, Any]]:
        return self._load_collection(self.TEMPLATES_FILE)

    def get_sent_notification_keys(self) -> Set[str]:
        return {str(entry["message_id"]) for entry in self._sent_entries() if entry.get("message_id")}

    def _sent_entries(self) -> List[Dict[str, Any]]:
        entries = []
        for entry in self._load_collection(self.SENT_FILE):
            if entry.get("message_id"):
                entries.append(entry)
        return entries

    def _write_sent(self, entries: List[Dict[str, Any]]) -> None:
        path = self._data_dir / self.SENT_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        serialized = json.dumps(entries, indent=2)
        path.write_text(f"{serialized}\n", encoding="utf-8")

    def mark_notification_sent(self, key: str, sent_at: Optional[datetime] = None) -> bool:
        """Record ``key`` as delivered; returns ``False`` if it already was."""

        if not key:
            raise ValueError("key must be provided")
        sent_at = sent_at or datetime.now(timezone.utc)
        with self._lock:
            entries = self._sent_entries()
            if any(entry["message_id"] == key for entry in entries):
                logger.info("Notification %s already marked as sent", key)
                return False
            entries.append({"message_id": key, "sent_at": sent_at.isoformat()})
            self._write_sent(entries)
        logger.info("Notification %s marked as sent", key)
        return True

    def unmark_notification_sent(self, key: str) -> bool:
        if not key:
            raise ValueError("key must be provided")
        with self._lock:
            entries = self._sent_entries()
            remaining = [entry for entry in entries if entry["message_id"] != key]
            if len(remaining) == len(entries):
                return False
            self._write_sent(remaining)
        logger.info("Notification %s removed from the sent log", key)
        return True

    def clean_old_sent_notifications(self, days_old: int = 30, now: Optional[datetime] = None) -> int:
        """Drop sent-log entries older than ``days_old`` days and return how many went."""

        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        cutoff = now - timedelta(days=days_old)
        with self._lock:
            entries = self._sent_entries()
            kept = []
            for entry in entries:
                try:
                    sent_at = datetime.fromisoformat(str(entry.get("sent_at")).replace("Z", "+00:00"))
                except ValueError:
                    kept.append(entry)
                    continue
                if sent_at.tzinfo is None:
                    sent_at = sent_at.replace(tzinfo=timezone.utc)
                if sent_at >= cutoff:
                    kept.append(entry)
            removed = len(entries) - len(kept)
            if removed:
                self._write_sent(kept)
        logger.info("Removed %d sent notifications older than %d days", removed, days_old)
        return removed
