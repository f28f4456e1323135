"""Hosted backend client utilities.

This module provides a client for the workshop's hosted Supabase project,
talking to its PostgREST interface. It handles the API key headers, HTTP
session handling and structured error reporting for the reads that feed
the reminder feed and for the sent-notification log.
"""
from __future__ import annotations

import logging
import os
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set, Tuple, Union

import requests
from requests import Response

__all__ = ["ShopClientError", "ShopConfigurationError", "ShopAPIError", "SupabaseRESTClient"]


# The hosting application owns handler configuration.
logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = float(os.getenv("SHOP_REQUEST_TIMEOUT", "30"))
DEFAULT_SUPABASE_URL = os.getenv("SUPABASE_URL")
DEFAULT_SUPABASE_KEY = os.getenv("SUPABASE_KEY")

SENT_MESSAGES_TABLE = "sent_messages"
UNIQUE_VIOLATION_CODE = "23505"


class ShopClientError(RuntimeError):
    """Base exception for backend client errors."""


class ShopConfigurationError(ShopClientError):
    """Raised when the client is missing its URL or API key."""


class ShopAPIError(ShopClientError):
    """Raised when the backend cannot be reached or returns an error response."""


def _date_string(value: Union[date, str]) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class SupabaseRESTClient:
    """Client for the shop tables exposed through PostgREST."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = DEFAULT_SUPABASE_URL,
        api_key: Optional[str] = DEFAULT_SUPABASE_KEY,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ShopConfigurationError("base_url must be provided (set SUPABASE_URL)")
        if not api_key:
            raise ShopConfigurationError("api_key must be provided (set SUPABASE_KEY)")

        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def rest_url(self) -> str:
        return f"{self.base_url}/rest/v1"

    def _request(
        self,
        method: str,
        table: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_payload: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        expected_status: Union[int, Tuple[int, ...]] = (200,),
    ) -> Response:
        if not table:
            raise ValueError("table must be provided")
        if isinstance(expected_status, int):
            expected_status = (expected_status,)

        url = f"{self.rest_url}/{table.lstrip('/')}"
        request_headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }
        if headers:
            request_headers.update(headers)

        try:
            response = self._session.request(
                method=method.upper(),
                url=url,
                params=params,
                json=json_payload,
                headers=request_headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Request to the shop backend failed: %s", exc)
            raise ShopAPIError("Failed to execute request to the shop backend") from exc

        if response.status_code not in expected_status:
            self._log_error_response(response)
            raise ShopAPIError(
                f"Shop backend responded with unexpected status {response.status_code}: {response.text}"
            )

        return response

    @staticmethod
    def _log_error_response(response: Response) -> None:
        content_type = response.headers.get("Content-Type", "")
        parsed: Any = None
        if "json" in content_type:
            try:
                parsed = response.json()
            except ValueError:
                logger.debug("Error response advertised JSON but could not be decoded")
        if parsed is not None:
            logger.error("Shop backend error response: status=%s body=%s", response.status_code, parsed)
            return
        logger.error(
            "Shop backend error response: status=%s body=%s", response.status_code, response.text[:2048]
        )

    @staticmethod
    def _rows(response: Response) -> List[Dict[str, Any]]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ShopAPIError("Shop backend returned a non-JSON body") from exc
        if not isinstance(payload, list):
            raise ShopAPIError("Shop backend returned an unexpected payload shape")
        return [row for row in payload if isinstance(row, dict)]

    @staticmethod
    def _is_duplicate(response: Response) -> bool:
        if response.status_code != 409:
            return False
        try:
            body = response.json()
        except ValueError:
            return True
        return not isinstance(body, dict) or body.get("code") in (None, UNIQUE_VIOLATION_CODE)

    def get_appointments_by_date(self, day: Union[date, str]) -> List[Dict[str, Any]]:
        """Return the appointments booked on ``day``, ordered by time."""

        params = {"select": "*", "date": f"eq.{_date_string(day)}", "order": "time.asc"}
        return self._rows(self._request("GET", "appointments", params=params))

    def get_all_quotes(self) -> List[Dict[str, Any]]:
        return self._rows(self._request("GET", "quotes", params={"select": "*"}))

    def get_all_clients(self) -> List[Dict[str, Any]]:
        return self._rows(self._request("GET", "clients", params={"select": "*"}))

    def get_all_templates(self) -> List[Dict[str, Any]]:
        return self._rows(self._request("GET", "whatsapp_templates", params={"select": "*"}))

    def get_sent_notification_keys(self) -> Set[str]:
        params = {"select": "message_id", "order": "sent_at.desc"}
        rows = self._rows(self._request("GET", SENT_MESSAGES_TABLE, params=params))
        return {str(row["message_id"]) for row in rows if row.get("message_id")}

    def mark_notification_sent(self, key: str, sent_at: Optional[datetime] = None) -> bool:
        """Insert ``key`` into the sent log; returns ``False`` if it was already there."""

        if not key:
            raise ValueError("key must be provided")
        sent_at = sent_at or datetime.now(timezone.utc)
        payload = [{"message_id": key, "sent_at": sent_at.isoformat()}]
        response = self._request(
            "POST",
            SENT_MESSAGES_TABLE,
            json_payload=payload,
            headers={"Prefer": "return=minimal"},
            expected_status=(200, 201, 204, 409),
        )
        if response.status_code == 409:
            if self._is_duplicate(response):
                logger.info("Notification %s already marked as sent", key)
                return False
            self._log_error_response(response)
            raise ShopAPIError(f"Shop backend rejected sent-log insert: {response.text}")
        logger.info("Notification %s marked as sent", key)
        return True

    def unmark_notification_sent(self, key: str) -> bool:
        if not key:
            raise ValueError("key must be provided")
        response = self._request(
            "DELETE",
            SENT_MESSAGES_TABLE,
            params={"message_id": f"eq.{key}"},
            headers={"Prefer": "return=representation"},
            expected_status=(200, 204),
        )
        removed = response.status_code == 200 and bool(self._rows(response))
        logger.info("Notification %s removed from the sent log", key)
        return removed

    def clean_old_sent_notifications(self, days_old: int = 30, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=days_old)
        response = self._request(
            "DELETE",
            SENT_MESSAGES_TABLE,
            params={"sent_at": f"lt.{cutoff.isoformat()}", "select": "id"},
            headers={"Prefer": "return=representation"},
            expected_status=(200, 204),
        )
        removed = len(self._rows(response)) if response.status_code == 200 else 0
        logger.info("Removed %d sent notifications older than %d days", removed, days_old)
        return removed
