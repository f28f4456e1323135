"""Reminder agent builds the pending-reminder summary for the front desk."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from agents.reminders import ReminderFeed, ReminderSnapshot, derive_reminders

from .snapshot import ShopDataClient, SnapshotAssembler

logger = logging.getLogger(__name__)


class ReminderAgent:
    """Coordinates snapshot assembly, derivation and the sent-log write-back."""

    def __init__(self, client: ShopDataClient, assembler: Optional[SnapshotAssembler] = None) -> None:
        self._client = client
        self._assembler = assembler or SnapshotAssembler(client)

    def snapshot(self, now: datetime) -> ReminderSnapshot:
        return self._assembler.assemble(now)

    def feed(self, now: datetime, snapshot: Optional[ReminderSnapshot] = None) -> ReminderFeed:
        """Derive the feed, from ``snapshot`` when the caller already holds one."""

        if snapshot is None:
            snapshot = self.snapshot(now)
        return derive_reminders(snapshot, now=now)

    def collect(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> Dict[str, object]:
        """Return the ranked reminders still waiting to be sent."""

        now = now or datetime.now(timezone.utc).astimezone()
        feed = self.feed(now)
        shown = feed.head(limit)
        logger.info("%d reminders pending (%d shown)", feed.count, len(shown))
        return {
            "generated_at": now.isoformat(),
            "count": feed.count,
            "shown": len(shown),
            "reminders": [candidate.to_dict() for candidate in shown],
        }

    def mark_sent(self, key: str) -> bool:
        return self._client.mark_notification_sent(key)

    def unmark_sent(self, key: str) -> bool:
        return self._client.unmark_notification_sent(key)

    def clean_sent_log(self, days_old: int = 30) -> int:
        return self._client.clean_old_sent_notifications(days_old=days_old)
