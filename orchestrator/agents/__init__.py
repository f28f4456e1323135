"""Agent package exposing orchestrator integrations."""

from .reminder import ReminderAgent
from .snapshot import ShopDataClient, SnapshotAssembler, parse_rows

__all__ = [
    "ReminderAgent",
    "ShopDataClient",
    "SnapshotAssembler",
    "parse_rows",
]
