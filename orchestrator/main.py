"""Central orchestration entry point for the workshop reminder workflows."""
from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime, time as dtime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional

if __package__ is None or __package__ == "":  # pragma: no cover - runtime safety for script execution
    sys.path.append(str(Path(__file__).resolve().parent.parent))

from agents.records import coerce_timestamp
from connector import LocalShopClient, ShopClientError, SupabaseRESTClient
from orchestrator.agents.reminder import ReminderAgent

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_DATA_DIR = Path(os.getenv("OFFICINA_DATA_DIR") or PROJECT_ROOT / "data")
LOG_PATH = Path(os.getenv("OFFICINA_TASK_LOG") or DEFAULT_DATA_DIR / "task_log.json")
SENT_LOG_RETENTION_DAYS = 30


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat().replace("+00:00", "Z")


def configure_logging(level: Optional[str] = None) -> None:
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


class TaskLogger:
    """Persists orchestration events into a JSON log."""

    def __init__(self, log_path: Path) -> None:
        self._log_path = Path(log_path)
        self._lock = threading.Lock()

    def log(
        self,
        task_name: str,
        status: str,
        *,
        start_time: Optional[datetime] = None,
        message: Optional[str] = None,
        details: Optional[Dict[str, object]] = None,
    ) -> None:
        completed_at = _utc_now()
        started_at = start_time or completed_at
        entry: Dict[str, object] = {
            "task": task_name,
            "status": status,
            "started_at": _format_timestamp(started_at),
            "completed_at": _format_timestamp(completed_at),
        }
        if message:
            entry["message"] = message
        if details is not None:
            entry["details"] = details

        with self._lock:
            history = self.read_history()
            history.append(entry)
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            serialized = json.dumps(history, indent=2)
            self._log_path.write_text(f"{serialized}\n", encoding="utf-8")

    def read_history(self) -> List[Dict[str, object]]:
        if not self._log_path.exists():
            return []
        raw_content = self._log_path.read_text(encoding="utf-8").strip()
        if not raw_content:
            return []
        try:
            data = json.loads(raw_content)
        except json.JSONDecodeError as exc:
            raise ValueError(
                f"Task log is corrupted and cannot be parsed: {exc.msg}"
            ) from exc
        if not isinstance(data, list):
            raise ValueError("Task log must contain a JSON list of entries.")
        return data


@dataclass
class ScheduledTask:
    """Represents a task scheduled to run once every day."""

    name: str
    time_of_day: dtime
    action: Callable[[], Optional[Dict[str, object]]]
    next_run: datetime = field(init=False)

    def __post_init__(self) -> None:
        self._schedule_next()

    def _schedule_next(self) -> None:
        now = datetime.now()
        candidate = datetime.combine(now.date(), self.time_of_day)
        if candidate <= now:
            candidate += timedelta(days=1)
        self.next_run = candidate

    def mark_executed(self) -> None:
        self._schedule_next()


class DailyTaskScheduler:
    """Lightweight daily scheduler that polls for tasks to run."""

    def __init__(self, logger: TaskLogger, poll_interval_seconds: int = 60) -> None:
        self._logger = logger
        self._poll_interval_seconds = max(1, poll_interval_seconds)
        self._tasks: List[ScheduledTask] = []
        self._stop_event = threading.Event()

    @property
    def tasks(self) -> List[ScheduledTask]:
        return list(self._tasks)

    def add_daily_task(
        self, name: str, run_time: dtime, action: Callable[[], Optional[Dict[str, object]]]
    ) -> None:
        self._tasks.append(ScheduledTask(name=name, time_of_day=run_time, action=action))

    def run_pending(self, now: Optional[datetime] = None) -> int:
        """Run every task that is due and return how many ran."""

        now = now or datetime.now()
        executed = 0
        for task in self._tasks:
            if now < task.next_run:
                continue
            try:
                execute_with_logging(task.name, task.action, self._logger)
            except Exception:  # noqa: BLE001 - one failing task must not stop the others
                logger.exception("Scheduled task %s failed", task.name)
            finally:
                task.mark_executed()
                executed += 1
        return executed

    def start(self) -> None:
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, self._handle_stop_signal)
            signal.signal(signal.SIGTERM, self._handle_stop_signal)

        try:
            while not self._stop_event.is_set():
                self.run_pending()
                self._stop_event.wait(self._poll_interval_seconds)
        finally:
            self._stop_event.set()

    def stop(self) -> None:
        self._stop_event.set()

    def _handle_stop_signal(self, signum: int, frame) -> None:  # type: ignore[override]
        self._stop_event.set()


def execute_with_logging(
    task_name: str, action: Callable[[], Optional[Dict[str, object]]], logger: TaskLogger
) -> Optional[Dict[str, object]]:
    """Run ``action`` while emitting structured log entries."""

    start_time = _utc_now()
    details: Optional[Dict[str, object]] = None
    status = "success"
    message: Optional[str] = None

    try:
        result = action()
        if isinstance(result, dict):
            details = result
        return result
    except Exception as exc:
        status = "failed"
        message = str(exc)
        raise
    finally:
        logger.log(
            task_name,
            status,
            start_time=start_time,
            message=message,
            details=details,
        )


def build_client(data_dir: Optional[Path] = None):
    """Pick the data backend: an explicit directory, the hosted backend, or the default directory."""

    if data_dir is not None:
        return LocalShopClient(data_dir)
    if os.getenv("SUPABASE_URL"):
        return SupabaseRESTClient()
    return LocalShopClient(DEFAULT_DATA_DIR)


def _parse_now(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    moment = coerce_timestamp(value)
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment


def run_reminders(
    agent: ReminderAgent, *, now: Optional[datetime] = None, limit: Optional[int] = None
) -> Dict[str, object]:
    """Derive pending reminders and return the structured summary."""

    return agent.collect(now=now, limit=limit)


def run_sent_log_cleanup(agent: ReminderAgent, days_old: int = SENT_LOG_RETENTION_DAYS) -> Dict[str, object]:
    removed = agent.clean_sent_log(days_old=days_old)
    return {"removed": removed, "days_old": days_old}


def run_scheduler(agent: ReminderAgent, logger: TaskLogger) -> None:
    scheduler = DailyTaskScheduler(logger=logger)
    scheduler.add_daily_task("morning_reminders", dtime(hour=9, minute=0), lambda: run_reminders(agent))
    scheduler.add_daily_task("evening_reminders", dtime(hour=18, minute=0), lambda: run_reminders(agent))
    scheduler.add_daily_task(
        "clean_sent_notifications", dtime(hour=3, minute=0), lambda: run_sent_log_cleanup(agent)
    )
    logger.log("scheduler", "started", message="Daily scheduler started.")
    try:
        scheduler.start()
    finally:
        logger.log("scheduler", "stopped", message="Daily scheduler stopped.")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Workshop reminder orchestration controller")
    parser.add_argument("--data-dir", type=Path, default=None, help="Read shop data from JSON files in this directory")
    parser.add_argument("--task-log", type=Path, default=LOG_PATH, help="Path of the JSON task log")
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")

    subparsers = parser.add_subparsers(dest="command")

    derive = subparsers.add_parser("derive", help="Print the pending reminders as JSON")
    derive.add_argument("--limit", type=int, default=None, help="Only list the first N reminders")
    derive.add_argument("--now", default=None, help="Derive as of this ISO timestamp")

    mark = subparsers.add_parser("mark_sent", help="Record a reminder key as delivered")
    mark.add_argument("key")

    unmark = subparsers.add_parser("unmark_sent", help="Remove a reminder key from the sent log")
    unmark.add_argument("key")

    clean = subparsers.add_parser("clean_sent", help="Drop old entries from the sent log")
    clean.add_argument("--days", type=int, default=SENT_LOG_RETENTION_DAYS)

    subparsers.add_parser("run_scheduler", help="Run the daily reminder scheduler")

    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "run_scheduler"
    return args


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    task_logger = TaskLogger(args.task_log)

    try:
        agent = ReminderAgent(build_client(args.data_dir))
        if args.command == "derive":
            now = _parse_now(args.now)
            summary = execute_with_logging(
                "derive_reminders",
                lambda: run_reminders(agent, now=now, limit=args.limit),
                task_logger,
            )
            sys.stdout.write(json.dumps(summary, indent=2) + "\n")
        elif args.command == "mark_sent":
            execute_with_logging(
                "mark_sent",
                lambda: {"key": args.key, "changed": agent.mark_sent(args.key)},
                task_logger,
            )
        elif args.command == "unmark_sent":
            execute_with_logging(
                "unmark_sent",
                lambda: {"key": args.key, "changed": agent.unmark_sent(args.key)},
                task_logger,
            )
        elif args.command == "clean_sent":
            execute_with_logging(
                "clean_sent_notifications",
                lambda: run_sent_log_cleanup(agent, args.days),
                task_logger,
            )
        else:
            run_scheduler(agent, task_logger)
    except (ShopClientError, ValueError) as exc:
        logger.error("Command %s failed: %s", args.command, exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
