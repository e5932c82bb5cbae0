"""
Periodic completion of past meetings.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from ..models.entities import MEETING, MeetingStatus, utcnow
from ..utils.logging_config import get_logger, log_business_event
from .correlation import meeting_status
from .entity_store import EntityStore

logger = get_logger("services.scheduler")


@dataclass
class SweepResult:
    examined: int = 0
    completed: int = 0
    skipped: int = 0

    def to_dict(self):
        return {"examined": self.examined, "completed": self.completed, "skipped": self.skipped}


def meeting_start(date: str, time: str, tz: ZoneInfo) -> datetime:
    """Local wall-clock start of a meeting. Raises ValueError on malformed values."""
    return datetime.strptime(f"{date.strip()} {time.strip()}", "%Y-%m-%d %H:%M").replace(tzinfo=tz)


def sweep_meetings(store: EntityStore, now: Optional[datetime] = None, tz: str = "America/Sao_Paulo") -> SweepResult:
    """
    Mark every scheduled meeting whose start has passed as completed.

    Safe to run repeatedly and alongside other writers: each transition is a
    conditional update from Scheduled.
    """
    now = now or utcnow()
    zone = ZoneInfo(tz)
    result = SweepResult()

    for meeting in store.query(MEETING):
        if meeting_status(meeting) != MeetingStatus.SCHEDULED:
            continue
        result.examined += 1
        meeting_id = meeting.get("meeting_id")

        try:
            start = meeting_start(meeting.get("date") or "", meeting.get("time") or "", zone)
        except (ValueError, TypeError, AttributeError):
            result.skipped += 1
            logger.warning(
                "Skipping meeting with malformed date/time",
                extra={
                    "event": "meeting_sweep_skipped",
                    "meeting_id": meeting_id,
                    "date": meeting.get("date"),
                    "time": meeting.get("time"),
                },
            )
            continue

        if start > now:
            continue

        def complete(doc):
            if meeting_status(doc) != MeetingStatus.SCHEDULED:
                return None
            return {"status": MeetingStatus.COMPLETED.value}

        updated = store.update(MEETING, meeting_id, complete)
        if updated and updated[1]:
            result.completed += 1
            log_business_event("meeting_completed", MEETING, meeting_id)

    if result.completed or result.skipped:
        logger.info("Meeting sweep finished", extra={"event": "meeting_sweep", **result.to_dict()})
    return result


class MeetingSweeper:
    """Runs ``sweep_meetings`` on a daemon thread at a fixed interval."""

    def __init__(self, store: EntityStore, interval_seconds: int = 60, tz: str = "America/Sao_Paulo"):
        self.store = store
        self.interval = interval_seconds
        self.tz = tz
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="notify-meeting-sweeper", daemon=True)
        self._thread.start()
        logger.info("Meeting sweeper started", extra={"event": "sweeper_started", "interval": self.interval})

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None

    def _run(self):
        while not self._stop.is_set():
            try:
                sweep_meetings(self.store, tz=self.tz)
            except Exception as e:
                logger.error(
                    "Meeting sweep failed",
                    extra={"event": "meeting_sweep_error", "error": str(e), "error_type": type(e).__name__},
                    exc_info=True,
                )
            self._stop.wait(self.interval)
