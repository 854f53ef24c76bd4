"""Time-indexed one-shot trigger scheduler.

Pending triggers live in a min-heap keyed by fire time. A single polling
thread (or a caller driving ``run_due`` with a virtual clock) pops whatever is
due and dispatches each callback as its own unit of work.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable

from raidplanner.domain.models import Trigger

logger = logging.getLogger(__name__)

TriggerCallback = Callable[[Trigger], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TriggerScheduler:
    def __init__(
        self,
        clock: Callable[[], datetime] = _utcnow,
        poll_seconds: float = 30.0,
        executor: Executor | None = None,
    ) -> None:
        self.clock = clock
        self.poll_seconds = poll_seconds
        self._executor = executor
        self._owns_executor = False
        self._heap: list[tuple[datetime, int, Trigger, TriggerCallback]] = []
        self._pending: set[tuple[str, str, str]] = set()
        self._counter = itertools.count()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def schedule_at(self, trigger: Trigger, callback: TriggerCallback) -> bool:
        """Register *callback* to run once at or after ``trigger.fires_at``.

        Past-due triggers and triggers whose key is already pending are
        dropped; returns whether the trigger was queued.
        """
        now = self.clock()
        if trigger.fires_at <= now:
            logger.debug("Dropping past-due trigger %s at %s", trigger.key, trigger.fires_at)
            return False
        with self._lock:
            if trigger.key in self._pending:
                return False
            self._pending.add(trigger.key)
            heapq.heappush(
                self._heap, (trigger.fires_at, next(self._counter), trigger, callback)
            )
        logger.info(
            "Scheduled %s trigger %r for raid %s at %s",
            trigger.kind.value,
            trigger.label,
            trigger.raid_id,
            trigger.fires_at.isoformat(),
        )
        return True

    def discard(self, raid_id: str) -> int:
        """Drop every pending trigger of a raid; returns how many were dropped."""
        with self._lock:
            kept = [item for item in self._heap if item[2].raid_id != raid_id]
            dropped = len(self._heap) - len(kept)
            self._heap = kept
            heapq.heapify(self._heap)
            self._pending = {key for key in self._pending if key[0] != raid_id}
        if dropped:
            logger.info("Discarded %d pending triggers for raid %s", dropped, raid_id)
        return dropped

    def pending(self, raid_id: str | None = None) -> list[Trigger]:
        with self._lock:
            items = sorted(self._heap)
        return [t for _, _, t, _ in items if raid_id is None or t.raid_id == raid_id]

    def next_fire_time(self) -> datetime | None:
        with self._lock:
            return self._heap[0][0] if self._heap else None

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    def run_due(self, now: datetime | None = None) -> list[Trigger]:
        """Pop and dispatch every trigger due at *now* (defaults to the clock)."""
        current = now or self.clock()
        due: list[tuple[Trigger, TriggerCallback]] = []
        with self._lock:
            while self._heap and self._heap[0][0] <= current:
                _, _, trigger, callback = heapq.heappop(self._heap)
                self._pending.discard(trigger.key)
                due.append((trigger, callback))

        for trigger, callback in due:
            if self._executor is not None:
                self._executor.submit(self._fire, trigger, callback)
            else:
                self._fire(trigger, callback)
        return [trigger for trigger, _ in due]

    def _fire(self, trigger: Trigger, callback: TriggerCallback) -> None:
        try:
            callback(trigger)
        except Exception:
            logger.exception(
                "Trigger %s for raid %s failed", trigger.kind.value, trigger.raid_id
            )

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None:
            return
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=4, thread_name_prefix="raidplanner-trigger"
            )
            self._owns_executor = True
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="raidplanner-scheduler", daemon=True
        )
        self._thread.start()
        logger.info("Trigger scheduler started (poll every %ss)", self.poll_seconds)

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
            self._owns_executor = False
        logger.info("Trigger scheduler stopped")

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.run_due()
            self._stop.wait(self.poll_seconds)
