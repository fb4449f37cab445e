"""Per-contest ranking workers.

One worker (queue + daemon thread) per contest, no state shared across contests.
Each recompute builds a complete RankingSnapshot and publishes it by swapping a
single reference; readers never observe a half-built table.

A snapshot is only published if the contest version it was computed from is
still current. Otherwise it is dropped and another recompute is queued, so a
slow computation can never overwrite a newer admin action such as a cancel.
"""
from __future__ import annotations

import logging
import queue
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Protocol, Sequence

from .config import EngineSettings
from .errors import TransientError
from .freeze import freeze_start, in_freeze_window
from .lifecycle import contest_status
from .ranking import RankingSnapshot, SubmissionEvent, compute_ranking, empty_snapshot
from .storage import InMemoryContestStore
from .types import CANCELLED, ENDED, UPCOMING

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


class EventSource(Protocol):
    """Submission Grading service feed."""

    def fetch_events(self, contest_id: str, until: datetime | None = None) -> Sequence[SubmissionEvent]:
        ...


class RankingWorker:
    """Recomputes and publishes the live ranking of a single contest.

    Inside the freeze window a second, frozen snapshot (cutoff at the freeze
    start) is published next to the live one for non-privileged readers.
    Once the contest is ENDED or CANCELLED and its last snapshot is published
    the worker is ``finished`` and its loop exits.
    """

    def __init__(
        self,
        contest_id: str,
        store: InMemoryContestStore,
        events: EventSource,
        settings: EngineSettings | None = None,
        clock: Clock = utc_clock,
        on_finished: Callable[["RankingWorker"], None] | None = None,
    ) -> None:
        self.contest_id = contest_id
        self._store = store
        self._events = events
        self._settings = settings or EngineSettings()
        self._clock = clock
        self._on_finished = on_finished
        self._queue: "queue.Queue[str]" = queue.Queue()
        self._snapshot: RankingSnapshot | None = None
        self._frozen_snapshot: RankingSnapshot | None = None
        self._publish_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_run = 0.0
        self.finished = False
        self.published_count = 0
        self.discarded_count = 0

    @property
    def snapshot(self) -> RankingSnapshot | None:
        with self._publish_lock:
            return self._snapshot

    @property
    def frozen_snapshot(self) -> RankingSnapshot | None:
        with self._publish_lock:
            return self._frozen_snapshot

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name=f"ranking-{self.contest_id}", daemon=True
        )
        self._thread.start()
        logger.info(f"Ranking worker started for contest {self.contest_id}")

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        self._queue.put("stop")
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None

    def notify(self, reason: str = "event") -> None:
        """Request a recompute; bursts are coalesced by the worker loop."""
        self._queue.put(reason)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                reason = self._queue.get(timeout=self._settings.worker_idle_timeout)
            except queue.Empty:
                continue
            if self._stop.is_set():
                break
            # Coalesce everything queued so far into one recompute.
            while True:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break
            wait = self._settings.min_recompute_interval - (time.monotonic() - self._last_run)
            if wait > 0 and self._stop.wait(wait):
                break
            try:
                if not self.recompute():
                    self._queue.put("retry")
            except Exception:
                logger.exception(f"Ranking worker for contest {self.contest_id} failed ({reason})")
            if self.finished:
                logger.info(f"Ranking worker for contest {self.contest_id} finished")
                if self._on_finished is not None:
                    self._on_finished(self)
                break

    def recompute(self) -> bool:
        """Build and publish a fresh snapshot. Returns False if nothing was published."""
        self._last_run = time.monotonic()
        contest = self._store.get(self.contest_id)
        now = self._clock()
        status = contest_status(contest, now)
        if status in {UPCOMING, CANCELLED}:
            published = self.publish(empty_snapshot(contest, now))
        else:
            try:
                events = self._events.fetch_events(self.contest_id, until=now)
            except TransientError as e:
                logger.warning(
                    f"Contest {self.contest_id}: grading service unavailable ({e}); keeping previous snapshot"
                )
                return True
            policy = self._settings.oi_policy
            snapshot = compute_ranking(contest, events, now, oi_policy=policy)
            frozen = None
            if in_freeze_window(contest, now):
                frozen = compute_ranking(
                    contest, events, freeze_start(contest), oi_policy=policy, frozen=True
                )
            published = self.publish(snapshot, frozen)
        if published and status in {ENDED, CANCELLED}:
            self.finished = True
        return published

    def publish(self, snapshot: RankingSnapshot, frozen: RankingSnapshot | None = None) -> bool:
        """Swap in ``snapshot`` (and the frozen view, if any) unless computed against a stale contest version."""
        current = self._store.current_version(self.contest_id)
        with self._publish_lock:
            if snapshot.contest_version != current:
                self.discarded_count += 1
                logger.warning(
                    f"Contest {self.contest_id}: discarding snapshot v{snapshot.contest_version} "
                    f"(current v{current})"
                )
                return False
            self._snapshot = snapshot
            self._frozen_snapshot = frozen
            self.published_count += 1
        logger.info(
            f"Contest {self.contest_id}: published ranking v{snapshot.contest_version} "
            f"({len(snapshot.rows)} rows{', frozen view' if frozen is not None else ''})"
        )
        return True


class RankingWorkerPool:
    """Registry of per-contest workers; holds no ranking state itself.

    Workers of finished contests retire themselves and are dropped here; a
    later notify simply spawns a fresh one.
    """

    def __init__(
        self,
        store: InMemoryContestStore,
        events: EventSource,
        settings: EngineSettings | None = None,
        clock: Clock = utc_clock,
        autostart: bool = True,
    ) -> None:
        self._store = store
        self._events = events
        self._settings = settings or EngineSettings()
        self._clock = clock
        self._autostart = autostart
        self._workers: Dict[str, RankingWorker] = {}
        self._lock = threading.Lock()

    def worker(self, contest_id: str) -> RankingWorker:
        with self._lock:
            worker = self._workers.get(contest_id)
            if worker is None or worker.finished:
                worker = RankingWorker(
                    contest_id,
                    self._store,
                    self._events,
                    self._settings,
                    self._clock,
                    on_finished=self.retire,
                )
                self._workers[contest_id] = worker
                if self._autostart:
                    worker.start()
            return worker

    def get(self, contest_id: str) -> RankingWorker | None:
        """Existing worker for ``contest_id``, without spawning one."""
        with self._lock:
            return self._workers.get(contest_id)

    def active_contests(self) -> List[str]:
        with self._lock:
            return sorted(self._workers)

    def notify(self, contest_id: str, reason: str = "event") -> None:
        self.worker(contest_id).notify(reason)

    def retire(self, worker: RankingWorker) -> None:
        with self._lock:
            if self._workers.get(worker.contest_id) is worker:
                del self._workers[worker.contest_id]
        worker.stop()
        logger.info(f"Ranking worker for contest {worker.contest_id} retired")

    def retire_finished(self) -> List[str]:
        """Drop workers whose contest already has its final snapshot published."""
        with self._lock:
            done = [w for w in self._workers.values() if w.finished]
        for worker in done:
            self.retire(worker)
        return [w.contest_id for w in done]

    def stop_all(self) -> None:
        with self._lock:
            workers = list(self._workers.values())
            self._workers.clear()
        for worker in workers:
            worker.stop()


__all__ = ["EventSource", "RankingWorker", "RankingWorkerPool", "utc_clock"]
