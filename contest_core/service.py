"""Contest service facade: the operations exposed to the API layer.

Wires the pure core (contest record, lifecycle, participation, ranking, freeze)
to the store, the grading event feed and the per-contest ranking workers.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Tuple

from .config import EngineSettings
from .contest import (
    Contest,
    ProblemCatalog,
    add_admin,
    create_contest,
    public_view,
    remove_admin,
    update_contest,
)
from .errors import AuthorizationError, TransientError
from .freeze import CutoffDecision, UserDirectory, Viewer, can_view_ranking, resolve_cutoff
from .lifecycle import cancel_contest, contest_status
from .participation import join_contest, leave_contest
from .ranking import RankingSnapshot, SubmissionEvent, compute_ranking, empty_snapshot
from .storage import InMemoryContestStore
from .types import CANCELLED, UPCOMING, ContestPayload, ContestStatus
from .worker import Clock, EventSource, RankingWorkerPool, utc_clock

logger = logging.getLogger(__name__)

_CacheKey = Tuple[str, int, bool, Tuple[str, ...]]


class ContestService:
    def __init__(
        self,
        store: InMemoryContestStore,
        events: EventSource,
        *,
        catalog: ProblemCatalog | None = None,
        users: UserDirectory | None = None,
        settings: EngineSettings | None = None,
        clock: Clock = utc_clock,
        start_workers: bool = True,
    ) -> None:
        self.store = store
        self.events = events
        self.catalog = catalog
        self.users = users
        self.settings = settings or EngineSettings()
        self.clock = clock
        self.workers = RankingWorkerPool(
            store, events, self.settings, clock, autostart=start_workers
        )
        self._final_cache: Dict[_CacheKey, RankingSnapshot] = {}
        self._last_good: Dict[Tuple[str, bool, bool], RankingSnapshot] = {}
        self._cache_lock = threading.Lock()

    # ==================== CONFIGURATION ====================

    def _is_site_admin(self, user_id: str | None) -> bool:
        if not user_id or self.users is None:
            return False
        info = self.users.get_user(user_id)
        return bool(info and info.is_site_admin)

    def create_contest(self, payload: ContestPayload, creator_id: str) -> Contest:
        contest = create_contest(payload, creator_id, catalog=self.catalog, now=self.clock())
        return self.store.add(contest)

    def get_contest(self, contest_id: str) -> Contest:
        return self.store.get(contest_id)

    def public_view(self, contest_id: str) -> Dict[str, Any]:
        return public_view(self.store.get(contest_id))

    def update_contest(self, contest_id: str, changes: ContestPayload, actor_id: str) -> Contest:
        site_admin = self._is_site_admin(actor_id)
        now = self.clock()

        def transition(contest: Contest):
            return (
                update_contest(
                    contest, changes, actor_id, now=now, catalog=self.catalog, site_admin=site_admin
                ),
                None,
            )

        updated, _ = self.store.mutate(contest_id, transition)
        self.workers.notify(contest_id, "config")
        return updated

    def cancel_contest(self, contest_id: str, actor_id: str) -> Contest:
        site_admin = self._is_site_admin(actor_id)
        now = self.clock()
        updated, _ = self.store.mutate(
            contest_id,
            lambda c: (cancel_contest(c, actor_id, now=now, site_admin=site_admin), None),
        )
        self.workers.notify(contest_id, "cancel")
        return updated

    def add_admin(self, contest_id: str, actor_id: str, user_id: str) -> Contest:
        site_admin = self._is_site_admin(actor_id)
        updated, _ = self.store.mutate(
            contest_id, lambda c: (add_admin(c, actor_id, user_id, site_admin=site_admin), None)
        )
        return updated

    def remove_admin(self, contest_id: str, actor_id: str, user_id: str) -> Contest:
        site_admin = self._is_site_admin(actor_id)
        updated, _ = self.store.mutate(
            contest_id, lambda c: (remove_admin(c, actor_id, user_id, site_admin=site_admin), None)
        )
        return updated

    # ==================== LIFECYCLE & MEMBERSHIP ====================

    def get_contest_status(self, contest_id: str) -> ContestStatus:
        return contest_status(self.store.get(contest_id), self.clock())

    def join_contest(self, contest_id: str, user_id: str, password: str | None = None) -> str:
        now = self.clock()

        def transition(contest: Contest):
            outcome = join_contest(contest, user_id, now, password)
            return outcome.contest, outcome.status

        _, status = self.store.mutate(contest_id, transition)
        if status == "ok":
            self.workers.notify(contest_id, "join")
        return status

    def leave_contest(self, contest_id: str, user_id: str) -> str:
        now = self.clock()

        def transition(contest: Contest):
            outcome = leave_contest(contest, user_id, now)
            return outcome.contest, outcome.status

        _, status = self.store.mutate(contest_id, transition)
        if status == "ok":
            self.workers.notify(contest_id, "leave")
        return status

    # ==================== RANKING ====================

    def submit_event(self, event: SubmissionEvent) -> None:
        """Record a graded event (if the feed supports it) and wake the contest's worker."""
        append = getattr(self.events, "append", None)
        if append is not None:
            append(event)
        if event.verdict != "Pending":
            self.workers.notify(event.contest_id, "event")

    def _as_viewer(self, viewer: Viewer) -> Viewer:
        if viewer.role != "admin" and self._is_site_admin(viewer.user_id):
            return replace(viewer, role="admin")
        return viewer

    def _published(self, contest: Contest, decision: CutoffDecision) -> RankingSnapshot | None:
        """Worker snapshot matching ``decision``, if one of the current version exists."""
        worker = self.workers.get(contest.id)
        if worker is None:
            return None
        snapshot = worker.frozen_snapshot if decision.frozen else worker.snapshot
        if snapshot is None or snapshot.contest_version != contest.version:
            return None
        if snapshot.frozen != decision.frozen or snapshot.cutoff > decision.cutoff:
            return None
        # Frozen and final views are pinned to one instant; live views may lag.
        if (decision.frozen or decision.cacheable) and snapshot.cutoff != decision.cutoff:
            return None
        return snapshot

    def live_snapshot(self, contest_id: str, viewer: Viewer) -> RankingSnapshot | None:
        """Latest worker-published ranking this viewer may see, or None before the first publish.

        Non-privileged viewers get the frozen view inside the freeze window.
        """
        viewer = self._as_viewer(viewer)
        contest = self.store.get(contest_id)
        if not can_view_ranking(contest, viewer):
            raise AuthorizationError("ranking_hidden", f"ranking of contest {contest_id} is hidden")
        decision = resolve_cutoff(contest, viewer, self.clock())
        worker = self.workers.get(contest_id)
        if worker is None:
            return None
        snapshot = worker.frozen_snapshot if decision.frozen else worker.snapshot
        if snapshot is not None and snapshot.cutoff > decision.cutoff:
            return None
        return snapshot

    def get_ranking(
        self,
        contest_id: str,
        viewer: Viewer,
        as_of: datetime | None = None,
        include_unofficial: bool = False,
    ) -> RankingSnapshot:
        """Ranking as this viewer is allowed to see it right now.

        The default view is served from the contest worker's published snapshot
        when it matches the current contest version; anything else (replays,
        unofficial rows, no worker yet) is computed on the spot.

        Raises:
            AuthorizationError(kind='ranking_hidden') when the contest hides its
            ranking from non-privileged viewers.
            TransientError when the grading service is down and no earlier
            snapshot of the same contest version can be served instead.
        """
        viewer = self._as_viewer(viewer)
        contest = self.store.get(contest_id)
        now = self.clock()
        if not can_view_ranking(contest, viewer):
            raise AuthorizationError("ranking_hidden", f"ranking of contest {contest_id} is hidden")

        decision = resolve_cutoff(contest, viewer, now, as_of)
        status = contest_status(contest, now)
        if status in {UPCOMING, CANCELLED}:
            return empty_snapshot(contest, decision.cutoff, frozen=decision.frozen)

        # An unofficial participant still sees their own row next to the official table.
        extra: Tuple[str, ...] = ()
        if viewer.user_id and not include_unofficial:
            participant = contest.participant(viewer.user_id)
            if participant is not None and not participant.is_official:
                extra = (viewer.user_id,)

        key: _CacheKey = (contest.id, contest.version, include_unofficial, extra)
        use_cache = decision.cacheable and self.settings.cache_final_snapshots
        if use_cache:
            with self._cache_lock:
                cached = self._final_cache.get(key)
            if cached is not None:
                return cached

        default_view = as_of is None and not include_unofficial and not extra
        if default_view:
            published = self._published(contest, decision)
            if published is not None:
                if use_cache:
                    self._remember_final(key, published)
                return published

        stale_key = (contest.id, decision.frozen, include_unofficial)
        try:
            events = self.events.fetch_events(contest.id, until=decision.cutoff)
        except TransientError:
            fallback = None
            if as_of is None and not extra:
                with self._cache_lock:
                    fallback = self._last_good.get(stale_key)
            if fallback is None or fallback.contest_version != contest.version:
                raise
            logger.warning(f"Contest {contest_id}: grading service unavailable, serving stale ranking")
            return fallback
        snapshot = compute_ranking(
            contest,
            events,
            decision.cutoff,
            include_unofficial=include_unofficial,
            extra_user_ids=extra,
            oi_policy=self.settings.oi_policy,
            frozen=decision.frozen,
        )
        # Only the plain per-viewer-class views are kept as outage fallbacks.
        if as_of is None and not extra:
            with self._cache_lock:
                self._last_good[stale_key] = snapshot
        if use_cache:
            self._remember_final(key, snapshot)
        return snapshot

    def _remember_final(self, key: _CacheKey, snapshot: RankingSnapshot) -> None:
        contest_id, version = key[0], key[1]
        with self._cache_lock:
            for old in [k for k in self._final_cache if k[0] == contest_id and k[1] != version]:
                del self._final_cache[old]
            self._final_cache[key] = snapshot

    def close(self) -> None:
        self.workers.stop_all()


__all__ = ["ContestService"]
