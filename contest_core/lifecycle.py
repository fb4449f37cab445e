"""Contest lifecycle: phase is derived from wall-clock time, never stored.

UPCOMING -> RUNNING -> ENDED follows the schedule; CANCELLED is a terminal admin
override. There is no pause.
"""
from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from .contest import Contest, is_contest_admin
from .errors import AuthorizationError
from .types import CANCELLED, ENDED, RUNNING, UPCOMING, ContestStatus

logger = logging.getLogger(__name__)


def contest_status(contest: Contest, now: datetime) -> ContestStatus:
    if contest.cancelled:
        return CANCELLED
    if now < contest.start_time:
        return UPCOMING
    if now < contest.end_time:
        return RUNNING
    return ENDED


def is_running(contest: Contest, now: datetime) -> bool:
    return contest_status(contest, now) == RUNNING


def time_remaining(contest: Contest, now: datetime) -> timedelta:
    """Time left until the end; zero once ended or cancelled."""
    if contest.cancelled or now >= contest.end_time:
        return timedelta(0)
    return contest.end_time - max(now, contest.start_time)


def elapsed_minutes(contest: Contest, at: datetime) -> int:
    """Whole minutes since contest start (floored, clamped at 0)."""
    seconds = (at - contest.start_time).total_seconds()
    if seconds <= 0:
        return 0
    return int(math.floor(seconds / 60))


def cancel_contest(
    contest: Contest,
    actor_id: str,
    *,
    now: datetime | None = None,
    site_admin: bool = False,
) -> Contest:
    """Mark the contest CANCELLED. Idempotent; bumps version on first cancel."""
    if not is_contest_admin(contest, actor_id, site_admin=site_admin):
        raise AuthorizationError("not_contest_admin", f"{actor_id} cannot cancel contest {contest.id}")
    if contest.cancelled:
        return contest
    stamp = now or datetime.now(timezone.utc)
    logger.info(f"Contest {contest.id} cancelled by {actor_id}")
    return replace(contest, cancelled=True, version=contest.version + 1, updated_at=stamp)


__all__ = [
    "cancel_contest",
    "contest_status",
    "elapsed_minutes",
    "is_running",
    "time_remaining",
]
