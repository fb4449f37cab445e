"""Freeze controller: decides which cutoff a viewer may see.

- Freeze window is [end - freeze_time, end) and only exists when freeze_time > 0.
- Inside it, non-privileged viewers get the snapshot at end - freeze_time.
- Privileged viewers (contest creator, contest admins, site admins) always get now.
- From end onwards the freeze lifts for everyone and cutoff = end; that
  snapshot is final and cacheable.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from .contest import Contest, is_contest_admin
from .types import ViewerRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Viewer:
    user_id: str | None = None
    role: ViewerRole = "guest"


@dataclass(frozen=True)
class UserInfo:
    user_id: str
    username: str
    is_site_admin: bool = False


class UserDirectory(Protocol):
    def get_user(self, user_id: str) -> UserInfo | None:
        ...


@dataclass(frozen=True)
class CutoffDecision:
    cutoff: datetime
    frozen: bool
    cacheable: bool


def is_privileged(contest: Contest, viewer: Viewer) -> bool:
    if viewer.role in {"admin", "owner"}:
        return True
    return is_contest_admin(contest, viewer.user_id)


def freeze_start(contest: Contest) -> datetime | None:
    if contest.freeze_time <= 0:
        return None
    return contest.end_time - timedelta(minutes=contest.freeze_time)


def in_freeze_window(contest: Contest, now: datetime) -> bool:
    start = freeze_start(contest)
    return start is not None and start <= now < contest.end_time


def can_view_ranking(contest: Contest, viewer: Viewer) -> bool:
    return contest.allow_view_ranking or is_privileged(contest, viewer)


def resolve_cutoff(
    contest: Contest,
    viewer: Viewer,
    now: datetime,
    as_of: datetime | None = None,
) -> CutoffDecision:
    """Pick the cutoff timestamp fed to the ranking engine for this viewer.

    ``as_of`` can only move the cutoff earlier (historical replay), never past
    what the viewer is allowed to see. Only the final standings (cutoff at the
    contest end) are cacheable.
    """
    if now >= contest.end_time:
        allowed, frozen = contest.end_time, False
    elif in_freeze_window(contest, now) and not is_privileged(contest, viewer):
        allowed, frozen = freeze_start(contest), True
    else:
        allowed, frozen = now, False

    cutoff = allowed
    if as_of is not None and as_of < allowed:
        logger.debug(f"Contest {contest.id}: as_of {as_of.isoformat()} narrows cutoff")
        cutoff = as_of
    return CutoffDecision(cutoff=cutoff, frozen=frozen, cacheable=cutoff == contest.end_time)


__all__ = [
    "CutoffDecision",
    "UserDirectory",
    "UserInfo",
    "Viewer",
    "can_view_ranking",
    "freeze_start",
    "in_freeze_window",
    "is_privileged",
    "resolve_cutoff",
]
