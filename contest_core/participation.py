"""Join/leave eligibility and membership mutation (pure).

Returns outcomes instead of raising: refusals are expected business results.
Callers must run these functions under the per-contest writer lock
(``InMemoryContestStore.mutate``) so the capacity check and insert are one step.

Official rule: joining before start is official; joining while RUNNING is allowed
as open participation but the participant is unofficial and excluded from the
official ranking.
"""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass, replace
from datetime import datetime

from .contest import Contest, Participant, check_integrity
from .lifecycle import contest_status
from .types import CANCELLED, ENDED, UPCOMING, JoinStatus, LeaveStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParticipationOutcome:
    """Result of a join/leave attempt. ``contest`` is the (possibly unchanged) record."""

    status: str
    contest: Contest

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def password_matches(contest: Contest, candidate: str | None) -> bool:
    if contest.password is None:
        return False
    if candidate is None:
        return False
    return hmac.compare_digest(contest.password.encode("utf-8"), candidate.encode("utf-8"))


def can_join(contest: Contest, user_id: str, now: datetime) -> bool:
    """Cheap pre-check for UIs; ``join_contest`` stays authoritative."""
    if contest_status(contest, now) in {ENDED, CANCELLED}:
        return False
    if contest.participant(user_id) is not None:
        return False
    if contest.max_participants > 0 and len(contest.participants) >= contest.max_participants:
        return False
    return True


def join_contest(
    contest: Contest,
    user_id: str,
    now: datetime,
    password: str | None = None,
) -> ParticipationOutcome:
    """Try to add ``user_id`` as a participant.

    Checks, in order: closed -> unauthorized -> already_joined -> full.
    """
    check_integrity(contest)
    status: JoinStatus
    if contest_status(contest, now) in {ENDED, CANCELLED}:
        status = "closed"
    elif contest.type == "protected" and not password_matches(contest, password):
        status = "unauthorized"
    elif contest.participant(user_id) is not None:
        status = "already_joined"
    elif contest.max_participants > 0 and len(contest.participants) >= contest.max_participants:
        status = "full"
    else:
        participant = Participant(
            user_id=user_id,
            join_time=now,
            is_official=now < contest.start_time,
        )
        participants = contest.participants + (participant,)
        updated = replace(
            contest,
            participants=participants,
            total_participants=len(participants),
            version=contest.version + 1,
            updated_at=now,
        )
        logger.info(
            f"User {user_id} joined contest {contest.id} "
            f"({'official' if participant.is_official else 'unofficial'})"
        )
        return ParticipationOutcome(status="ok", contest=updated)

    logger.info(f"Join refused for {user_id} on contest {contest.id}: {status}")
    return ParticipationOutcome(status=status, contest=contest)


def leave_contest(contest: Contest, user_id: str, now: datetime) -> ParticipationOutcome:
    """Remove a participant. Only allowed while the contest is UPCOMING."""
    check_integrity(contest)
    status: LeaveStatus
    if contest_status(contest, now) != UPCOMING:
        status = "closed"
    elif contest.participant(user_id) is None:
        status = "not_joined"
    else:
        participants = tuple(p for p in contest.participants if p.user_id != user_id)
        updated = replace(
            contest,
            participants=participants,
            total_participants=len(participants),
            version=contest.version + 1,
            updated_at=now,
        )
        logger.info(f"User {user_id} left contest {contest.id}")
        return ParticipationOutcome(status="ok", contest=updated)

    logger.info(f"Leave refused for {user_id} on contest {contest.id}: {status}")
    return ParticipationOutcome(status=status, contest=contest)


__all__ = [
    "ParticipationOutcome",
    "can_join",
    "join_contest",
    "leave_contest",
    "password_matches",
]
