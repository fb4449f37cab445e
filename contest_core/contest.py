"""Contest record: configuration, problem binding and admin edits (pure, no DB).

A Contest is an immutable value. Every write goes through pydantic validation
(``InputSanitizer.validate_and_sanitize_contest``) and returns a *new* Contest
with ``version`` bumped; the store swaps the reference atomically.

Key concepts:
- version: Monotonic counter incremented on every accepted write (config edit,
  join, leave, cancel). Ranking workers compare it at publish time to drop
  results computed against an older record.
- Schedule lock: once the contest is RUNNING, schedule, mode and problem edits
  are refused. Cosmetic fields stay editable.
- Problem binding: each label maps to one catalog problem. Weight comes from the
  payload, else the catalog default, else ContestLimits.DEFAULT_PROBLEM_SCORE.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Protocol, Sequence

from .config import ContestLimits
from .errors import AuthorizationError, ConsistencyError, ValidationError
from .types import ContestMode, ContestPayload, ContestType
from .validation import InputSanitizer, ValidatedContest, ValidatedContestProblem

logger = logging.getLogger(__name__)

# Fields that are frozen once the contest has started.
SCHEDULE_FIELDS = frozenset({"startTime", "endTime", "duration", "problems", "mode"})


@dataclass(frozen=True)
class ProblemInfo:
    problem_id: str
    title: str
    default_score: int | None = None


class ProblemCatalog(Protocol):
    def get_problem(self, problem_id: str) -> ProblemInfo | None:
        ...


@dataclass(frozen=True)
class ContestProblem:
    problem_id: str
    label: str
    score: int = ContestLimits.DEFAULT_PROBLEM_SCORE


@dataclass(frozen=True)
class Participant:
    user_id: str
    join_time: datetime
    is_official: bool = True


@dataclass(frozen=True)
class Contest:
    id: str
    title: str
    description: str
    type: ContestType
    mode: ContestMode
    start_time: datetime
    end_time: datetime
    duration: int
    creator: str
    problems: tuple[ContestProblem, ...]
    password: str | None = field(default=None, repr=False)
    admins: frozenset[str] = frozenset()
    participants: tuple[Participant, ...] = ()
    allow_view_others_code: bool = False
    allow_view_ranking: bool = True
    freeze_time: int = 0
    max_participants: int = 0
    total_participants: int = 0
    cancelled: bool = False
    version: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def problem(self, label: str) -> ContestProblem | None:
        for item in self.problems:
            if item.label == label:
                return item
        return None

    @property
    def labels(self) -> tuple[str, ...]:
        return tuple(p.label for p in self.problems)

    def participant(self, user_id: str) -> Participant | None:
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def bind_problems(
    problems: Sequence[ValidatedContestProblem],
    catalog: ProblemCatalog | None = None,
) -> tuple[ContestProblem, ...]:
    """Resolve validated label bindings against the problem catalog.

    Raises:
        ValidationError(kind='unknown_problem') if the catalog does not know a problem.
    """
    bound: list[ContestProblem] = []
    for item in problems:
        weight = item.score
        if catalog is not None:
            info = catalog.get_problem(item.problem)
            if info is None:
                raise ValidationError(
                    "unknown_problem", f"problem {item.problem!r} (label {item.label}) not found"
                )
            if weight is None:
                weight = info.default_score
        if weight is None:
            weight = ContestLimits.DEFAULT_PROBLEM_SCORE
        bound.append(ContestProblem(problem_id=item.problem, label=item.label, score=int(weight)))
    return tuple(bound)


def _apply_validated(contest: Contest, validated: ValidatedContest, bound: tuple[ContestProblem, ...]) -> Contest:
    return replace(
        contest,
        title=validated.title,
        description=validated.description,
        type=validated.type,
        mode=validated.mode,
        password=validated.password,
        start_time=validated.startTime,
        end_time=validated.endTime,
        duration=int(validated.duration or 0),
        admins=frozenset(validated.admins),
        problems=bound,
        allow_view_others_code=validated.allowViewOthersCode,
        allow_view_ranking=validated.allowViewRanking,
        freeze_time=validated.freezeTime,
        max_participants=validated.maxParticipants,
    )


def create_contest(
    payload: ContestPayload,
    creator_id: str,
    *,
    contest_id: str | None = None,
    catalog: ProblemCatalog | None = None,
    now: datetime | None = None,
) -> Contest:
    """Validate a configuration payload and build a new Contest owned by ``creator_id``.

    Args:
        payload: ContestPayload-shaped mapping (camelCase keys).
        creator_id: User id of the creator (always privileged).
        contest_id: Optional id; generated if not provided.
        catalog: Problem catalog used to check bindings and default weights.
        now: Creation timestamp (defaults to current UTC time).

    Raises:
        ValidationError on any invariant violation.
    """
    if not creator_id:
        raise ValidationError("invalid_contest", "creator is required")
    validated = InputSanitizer.validate_and_sanitize_contest(dict(payload))
    bound = bind_problems(validated.problems, catalog)
    stamp = now or _utcnow()
    shell = Contest(
        id=contest_id or str(uuid.uuid4()),
        title="",
        description="",
        type="public",
        mode="acm",
        start_time=validated.startTime,
        end_time=validated.endTime,
        duration=0,
        creator=creator_id,
        problems=(),
        created_at=stamp,
        updated_at=stamp,
    )
    contest = _apply_validated(shell, validated, bound)
    logger.info(
        f"Created contest {contest.id} ({contest.mode}, {len(contest.problems)} problems) by {creator_id}"
    )
    return contest


def contest_to_payload(contest: Contest) -> Dict[str, Any]:
    """Serialize the configuration back to a ContestPayload (includes password)."""
    return {
        "title": contest.title,
        "description": contest.description,
        "type": contest.type,
        "mode": contest.mode,
        "password": contest.password,
        "startTime": contest.start_time,
        "endTime": contest.end_time,
        "duration": contest.duration,
        "admins": sorted(contest.admins),
        "problems": [
            {"problem": p.problem_id, "label": p.label, "score": p.score}
            for p in contest.problems
        ],
        "allowViewOthersCode": contest.allow_view_others_code,
        "allowViewRanking": contest.allow_view_ranking,
        "freezeTime": contest.freeze_time,
        "maxParticipants": contest.max_participants,
    }


def public_view(contest: Contest) -> Dict[str, Any]:
    """Read model for API responses. Never exposes the password."""
    data = contest_to_payload(contest)
    data.pop("password", None)
    data.update(
        {
            "id": contest.id,
            "creator": contest.creator,
            "hasPassword": contest.password is not None,
            "participants": [
                {
                    "user": p.user_id,
                    "joinTime": p.join_time,
                    "isOfficial": p.is_official,
                }
                for p in contest.participants
            ],
            "totalParticipants": contest.total_participants,
            "cancelled": contest.cancelled,
            "version": contest.version,
        }
    )
    return data


def is_contest_admin(contest: Contest, user_id: str | None, *, site_admin: bool = False) -> bool:
    """Creator, listed admins and site administrators may manage a contest."""
    if site_admin:
        return True
    if not user_id:
        return False
    return user_id == contest.creator or user_id in contest.admins


def update_contest(
    contest: Contest,
    changes: ContestPayload,
    actor_id: str,
    *,
    now: datetime | None = None,
    catalog: ProblemCatalog | None = None,
    site_admin: bool = False,
) -> Contest:
    """Apply a partial configuration edit and return the new record.

    The merged configuration is validated as a whole, so cross-field invariants
    (schedule, labels, password) hold after every edit.

    Raises:
        AuthorizationError(kind='not_contest_admin') for non-admin actors.
        ValidationError(kind='contest_cancelled') for edits on a cancelled contest.
        ValidationError(kind='contest_locked') for schedule/problem edits once started.
        ValidationError(kind='invalid_contest') for invariant violations.
    """
    from .lifecycle import contest_status

    if not is_contest_admin(contest, actor_id, site_admin=site_admin):
        raise AuthorizationError("not_contest_admin", f"{actor_id} cannot edit contest {contest.id}")
    if contest.cancelled:
        raise ValidationError("contest_cancelled", f"contest {contest.id} is cancelled")

    stamp = now or _utcnow()
    merged = contest_to_payload(contest)
    merged.update(changes)
    if "endTime" in changes or "startTime" in changes:
        if "duration" not in changes:
            merged["duration"] = None
    validated = InputSanitizer.validate_and_sanitize_contest(merged)
    bound = bind_problems(validated.problems, catalog) if "problems" in changes else contest.problems

    # Compared after normalization: a naive time or an omitted default score is not a change.
    before = {
        "startTime": contest.start_time,
        "endTime": contest.end_time,
        "duration": contest.duration,
        "mode": contest.mode,
        "problems": contest.problems,
    }
    after = {
        "startTime": validated.startTime,
        "endTime": validated.endTime,
        "duration": int(validated.duration or 0),
        "mode": validated.mode,
        "problems": bound,
    }
    locked = {key for key in SCHEDULE_FIELDS if before[key] != after[key]}
    if locked and contest_status(contest, stamp) != "UPCOMING":
        raise ValidationError(
            "contest_locked",
            f"cannot change {sorted(locked)} after contest {contest.id} has started",
        )
    if contest.participants and validated.maxParticipants:
        if validated.maxParticipants < len(contest.participants):
            raise ValidationError(
                "invalid_contest",
                "maxParticipants cannot be lower than the current participant count",
            )

    updated = _apply_validated(contest, validated, bound)
    updated = replace(updated, version=contest.version + 1, updated_at=stamp)
    logger.info(f"Contest {contest.id} updated by {actor_id}: {sorted(changes)}")
    return updated


def add_admin(contest: Contest, actor_id: str, user_id: str, *, site_admin: bool = False) -> Contest:
    """Only the creator (or a site admin) manages the admin list."""
    if not (site_admin or actor_id == contest.creator):
        raise AuthorizationError("not_contest_owner", f"{actor_id} cannot manage admins")
    if not user_id or user_id in contest.admins:
        return contest
    return replace(contest, admins=contest.admins | {user_id}, version=contest.version + 1)


def remove_admin(contest: Contest, actor_id: str, user_id: str, *, site_admin: bool = False) -> Contest:
    if not (site_admin or actor_id == contest.creator):
        raise AuthorizationError("not_contest_owner", f"{actor_id} cannot manage admins")
    if user_id not in contest.admins:
        return contest
    return replace(contest, admins=contest.admins - {user_id}, version=contest.version + 1)


def _duplicates(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    dupes: list[str] = []
    for value in values:
        if value in seen and value not in dupes:
            dupes.append(value)
        seen.add(value)
    return dupes


def check_integrity(contest: Contest) -> None:
    """Detect invariant breaches in a stored record.

    Raises:
        ConsistencyError: duplicate membership, duplicate labels or a stale
        participant counter. Never corrected here.
    """
    dup_users = _duplicates(p.user_id for p in contest.participants)
    if dup_users:
        logger.error(f"Contest {contest.id} has duplicate participants: {dup_users}")
        raise ConsistencyError("duplicate_membership", f"contest {contest.id}: {dup_users}")
    dup_labels = _duplicates(contest.labels)
    if dup_labels:
        logger.error(f"Contest {contest.id} has duplicate labels: {dup_labels}")
        raise ConsistencyError("duplicate_label", f"contest {contest.id}: {dup_labels}")
    if contest.total_participants != len(contest.participants):
        logger.error(
            f"Contest {contest.id} participant counter {contest.total_participants} "
            f"!= {len(contest.participants)}"
        )
        raise ConsistencyError("participant_count_mismatch", f"contest {contest.id}")


__all__ = [
    "Contest",
    "ContestProblem",
    "Participant",
    "ProblemCatalog",
    "ProblemInfo",
    "SCHEDULE_FIELDS",
    "add_admin",
    "bind_problems",
    "check_integrity",
    "contest_to_payload",
    "create_contest",
    "is_contest_admin",
    "public_view",
    "remove_admin",
    "update_contest",
]
