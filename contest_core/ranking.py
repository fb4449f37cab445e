"""Contest ranking engine (ACM and OI scoring, competition ranking).

Pure function over an immutable event log:
- Events are replayed in (submitted_at, sequence_id) order; first accepted wins.
- Accumulators are built fresh per call and never shared; the result is an
  immutable RankingSnapshot that callers publish by reference swap.
- Rows with identical (primary, secondary) keys share a rank; user_id only
  fixes the display order inside a tie.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from .config import ContestLimits, OiPolicy
from .contest import Contest
from .lifecycle import elapsed_minutes
from .types import CellStatus, ContestMode, SubmissionEventPayload, Verdict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionEvent:
    contest_id: str
    user_id: str
    problem_label: str
    verdict: Verdict
    submitted_at: datetime
    sequence_id: int
    score: float | None = None

    @classmethod
    def from_payload(cls, payload: SubmissionEventPayload) -> "SubmissionEvent":
        """Build from a validated SubmissionEventPayload-shaped mapping."""
        from .validation import InputSanitizer

        v = InputSanitizer.validate_event(dict(payload))
        return cls(
            contest_id=v.contestId,
            user_id=v.userId,
            problem_label=v.problemLabel,
            verdict=v.verdict,
            submitted_at=v.submittedAt,
            sequence_id=v.sequenceId,
            score=v.score,
        )


@dataclass(frozen=True)
class ProblemCell:
    label: str
    status: CellStatus
    attempts: int
    score: float
    penalty: int
    accept_time: int | None


@dataclass(frozen=True)
class RankingRow:
    user_id: str
    rank: int
    solved_count: int
    total_score: float
    total_penalty: int
    last_accept_time: int
    is_official: bool
    cells: tuple[ProblemCell, ...]

    def cell(self, label: str) -> ProblemCell | None:
        for c in self.cells:
            if c.label == label:
                return c
        return None


@dataclass(frozen=True)
class RankingSnapshot:
    contest_id: str
    contest_version: int
    mode: ContestMode
    cutoff: datetime
    rows: tuple[RankingRow, ...]
    frozen: bool = False
    computed_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False
    )

    def row_for(self, user_id: str) -> RankingRow | None:
        for row in self.rows:
            if row.user_id == user_id:
                return row
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "contestId": self.contest_id,
            "version": self.contest_version,
            "mode": self.mode,
            "cutoff": self.cutoff.isoformat(),
            "frozen": self.frozen,
            "rows": [
                {
                    "userId": row.user_id,
                    "rank": row.rank,
                    "solvedCount": row.solved_count,
                    "totalScore": row.total_score,
                    "totalPenalty": row.total_penalty,
                    "isOfficial": row.is_official,
                    "problems": [
                        {
                            "label": c.label,
                            "status": c.status,
                            "attempts": c.attempts,
                            "score": c.score,
                            "penalty": c.penalty,
                            "acceptTime": c.accept_time,
                        }
                        for c in row.cells
                    ],
                }
                for row in self.rows
            ],
        }


@dataclass
class _CellAcc:
    label: str
    weight: int
    status: CellStatus = "not_attempted"
    attempts: int = 0
    score: float = 0.0
    penalty: int = 0
    accept_time: int | None = None


@dataclass
class _UserAcc:
    user_id: str
    is_official: bool
    cells: dict[str, _CellAcc]
    solved_count: int = 0
    total_score: float = 0.0
    total_penalty: int = 0

    def last_accept_time(self) -> int:
        times = [c.accept_time for c in self.cells.values() if c.accept_time is not None]
        return max(times) if times else 0


def ordered_events(events: Iterable[SubmissionEvent]) -> list[SubmissionEvent]:
    return sorted(events, key=lambda e: (e.submitted_at, e.sequence_id))


def _new_user(contest: Contest, user_id: str, is_official: bool) -> _UserAcc:
    return _UserAcc(
        user_id=user_id,
        is_official=is_official,
        cells={p.label: _CellAcc(label=p.label, weight=p.score) for p in contest.problems},
    )


def _apply_accepted(
    contest: Contest,
    user: _UserAcc,
    cell: _CellAcc,
    event: SubmissionEvent,
    oi_policy: OiPolicy,
) -> None:
    accept_time = elapsed_minutes(contest, event.submitted_at)
    if cell.status == "accepted":
        # Only OI "max" lets a later accepted run improve a solved problem.
        if contest.mode == "oi" and oi_policy == "max":
            new_score = float(event.score or 0.0)
            if new_score > cell.score:
                user.total_score += new_score - cell.score
                cell.score = new_score
                cell.accept_time = accept_time
        return

    cell.status = "accepted"
    cell.accept_time = accept_time
    user.solved_count += 1
    if contest.mode == "acm":
        cell.score = float(cell.weight)
        cell.penalty = accept_time + ContestLimits.WRONG_ATTEMPT_PENALTY_MINUTES * (cell.attempts - 1)
        user.total_penalty += cell.penalty
    else:
        cell.score = float(event.score or 0.0)
    user.total_score += cell.score


def _replay(
    contest: Contest,
    events: Iterable[SubmissionEvent],
    users: dict[str, _UserAcc],
    upper: datetime,
    oi_policy: OiPolicy,
) -> None:
    seen_sequences: set[int] = set()
    for event in ordered_events(events):
        if event.contest_id != contest.id:
            continue
        if event.verdict == "Pending":
            continue
        if event.submitted_at < contest.start_time or event.submitted_at > upper:
            continue
        user = users.get(event.user_id)
        if user is None:
            continue
        cell = user.cells.get(event.problem_label)
        if cell is None:
            logger.debug(
                f"Contest {contest.id}: event {event.sequence_id} targets unbound label {event.problem_label}"
            )
            continue
        if event.sequence_id in seen_sequences:
            logger.debug(f"Contest {contest.id}: duplicate event {event.sequence_id} ignored")
            continue
        seen_sequences.add(event.sequence_id)

        cell.attempts += 1
        if event.verdict == "Accepted":
            _apply_accepted(contest, user, cell, event, oi_policy)
        elif cell.status == "not_attempted":
            cell.status = "wrong"


def _rank_key(mode: ContestMode, user: _UserAcc) -> tuple[float, float]:
    if mode == "acm":
        return (-user.solved_count, user.total_penalty)
    return (-user.total_score, user.last_accept_time())


def _to_row(user: _UserAcc, rank: int) -> RankingRow:
    return RankingRow(
        user_id=user.user_id,
        rank=rank,
        solved_count=user.solved_count,
        total_score=user.total_score,
        total_penalty=user.total_penalty,
        last_accept_time=user.last_accept_time(),
        is_official=user.is_official,
        cells=tuple(
            ProblemCell(
                label=c.label,
                status=c.status,
                attempts=c.attempts,
                score=c.score,
                penalty=c.penalty,
                accept_time=c.accept_time,
            )
            for c in user.cells.values()
        ),
    )


def _assign_ranks(mode: ContestMode, ranked: Sequence[_UserAcc]) -> list[RankingRow]:
    ordered = sorted(ranked, key=lambda u: (_rank_key(mode, u), u.user_id))
    rows: list[RankingRow] = []
    previous_key = None
    rank = 0
    for pos, user in enumerate(ordered, start=1):
        key = _rank_key(mode, user)
        if key != previous_key:
            rank = pos
            previous_key = key
        rows.append(_to_row(user, rank))
    return rows


def _place_outside(
    mode: ContestMode, ranked: Sequence[_UserAcc], user: _UserAcc
) -> RankingRow:
    # Rank against the ranked rows without displacing them.
    key = _rank_key(mode, user)
    better = sum(1 for other in ranked if _rank_key(mode, other) < key)
    return _to_row(user, better + 1)


def empty_snapshot(contest: Contest, cutoff: datetime, *, frozen: bool = False) -> RankingSnapshot:
    """Snapshot with no rows (contest not started or cancelled)."""
    return RankingSnapshot(
        contest_id=contest.id,
        contest_version=contest.version,
        mode=contest.mode,
        cutoff=min(cutoff, contest.end_time),
        rows=(),
        frozen=frozen,
    )


def compute_ranking(
    contest: Contest,
    events: Iterable[SubmissionEvent],
    cutoff: datetime,
    *,
    include_unofficial: bool = False,
    extra_user_ids: Sequence[str] = (),
    oi_policy: OiPolicy = "first_accepted",
    frozen: bool = False,
) -> RankingSnapshot:
    """
    Compute a ranking snapshot for ``contest`` from events up to ``cutoff``.

    Args:
      contest: contest record (read only).
      events: submission events; order does not matter, they are replayed sorted.
      cutoff: events submitted after this instant are ignored (clamped to end_time).
      include_unofficial: rank unofficial participants together with official ones.
      extra_user_ids: unofficial participants to show next to the official table
        (e.g. the viewer's own row) without shifting official ranks.
      oi_policy: 'first_accepted' keeps the first accepted score, 'max' the best.
      frozen: carried into the snapshot for display.
    """
    upper = min(cutoff, contest.end_time)
    users: dict[str, _UserAcc] = {}
    outside: list[str] = []
    for participant in contest.participants:
        if participant.is_official or include_unofficial:
            users[participant.user_id] = _new_user(contest, participant.user_id, participant.is_official)
    for user_id in extra_user_ids:
        participant = contest.participant(user_id)
        if participant is None or user_id in users:
            continue
        users[user_id] = _new_user(contest, user_id, participant.is_official)
        outside.append(user_id)

    _replay(contest, events, users, upper, oi_policy)

    ranked = [u for uid, u in users.items() if uid not in outside]
    rows = _assign_ranks(contest.mode, ranked)
    if outside:
        extra_rows = [_place_outside(contest.mode, ranked, users[uid]) for uid in outside]
        keyed = {row.user_id: _rank_key(contest.mode, users[row.user_id]) for row in rows + extra_rows}
        rows = sorted(
            rows + extra_rows,
            key=lambda r: (r.rank, keyed[r.user_id], not r.is_official, r.user_id),
        )

    logger.debug(
        f"Ranking for contest {contest.id} v{contest.version} at {upper.isoformat()}: {len(rows)} rows"
    )
    return RankingSnapshot(
        contest_id=contest.id,
        contest_version=contest.version,
        mode=contest.mode,
        cutoff=upper,
        rows=tuple(rows),
        frozen=frozen,
    )


__all__ = [
    "ProblemCell",
    "RankingRow",
    "RankingSnapshot",
    "SubmissionEvent",
    "compute_ranking",
    "empty_snapshot",
    "ordered_events",
]
