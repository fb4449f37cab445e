"""
In-memory reference adapters: contest store, graded-event log, catalog and user directory.

The store enforces a single writer per contest: ``mutate`` runs the pure
transition under that contest's lock and swaps the record reference, so a
capacity check and the insert it guards can never interleave with another join.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from .contest import Contest, ProblemInfo
from .errors import ConsistencyError, NotFoundError, TransientError
from .freeze import UserInfo
from .ranking import SubmissionEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InMemoryContestStore:
    """
    Versioned contest records with per-contest writer locks.
    """

    def __init__(self) -> None:
        self._contests: Dict[str, Contest] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, contest_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(contest_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[contest_id] = lock
            return lock

    def add(self, contest: Contest) -> Contest:
        with self._lock_for(contest.id):
            if contest.id in self._contests:
                raise ConsistencyError("duplicate_contest", f"contest {contest.id} already exists")
            self._contests[contest.id] = contest
        logger.info(f"Stored contest {contest.id}")
        return contest

    def get(self, contest_id: str) -> Contest:
        contest = self._contests.get(contest_id)
        if contest is None:
            raise NotFoundError("contest_not_found", f"contest {contest_id} not found")
        return contest

    def current_version(self, contest_id: str) -> int:
        return self.get(contest_id).version

    def mutate(
        self,
        contest_id: str,
        transition: Callable[[Contest], Tuple[Contest, T]],
    ) -> Tuple[Contest, T]:
        """Apply ``transition`` to the latest record under the contest's writer lock.

        ``transition`` returns (new_record, result). The record is replaced only when
        its version moved forward; a version that went backwards is a data fault.
        """
        with self._lock_for(contest_id):
            current = self.get(contest_id)
            updated, result = transition(current)
            if updated is not current:
                if updated.version < current.version:
                    raise ConsistencyError(
                        "version_regression",
                        f"contest {contest_id}: {updated.version} < {current.version}",
                    )
                self._contests[contest_id] = updated
            return updated, result

    def ids(self) -> List[str]:
        return sorted(self._contests)


class InMemoryEventLog:
    """
    Append-only log of graded submission events, sequenced per log.
    """

    def __init__(self) -> None:
        self._events: Dict[str, List[SubmissionEvent]] = {}
        self._lock = threading.Lock()
        self._next_sequence = 1
        self.available = True

    def append(self, event: SubmissionEvent) -> SubmissionEvent:
        with self._lock:
            if event.sequence_id >= self._next_sequence:
                self._next_sequence = event.sequence_id + 1
            self._events.setdefault(event.contest_id, []).append(event)
        return event

    def record(
        self,
        contest_id: str,
        user_id: str,
        problem_label: str,
        verdict: str,
        submitted_at: datetime,
        score: Optional[float] = None,
    ) -> SubmissionEvent:
        """Append an event with the next sequence id."""
        with self._lock:
            sequence_id = self._next_sequence
            self._next_sequence += 1
        event = SubmissionEvent(
            contest_id=contest_id,
            user_id=user_id,
            problem_label=problem_label,
            verdict=verdict,
            submitted_at=submitted_at,
            sequence_id=sequence_id,
            score=score,
        )
        return self.append(event)

    def fetch_events(self, contest_id: str, until: Optional[datetime] = None) -> Tuple[SubmissionEvent, ...]:
        if not self.available:
            raise TransientError("grading_unavailable", "event log is unreachable")
        with self._lock:
            events = list(self._events.get(contest_id, ()))
        if until is not None:
            events = [e for e in events if e.submitted_at <= until]
        return tuple(events)


class InMemoryProblemCatalog:
    def __init__(self, problems: Iterable[ProblemInfo] = ()) -> None:
        self._problems: Dict[str, ProblemInfo] = {p.problem_id: p for p in problems}

    def add(self, problem: ProblemInfo) -> None:
        self._problems[problem.problem_id] = problem

    def get_problem(self, problem_id: str) -> Optional[ProblemInfo]:
        return self._problems.get(problem_id)


class InMemoryUserDirectory:
    def __init__(self, users: Iterable[UserInfo] = ()) -> None:
        self._users: Dict[str, UserInfo] = {u.user_id: u for u in users}

    def add(self, user: UserInfo) -> None:
        self._users[user.user_id] = user

    def get_user(self, user_id: str) -> Optional[UserInfo]:
        return self._users.get(user_id)


__all__ = [
    "InMemoryContestStore",
    "InMemoryEventLog",
    "InMemoryProblemCatalog",
    "InMemoryUserDirectory",
]
