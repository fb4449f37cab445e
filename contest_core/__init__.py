from .config import ContestLimits, EngineSettings
from .contest import (
    Contest,
    ContestProblem,
    Participant,
    ProblemCatalog,
    ProblemInfo,
    add_admin,
    check_integrity,
    create_contest,
    is_contest_admin,
    public_view,
    remove_admin,
    update_contest,
)
from .errors import (
    AuthorizationError,
    ConsistencyError,
    ContestError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from .freeze import CutoffDecision, UserDirectory, UserInfo, Viewer, can_view_ranking, resolve_cutoff
from .lifecycle import cancel_contest, contest_status
from .participation import ParticipationOutcome, can_join, join_contest, leave_contest
from .ranking import (
    ProblemCell,
    RankingRow,
    RankingSnapshot,
    SubmissionEvent,
    compute_ranking,
)
from .service import ContestService
from .storage import (
    InMemoryContestStore,
    InMemoryEventLog,
    InMemoryProblemCatalog,
    InMemoryUserDirectory,
)
from .types import ContestPayload, SubmissionEventPayload
from .validation import InputSanitizer, ValidatedContest, ValidatedSubmissionEvent
from .worker import EventSource, RankingWorker, RankingWorkerPool

__all__ = [
    "AuthorizationError",
    "ConsistencyError",
    "Contest",
    "ContestError",
    "ContestLimits",
    "ContestPayload",
    "ContestProblem",
    "ContestService",
    "CutoffDecision",
    "EngineSettings",
    "EventSource",
    "InMemoryContestStore",
    "InMemoryEventLog",
    "InMemoryProblemCatalog",
    "InMemoryUserDirectory",
    "InputSanitizer",
    "NotFoundError",
    "Participant",
    "ParticipationOutcome",
    "ProblemCatalog",
    "ProblemCell",
    "ProblemInfo",
    "RankingRow",
    "RankingSnapshot",
    "RankingWorker",
    "RankingWorkerPool",
    "SubmissionEvent",
    "SubmissionEventPayload",
    "TransientError",
    "UserDirectory",
    "UserInfo",
    "ValidatedContest",
    "ValidatedSubmissionEvent",
    "ValidationError",
    "Viewer",
    "add_admin",
    "can_join",
    "can_view_ranking",
    "cancel_contest",
    "check_integrity",
    "compute_ranking",
    "contest_status",
    "create_contest",
    "is_contest_admin",
    "join_contest",
    "leave_contest",
    "public_view",
    "remove_admin",
    "resolve_cutoff",
    "update_contest",
]
