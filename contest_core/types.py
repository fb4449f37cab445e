"""Type definitions for contest configuration payloads and shared literals."""
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional, TypedDict


ContestType = Literal["public", "private", "protected"]
ContestMode = Literal["acm", "oi"]
ContestStatus = Literal["UPCOMING", "RUNNING", "ENDED", "CANCELLED"]
Verdict = Literal["Accepted", "Rejected", "Pending"]
CellStatus = Literal["not_attempted", "wrong", "accepted"]
ViewerRole = Literal["admin", "owner", "participant", "guest"]
JoinStatus = Literal["ok", "unauthorized", "already_joined", "full", "closed"]
LeaveStatus = Literal["ok", "closed", "not_joined"]

UPCOMING: ContestStatus = "UPCOMING"
RUNNING: ContestStatus = "RUNNING"
ENDED: ContestStatus = "ENDED"
CANCELLED: ContestStatus = "CANCELLED"


class ContestProblemPayload(TypedDict, total=False):
    """A problem binding as sent by the admin UI."""
    problem: str
    label: str
    score: Optional[int]


class ContestPayload(TypedDict, total=False):
    """
    TypedDict for contest create/update payloads.

    All fields are optional (total=False) because updates are partial; create
    requires the schedule, problems and title.
    """
    title: str
    description: str
    type: ContestType
    mode: ContestMode
    password: Optional[str]

    # Schedule
    startTime: datetime
    endTime: datetime
    duration: Optional[int]  # Minutes; must match endTime - startTime when given

    admins: List[str]
    problems: List[ContestProblemPayload]

    # Options
    allowViewOthersCode: bool
    allowViewRanking: bool
    freezeTime: int  # Minutes before end
    maxParticipants: int  # 0 = unlimited


class SubmissionEventPayload(TypedDict, total=False):
    """Graded submission as delivered by the grading service."""
    contestId: str
    userId: str
    problemLabel: str
    verdict: Verdict
    score: Optional[float]
    submittedAt: datetime
    sequenceId: int
