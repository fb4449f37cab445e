"""
Input validation schemas using Pydantic v2
Validates contest configuration writes and incoming submission events
"""

import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .config import ContestLimits
from .errors import ValidationError
from .types import ContestMode, ContestType, Verdict

logger = logging.getLogger(__name__)

_LABEL_RE = re.compile(ContestLimits.LABEL_PATTERN)

# ==================== VALIDATOR FUNCTIONS ====================


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are interpreted as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ValidatedContestProblem(BaseModel):
    """Single label -> problem binding"""

    problem: str = Field(..., min_length=1, max_length=64, description="Problem id")
    label: str = Field(..., description="Single uppercase letter A-Z")
    score: Optional[int] = Field(
        None,
        ge=ContestLimits.MIN_PROBLEM_SCORE,
        le=ContestLimits.MAX_PROBLEM_SCORE,
        description="OI score weight (catalog default when absent)",
    )

    @field_validator("label")
    @classmethod
    def validate_label(cls, v: str) -> str:
        v = v.strip()
        if not _LABEL_RE.match(v):
            raise ValueError(f"label must match {ContestLimits.LABEL_PATTERN}, got {v!r}")
        return v

    @field_validator("problem")
    @classmethod
    def validate_problem(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("problem id cannot be empty")
        return v


class ValidatedContest(BaseModel):
    """Full contest configuration with every write-time invariant enforced"""

    title: str = Field(..., min_length=1, max_length=ContestLimits.MAX_TITLE_LENGTH)
    description: str = Field(
        ..., min_length=1, max_length=ContestLimits.MAX_DESCRIPTION_LENGTH
    )
    type: ContestType = "public"
    mode: ContestMode = "acm"
    password: Optional[str] = Field(None, max_length=ContestLimits.MAX_PASSWORD_LENGTH)

    startTime: datetime
    endTime: datetime
    duration: Optional[int] = Field(None, description="Minutes; derived when absent")

    admins: List[str] = Field(default_factory=list)
    problems: List[ValidatedContestProblem] = Field(
        ...,
        min_length=ContestLimits.MIN_PROBLEMS,
        max_length=ContestLimits.MAX_PROBLEMS,
    )

    allowViewOthersCode: bool = False
    allowViewRanking: bool = True
    freezeTime: int = Field(0, ge=0, le=ContestLimits.MAX_FREEZE_MINUTES)
    maxParticipants: int = Field(0, ge=0, le=1_000_000)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate title is non-blank and carries no markup"""
        v = v.strip()
        if len(v) == 0:
            raise ValueError("title cannot be empty")
        if "<" in v and ">" in v:
            raise ValueError("title contains HTML tags")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        # Empty string from forms means "no password".
        return v or None

    @field_validator("startTime", "endTime")
    @classmethod
    def normalize_times(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("admins")
    @classmethod
    def validate_admins(cls, v: List[str]) -> List[str]:
        seen: List[str] = []
        for admin in v:
            admin = admin.strip()
            if admin and admin not in seen:
                seen.append(admin)
        return seen

    @model_validator(mode="after")
    def validate_schedule_and_bindings(self) -> Self:
        """Cross-field invariants: schedule, labels, password"""
        if self.endTime <= self.startTime:
            raise ValueError("endTime must be later than startTime")

        seconds = (self.endTime - self.startTime).total_seconds()
        if seconds % 60:
            raise ValueError("contest length must be a whole number of minutes")
        derived = int(seconds // 60)
        if self.duration is not None and self.duration != derived:
            raise ValueError(
                f"duration {self.duration} does not match endTime - startTime ({derived})"
            )
        if not (
            ContestLimits.MIN_DURATION_MINUTES
            <= derived
            <= ContestLimits.MAX_DURATION_MINUTES
        ):
            raise ValueError(
                f"duration must be between {ContestLimits.MIN_DURATION_MINUTES} and "
                f"{ContestLimits.MAX_DURATION_MINUTES} minutes, got {derived}"
            )
        self.duration = derived

        if self.freezeTime > derived:
            raise ValueError("freezeTime cannot exceed the contest duration")

        labels = [p.label for p in self.problems]
        if len(labels) != len(set(labels)):
            raise ValueError("problem labels must be unique")

        if self.type == "protected":
            if not self.password:
                raise ValueError("protected contests require a password")
        elif self.password is not None:
            raise ValueError("password is only allowed on protected contests")

        return self

    model_config = ConfigDict(extra="forbid")


class ValidatedSubmissionEvent(BaseModel):
    """Graded submission event from the grading service"""

    contestId: str = Field(..., min_length=1, max_length=64)
    userId: str = Field(..., min_length=1, max_length=64)
    problemLabel: str
    verdict: Verdict
    score: Optional[float] = Field(None, ge=0.0, le=float(ContestLimits.MAX_PROBLEM_SCORE))
    submittedAt: datetime
    sequenceId: int = Field(..., ge=0)

    @field_validator("problemLabel")
    @classmethod
    def validate_label(cls, v: str) -> str:
        v = v.strip()
        if not _LABEL_RE.match(v):
            raise ValueError(f"problemLabel must match {ContestLimits.LABEL_PATTERN}")
        return v

    @field_validator("submittedAt")
    @classmethod
    def normalize_time(cls, v: datetime) -> datetime:
        return _as_utc(v)

    model_config = ConfigDict(extra="ignore")


class InputSanitizer:
    """Utility class for input sanitization"""

    @staticmethod
    def sanitize_string(value: str, max_length: int = 255) -> str:
        """Sanitize string input"""
        if not isinstance(value, str):
            return str(value)[:max_length]

        value = value.strip()
        value = value[:max_length]
        value = value.replace("\0", "")

        return value

    @staticmethod
    def sanitize_description(description: str) -> str:
        """Strip control characters but keep newlines and tabs"""
        description = InputSanitizer.sanitize_string(
            description, ContestLimits.MAX_DESCRIPTION_LENGTH
        )
        return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", description)

    @staticmethod
    def validate_and_sanitize_contest(payload: Dict) -> ValidatedContest:
        """
        Validate and sanitize a full contest configuration

        Returns:
            ValidatedContest: Validated configuration

        Raises:
            ValidationError: If validation fails
        """
        data = dict(payload)
        if isinstance(data.get("description"), str):
            data["description"] = InputSanitizer.sanitize_description(data["description"])
        try:
            return ValidatedContest(**data)
        except ValueError as e:
            logger.warning(f"Contest validation failed: {e}")
            raise ValidationError("invalid_contest", f"Invalid contest: {str(e)}") from e

    @staticmethod
    def validate_event(payload: Dict) -> ValidatedSubmissionEvent:
        """
        Validate a submission event payload

        Raises:
            ValidationError: If validation fails
        """
        try:
            return ValidatedSubmissionEvent(**payload)
        except ValueError as e:
            logger.warning(f"Submission event validation failed: {e}")
            raise ValidationError("invalid_event", f"Invalid event: {str(e)}") from e


# ==================== EXPORT ====================

__all__ = [
    "ValidatedContest",
    "ValidatedContestProblem",
    "ValidatedSubmissionEvent",
    "InputSanitizer",
]
