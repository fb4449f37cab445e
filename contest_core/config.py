"""Limits and runtime settings for the contest core."""
from __future__ import annotations

import logging
import os
from typing import Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

OiPolicy = Literal["first_accepted", "max"]


class ContestLimits:
    """Hard limits applied to contest configuration"""

    MIN_DURATION_MINUTES = 30
    MAX_DURATION_MINUTES = 10080  # 7 days
    MIN_PROBLEMS = 1
    MAX_PROBLEMS = 26
    MAX_FREEZE_MINUTES = 300
    MAX_TITLE_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 5000
    MAX_PASSWORD_LENGTH = 50
    MIN_PROBLEM_SCORE = 0
    MAX_PROBLEM_SCORE = 1000
    DEFAULT_PROBLEM_SCORE = 100
    WRONG_ATTEMPT_PENALTY_MINUTES = 20
    LABEL_PATTERN = r"^[A-Z]$"


class EngineSettings(BaseModel):
    """Runtime knobs for ranking workers and the service facade."""

    min_recompute_interval: float = Field(
        2.0, ge=0.0, le=300.0, description="Minimum seconds between two recomputes"
    )
    oi_policy: OiPolicy = Field(
        "first_accepted", description="Which accepted OI submission counts"
    )
    cache_final_snapshots: bool = True
    worker_idle_timeout: float = Field(
        1.0, gt=0.0, le=60.0, description="Queue poll timeout for worker threads"
    )

    @classmethod
    def from_env(cls, prefix: str = "CONTEST_CORE_") -> "EngineSettings":
        """Build settings from ``CONTEST_CORE_*`` environment variables."""
        overrides: dict[str, str] = {}
        for name in cls.model_fields:
            raw = os.environ.get(f"{prefix}{name.upper()}")
            if raw is not None:
                overrides[name] = raw
        if overrides:
            logger.info(f"Engine settings overridden from environment: {sorted(overrides)}")
        return cls(**overrides)


__all__ = ["ContestLimits", "EngineSettings", "OiPolicy"]
