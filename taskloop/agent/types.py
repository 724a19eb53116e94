"""
Type definitions for the worker task loop.

Includes:
- AgentConfig for loop tuning
- Reschedule / Halt decisions returned by the engine
- StepResult, the outcome of one engine step
"""

import configparser
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field

from taskloop.agent.state import AgentState, Task


# ============================================================================
# Agent Configuration
# ============================================================================


class AgentConfig(BaseModel):
    """Configuration options for a worker's task loop."""

    step_delay: float = Field(
        default=1.0, gt=0, description="Seconds between steps after progress."
    )
    backoff_multiplier: float = Field(
        default=5.0, ge=1, description="Failure delay = step_delay * multiplier."
    )
    transcript_limit: int = Field(
        default=20, ge=0, description="Completed tasks shown to the think prompt."
    )
    stop_after_action: bool = False  # one think/action cycle per start()
    retry_failed_tasks: bool = False  # re-queue failures up to max_retries
    max_retries: int = Field(default=3, ge=0)
    step_timeout: Optional[float] = Field(default=120.0, gt=0)

    @property
    def backoff_delay(self) -> float:
        return self.step_delay * self.backoff_multiplier

    @classmethod
    def from_ini(cls, path: Union[str, Path], section: str = "loop") -> "AgentConfig":
        """Load overrides from an ini file; missing file or keys keep defaults."""
        parser = configparser.ConfigParser()
        parser.read(path)
        if not parser.has_section(section):
            return cls()

        values = {}
        for name, field in cls.model_fields.items():
            if not parser.has_option(section, name):
                continue
            raw = parser.get(section, name)
            if field.annotation is bool:
                values[name] = parser.getboolean(section, name)
            elif raw.strip().lower() in ("", "none"):
                values[name] = None
            else:
                values[name] = raw
        return cls.model_validate(values)


# ============================================================================
# Loop Decisions
# ============================================================================


class HaltReason(str, Enum):
    NOT_RUNNING = "not_running"
    DRAINED = "drained"
    COMPLETED = "completed"
    SINGLE_STEP = "single_step"


@dataclass(frozen=True)
class Reschedule:
    """Run the next step after ``delay`` seconds."""

    delay: float


@dataclass(frozen=True)
class Halt:
    """Do not schedule another step."""

    reason: HaltReason


LoopDecision = Reschedule | Halt


@dataclass
class StepResult:
    """Next state plus what the caller should do about the timer."""

    state: AgentState
    decision: LoopDecision
    changed: bool = True
    task: Optional[Task] = None
