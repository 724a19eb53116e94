import configparser
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from taskloop.agent.state import AgentState, Task
from taskloop.model.llm import DEFAULT_MODEL

# Load configuration
_config_file = Path(__file__).parent.parent.parent / "config.ini"
_config = configparser.ConfigParser()
_config.read(_config_file)


def configured_model(section: str) -> str:
    return _config.get(section, "model", fallback=DEFAULT_MODEL)


@dataclass
class PhaseInput:
    """What a phase sees: the working copy of the state and the running task."""

    state: AgentState
    task: Task
    transcript_limit: int = 20


@dataclass
class PhaseOutcome:
    result: Any
    follow_ups: list[Task] = field(default_factory=list)
    is_complete: bool = False


class Phase(ABC):
    """Handler for one task kind."""

    @abstractmethod
    async def run(self, input: PhaseInput) -> PhaseOutcome:
        pass
