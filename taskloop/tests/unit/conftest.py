from datetime import datetime
from typing import Any, Optional

import pytest

from taskloop.agent.engine import TaskLoopEngine
from taskloop.agent.phases import ThinkDecision
from taskloop.agent.state import AgentMetadata, create_initial_state
from taskloop.agent.types import AgentConfig
from taskloop.agent.worker import WorkerAgent
from taskloop.runtime.scheduler import Schedule
from taskloop.runtime.store import MemoryStateStore


class StubInference:
    """InferenceClient double: scripted think decisions, fixed action text."""

    def __init__(
        self,
        decisions: Optional[list[ThinkDecision]] = None,
        text: str = "Wrote five-seven-five lines about rain",
        error: Optional[Exception] = None,
    ):
        self.decisions = list(decisions or [])
        self.text = text
        self.error = error
        self.calls: list[dict[str, Any]] = []

    @staticmethod
    def propose(kind: str = "action", description: str = "Draft the haiku") -> ThinkDecision:
        return ThinkDecision(
            is_complete=False,
            reasoning="More work is needed",
            next_kind=kind,
            next_description=description,
        )

    @staticmethod
    def finished() -> ThinkDecision:
        return ThinkDecision(is_complete=True, reasoning="The haiku is written")

    async def complete(self, prompt, schema=None, system_prompt=None):
        self.calls.append(
            {"prompt": prompt, "schema": schema, "system_prompt": system_prompt}
        )
        if self.error is not None:
            raise self.error
        if schema is None:
            return self.text
        if self.decisions:
            return self.decisions.pop(0)
        return self.propose()


class RecordingScheduler:
    """InstanceScheduler double that records reactivations without firing them."""

    def __init__(self, agent_id: str = "worker-test"):
        self.agent_id = agent_id
        self.schedules: dict[str, Schedule] = {}
        self.cancelled: list[str] = []

    async def schedule_at(self, instant: datetime, callback: str, payload=None) -> str:
        schedule = Schedule(
            agent_id=self.agent_id, callback=callback, payload=payload or {}, time=instant
        )
        self.schedules[schedule.id] = schedule
        return schedule.id

    def list_scheduled(self) -> list[Schedule]:
        return sorted(self.schedules.values(), key=lambda s: s.time)

    async def cancel(self, schedule_id: str) -> bool:
        self.cancelled.append(schedule_id)
        return self.schedules.pop(schedule_id, None) is not None


@pytest.fixture
def config() -> AgentConfig:
    return AgentConfig(step_delay=1.0, backoff_multiplier=5.0)


@pytest.fixture
def make_inference():
    return StubInference


@pytest.fixture
def inference() -> StubInference:
    return StubInference()


@pytest.fixture
def engine(config, inference) -> TaskLoopEngine:
    return TaskLoopEngine(config=config, inference=inference)


@pytest.fixture
def metadata() -> AgentMetadata:
    return AgentMetadata(chat_id="chat-1", name="haiku-writer", worker_id="worker-test")


@pytest.fixture
def running_state(metadata):
    state = create_initial_state(metadata, "write a haiku")
    state.is_running = True
    return state


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def worker(store, scheduler, engine, config) -> WorkerAgent:
    return WorkerAgent(
        worker_id="worker-test",
        store=store,
        scheduler=scheduler,
        engine=engine,
        config=config,
    )
