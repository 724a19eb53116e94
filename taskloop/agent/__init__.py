"""
Agent module - autonomous worker task loop.

Core components:
- WorkerAgent: Control surface (initialize, start, stop, reset, get_info)
- TaskLoopEngine: One think/action step per invocation
- State: Task and AgentState models with queue helpers
- Phases: Think and Action handlers
- Prompts: Customization layer for the think/action prompts

Usage:
    from taskloop.agent import AgentConfig
    from taskloop.runtime import AgentHost, FileStateStore, Scheduler

    host = AgentHost(FileStateStore(), Scheduler(".taskloop/schedules.json"))
    created = await host.create_worker_agent("chat-1", "writer", "Write a haiku")
    await host.get_agent_by_name(created["worker_id"]).start()
"""

from taskloop.agent.engine import TaskLoopEngine
from taskloop.agent.state import (
    AgentMetadata,
    AgentState,
    Task,
    TaskKind,
    TaskStatus,
    create_initial_state,
)
from taskloop.agent.types import (
    AgentConfig,
    Halt,
    HaltReason,
    Reschedule,
    StepResult,
)
from taskloop.agent.worker import WorkerAgent

__all__ = [
    "WorkerAgent",
    "TaskLoopEngine",
    "AgentConfig",
    "AgentMetadata",
    "AgentState",
    "Task",
    "TaskKind",
    "TaskStatus",
    "create_initial_state",
    "Halt",
    "HaltReason",
    "Reschedule",
    "StepResult",
]
