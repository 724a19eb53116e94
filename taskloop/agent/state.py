from __future__ import annotations

import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from taskloop.errors import EmptyQueue, InvalidTransition

# ======================================================================
## Task Types
# ======================================================================


class TaskKind(str, Enum):
    THINK = "think"  # decide the next step, judge completion
    ACTION = "action"  # produce a result for a concrete goal
    VERIFY = "verify"
    CLEANUP = "cleanup"
    SCHEDULE = "schedule"
    MONITOR = "monitor"
    REPORT = "report"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)

# Allowed forward moves; anything else raises InvalidTransition.
_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset(
        {TaskStatus.RUNNING, TaskStatus.BLOCKED, TaskStatus.CANCELLED}
    ),
    TaskStatus.BLOCKED: frozenset({TaskStatus.RUNNING, TaskStatus.CANCELLED}),
    TaskStatus.RUNNING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

SEED_TASK_DESCRIPTION = "Initial analysis of agent purpose and planning"
REFLECT_TASK_DESCRIPTION = "Reflect on progress and plan next action"


def generate_id(size: int = 16) -> str:
    """Random url-safe identifier."""
    return secrets.token_urlsafe(size)[:size]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ======================================================================
## Task
# ======================================================================


class Task(BaseModel):
    """One unit of work in an agent's queue."""

    id: str = Field(default_factory=generate_id)
    # Kinds written by other versions load as plain strings and fail as unhandled.
    kind: Union[TaskKind, str] = Field(union_mode="left_to_right")
    status: TaskStatus = TaskStatus.PENDING
    priority: int = Field(default=1, description="Advisory only, never enforced.")
    description: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    result: Optional[Any] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    retry_count: int = 0
    max_retries: int = 3
    parent_task_id: Optional[str] = None

    @property
    def kind_name(self) -> str:
        return self.kind.value if isinstance(self.kind, TaskKind) else self.kind

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _move(self, status: TaskStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Task {self.id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status

    def mark_running(self, now: Optional[datetime] = None) -> None:
        self._move(TaskStatus.RUNNING)
        self.started_at = now or utc_now()

    def mark_completed(self, result: Any, now: Optional[datetime] = None) -> None:
        self._move(TaskStatus.COMPLETED)
        self.result = result
        self.error = None
        self.completed_at = now or utc_now()

    def mark_failed(self, error: str, now: Optional[datetime] = None) -> None:
        self._move(TaskStatus.FAILED)
        self.error = error
        self.result = None
        self.completed_at = now or utc_now()

    def spawn_retry(self) -> Task:
        """New pending copy of a failed task, linked back to it."""
        return Task(
            kind=self.kind,
            priority=self.priority,
            description=self.description,
            parameters=dict(self.parameters),
            retry_count=self.retry_count + 1,
            max_retries=self.max_retries,
            parent_task_id=self.id,
        )


def new_task(
    kind: TaskKind,
    description: str,
    parameters: Optional[dict[str, Any]] = None,
    parent: Optional[Task] = None,
    max_retries: int = 3,
) -> Task:
    return Task(
        kind=kind,
        description=description,
        parameters=parameters or {},
        parent_task_id=parent.id if parent else None,
        max_retries=max_retries,
    )


# ======================================================================
## Agent State
# ======================================================================


class AgentMetadata(BaseModel):
    """Identity of a worker, fixed at initialize time."""

    model_config = ConfigDict(frozen=True)

    chat_id: str
    name: str
    worker_id: str


class AgentState(BaseModel):
    """The durable record of one worker agent."""

    metadata: AgentMetadata
    purpose: str
    is_running: bool = False
    task_queue: list[Task] = Field(default_factory=list)
    completed_tasks: list[Task] = Field(default_factory=list)
    last_processed_at: Optional[datetime] = None

    def enqueue(self, task: Task) -> None:
        self.task_queue.append(task)

    def peek_head(self) -> Optional[Task]:
        return self.task_queue[0] if self.task_queue else None

    def dequeue_head(self) -> Task:
        if not self.task_queue:
            raise EmptyQueue(f"Task queue of {self.metadata.worker_id} is empty")
        return self.task_queue.pop(0)

    def complete(
        self,
        task: Task,
        result: Any = None,
        error: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Task:
        """Set the terminal status of ``task`` and append it to the history.

        A task is failed when ``error`` is given and completed otherwise.
        """
        if error is not None:
            task.mark_failed(error, now)
        else:
            task.mark_completed(result, now)
        self.completed_tasks.append(task)
        return task

    @property
    def total_tasks(self) -> int:
        return len(self.task_queue) + len(self.completed_tasks)


def seed_task(purpose: str, max_retries: int = 3) -> Task:
    return new_task(
        TaskKind.THINK,
        SEED_TASK_DESCRIPTION,
        parameters={"purpose": purpose},
        max_retries=max_retries,
    )


def create_initial_state(
    metadata: AgentMetadata, purpose: str, max_retries: int = 3
) -> AgentState:
    return AgentState(
        metadata=metadata,
        purpose=purpose,
        is_running=False,
        task_queue=[seed_task(purpose, max_retries)],
        completed_tasks=[],
    )
