"""
Worker agent control surface.

A ``WorkerAgent`` brackets the task loop of one durable worker:
``initialize`` seeds the state, ``start`` / ``stop`` flip the run flag,
``reset`` reseeds from the original purpose, ``get_info`` reports, and
``process_next_task`` is the reactivation entry point the timer calls.

Every operation is reachable by name through ``call()``; the registry is
built once in ``__init__``. Operations on one worker are serialized by an
``asyncio.Lock`` so two triggers never interleave. ``stop`` is the exception:
it only takes the short commit lock, so it returns while a step is still
waiting on inference, and that step commits with the run flag cleared.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from taskloop.agent.engine import TaskLoopEngine
from taskloop.agent.state import (
    AgentMetadata,
    AgentState,
    create_initial_state,
    seed_task,
    utc_now,
)
from taskloop.agent.types import AgentConfig, Halt, HaltReason, Reschedule, StepResult
from taskloop.errors import (
    AlreadyInitialized,
    NotInitialized,
    StorageError,
    UnknownOperation,
)
from taskloop.utils.logger import get_logger

if TYPE_CHECKING:
    from taskloop.runtime.scheduler import InstanceScheduler
    from taskloop.runtime.store import StateStore

PROCESS_NEXT_TASK = "process_next_task"


class WorkerAgent:
    """One durable, independently addressable worker running the task loop."""

    def __init__(
        self,
        worker_id: str,
        store: StateStore,
        scheduler: InstanceScheduler,
        engine: TaskLoopEngine,
        config: Optional[AgentConfig] = None,
    ):
        self.worker_id = worker_id
        self.store = store
        self.scheduler = scheduler
        self.engine = engine
        self.config = config or engine.config
        self.log = get_logger(__name__, worker_id=worker_id)
        self._lock = asyncio.Lock()
        self._commit_lock = asyncio.Lock()
        self._stop_requested = False

        self.operations: dict[str, Callable[..., Awaitable[Any]]] = {
            "initialize": self.initialize,
            "start": self.start,
            "stop": self.stop,
            "reset": self.reset,
            "get_info": self.get_info,
            PROCESS_NEXT_TASK: self.process_next_task,
        }

    async def call(self, operation_name: str, /, **kwargs) -> Any:
        """Invoke a control operation by name."""
        operation = self.operations.get(operation_name)
        if operation is None:
            raise UnknownOperation(operation_name)
        return await operation(**kwargs)

    # ==================================================================
    ## Control Operations
    # ==================================================================

    async def initialize(self, chat_id: str, name: str, purpose: str) -> dict[str, Any]:
        async with self._lock:
            if await self.store.read(self.worker_id) is not None:
                raise AlreadyInitialized(self.worker_id)

            metadata = AgentMetadata(chat_id=chat_id, name=name, worker_id=self.worker_id)
            state = create_initial_state(metadata, purpose, self.config.max_retries)
            await self.store.write(self.worker_id, state)

        self.log.info(f"Initialized worker '{name}' for chat {chat_id}")
        return {
            "status": "initialized",
            "metadata": metadata.model_dump(),
            "purpose": purpose,
        }

    async def start(self) -> dict[str, Any]:
        """Set the run flag and process one task before returning."""
        async with self._lock:
            async with self._commit_lock:
                state = await self._require_state()
                if state.is_running:
                    return {"status": "running", "is_running": True}

                self.log.info("Starting worker agent")
                self._stop_requested = False
                await self._cancel_reactivations()
                state.is_running = True
                await self.store.write(self.worker_id, state)

            result = await self._step(state)
            return {"status": "started", "is_running": result.state.is_running}

    async def stop(self) -> dict[str, Any]:
        """Clear the run flag; already scheduled reactivations fire as no-ops.

        Does not wait for an in-flight step. That step still commits its
        progress, but with the run flag cleared and no reactivation.
        """
        async with self._commit_lock:
            state = await self._require_state()
            if not state.is_running:
                return {"status": "idle"}

            if self._lock.locked():
                self._stop_requested = True
            state.is_running = False
            await self.store.write(self.worker_id, state)

        self.log.info("Stopped worker agent")
        return {"status": "stopped"}

    async def reset(self) -> dict[str, Any]:
        """Drop all tasks and reseed a single think task from the purpose."""
        async with self._lock, self._commit_lock:
            state = await self._require_state()
            await self._cancel_reactivations()

            state.task_queue = [seed_task(state.purpose, self.config.max_retries)]
            state.completed_tasks = []
            state.is_running = False
            await self.store.write(self.worker_id, state)

        self.log.info("Reset worker agent")
        return {"status": "reset"}

    async def get_info(self) -> dict[str, Any]:
        state = await self._require_state()
        snapshot = state.model_dump(mode="json")

        return {
            "metadata": snapshot["metadata"],
            "purpose": snapshot["purpose"],
            "queue_length": len(state.task_queue),
            "last_processed_at": snapshot["last_processed_at"],
            "completed_tasks": snapshot["completed_tasks"],
            "task_queue": snapshot["task_queue"],
            "is_running": state.is_running,
            "scheduled_events": [
                {
                    "id": event.id,
                    "scheduled_time": event.time.isoformat(),
                    "method": event.callback,
                }
                for event in self.scheduler.list_scheduled()
            ],
        }

    async def process_next_task(self) -> dict[str, Any]:
        """Reactivation entry point: run one engine step."""
        async with self._lock:
            state = await self._require_state()
            result = await self._step(state)
        return {
            "decision": type(result.decision).__name__.lower(),
            "is_running": result.state.is_running,
        }

    # ==================================================================
    ## Internals
    # ==================================================================

    async def _require_state(self) -> AgentState:
        state = await self.store.read(self.worker_id)
        if state is None:
            raise NotInitialized(self.worker_id)
        return state

    async def _step(self, state: AgentState) -> StepResult:
        result = await self.engine.step(state)
        async with self._commit_lock:
            if self._stop_requested:
                self._stop_requested = False
                if result.state.is_running:
                    result.state.is_running = False
                    result.decision = Halt(HaltReason.NOT_RUNNING)
            if result.changed:
                try:
                    await self.store.write(self.worker_id, result.state)
                except StorageError:
                    self.log.error(
                        f"State write failed, retrying step in {self.config.backoff_delay}s"
                    )
                    await self._schedule_next(self.config.backoff_delay)
                    raise

        if isinstance(result.decision, Reschedule):
            await self._schedule_next(result.decision.delay)
        else:
            self.log.info(f"Loop halted: {result.decision.reason.value}")
        return result

    async def _schedule_next(self, seconds: float) -> str:
        return await self.scheduler.schedule_at(
            utc_now() + timedelta(seconds=seconds), PROCESS_NEXT_TASK
        )

    async def _cancel_reactivations(self) -> None:
        for event in self.scheduler.list_scheduled():
            if event.callback == PROCESS_NEXT_TASK:
                await self.scheduler.cancel(event.id)
