"""
Agent host.

Stands in for the actor platform: it hands out one ``WorkerAgent`` per id,
routes fired timers back to the right worker, and mints new workers for a chat.
"""

from typing import Any, Optional

from taskloop.agent.engine import TaskLoopEngine
from taskloop.agent.state import generate_id, utc_now
from taskloop.agent.types import AgentConfig
from taskloop.agent.worker import PROCESS_NEXT_TASK, WorkerAgent
from taskloop.errors import StorageError
from taskloop.model.llm import InferenceClient
from taskloop.runtime.scheduler import InstanceScheduler, Scheduler
from taskloop.runtime.store import StateStore
from taskloop.utils.logger import get_logger

logger = get_logger(__name__)


class AgentHost:
    """Registry of live workers sharing one store, scheduler and engine."""

    def __init__(
        self,
        store: StateStore,
        scheduler: Scheduler,
        inference: Optional[InferenceClient] = None,
        config: Optional[AgentConfig] = None,
        engine: Optional[TaskLoopEngine] = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.config = config or AgentConfig()
        self.engine = engine or TaskLoopEngine(config=self.config, inference=inference)
        self._agents: dict[str, WorkerAgent] = {}
        self.scheduler.bind(self.dispatch)

    def get_agent_by_name(self, worker_id: str) -> WorkerAgent:
        """Return the worker for ``worker_id``, creating the handle on first use."""
        agent = self._agents.get(worker_id)
        if agent is None:
            agent = WorkerAgent(
                worker_id=worker_id,
                store=self.store,
                scheduler=InstanceScheduler(self.scheduler, worker_id),
                engine=self.engine,
                config=self.config,
            )
            self._agents[worker_id] = agent
        return agent

    async def create_worker_agent(
        self, chat_id: str, name: str, purpose: str
    ) -> dict[str, Any]:
        worker_id = f"worker-{generate_id()}"
        agent = self.get_agent_by_name(worker_id)
        result = await agent.initialize(chat_id=chat_id, name=name, purpose=purpose)
        logger.info(f"Created worker agent {worker_id} for chat {chat_id}")
        return {"worker_id": worker_id, "result": result}

    async def dispatch(
        self, agent_id: str, callback: str, payload: dict[str, Any], /
    ) -> Any:
        """Timer target: run ``callback`` on the addressed worker."""
        agent = self.get_agent_by_name(agent_id)
        return await agent.call(callback, **payload)

    async def start(self) -> int:
        """Re-arm reactivations persisted before a restart.

        A worker whose state says it is running but which has no pending
        reactivation was cut off mid-step; it gets one that fires right away.
        Returns the number of reactivations armed.
        """
        armed = await self.scheduler.restore()
        # Taken before any await: restored timers may start firing after that.
        covered = {s.agent_id for s in self.scheduler.list_scheduled()}
        for worker_id in await self.store.list_agents():
            if worker_id in covered:
                continue
            try:
                state = await self.store.read(worker_id)
            except StorageError as e:
                logger.error(f"Skipping recovery of {worker_id}: {e}")
                continue
            if state is None or not state.is_running:
                continue

            logger.warning(f"Worker {worker_id} was running without a timer, resuming")
            await self.scheduler.schedule_at(worker_id, utc_now(), PROCESS_NEXT_TASK)
            armed += 1
        return armed

    async def close(self) -> None:
        await self.scheduler.close()
