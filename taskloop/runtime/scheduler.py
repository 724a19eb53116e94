"""
Timer / reactivation service.

A ``Scheduler`` fires named callbacks against a worker at or after a given
instant. Pending schedules are written to a JSON file (when a path is given)
so that ``restore()`` can re-arm them after a restart; schedules whose instant
passed while the process was down fire immediately.

A fired schedule stays in the file until its callback returns. If the process
dies mid-callback the schedule fires again after restore, so callbacks must
tolerate being delivered more than once.

Firing hands ``(agent_id, callback, payload)`` to the dispatcher bound with
``bind()``, normally ``AgentHost.dispatch``.
"""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import aiofiles
from pydantic import BaseModel, Field, TypeAdapter

from taskloop.agent.state import generate_id, utc_now
from taskloop.runtime.store import write_atomic
from taskloop.utils.logger import get_logger

logger = get_logger(__name__)

Dispatcher = Callable[[str, str, dict[str, Any]], Awaitable[Any]]


class Schedule(BaseModel):
    id: str = Field(default_factory=generate_id)
    agent_id: str
    callback: str
    payload: dict[str, Any] = Field(default_factory=dict)
    time: datetime


_schedule_list = TypeAdapter(list[Schedule])


class Scheduler:
    """Process-wide timer shared by every worker in a host."""

    def __init__(
        self,
        path: Optional[str] = None,
        dispatch: Optional[Dispatcher] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.path: Optional[Path] = Path(path) if path else None
        self._dispatch = dispatch
        self._clock = clock
        self._schedules: dict[str, Schedule] = {}
        # Fired but not yet acknowledged; persisted, never listed or cancelled.
        self._in_flight: dict[str, Schedule] = {}
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._running: set[asyncio.Task] = set()
        self._save_lock = asyncio.Lock()

    def bind(self, dispatch: Dispatcher) -> None:
        self._dispatch = dispatch

    async def schedule_at(
        self,
        agent_id: str,
        instant: datetime,
        callback: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> str:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        schedule = Schedule(
            agent_id=agent_id, callback=callback, payload=payload or {}, time=instant
        )
        self._schedules[schedule.id] = schedule
        await self._save()
        self._arm(schedule)
        logger.debug(
            f"Scheduled {callback} for {agent_id} at {instant.isoformat()} ({schedule.id})"
        )
        return schedule.id

    def list_scheduled(self, agent_id: Optional[str] = None) -> list[Schedule]:
        schedules = [
            s
            for s in self._schedules.values()
            if agent_id is None or s.agent_id == agent_id
        ]
        return sorted(schedules, key=lambda s: s.time)

    async def cancel(self, schedule_id: str) -> bool:
        schedule = self._schedules.pop(schedule_id, None)
        handle = self._handles.pop(schedule_id, None)
        if handle is not None:
            handle.cancel()
        if schedule is None:
            return False
        await self._save()
        return True

    async def restore(self) -> int:
        """Re-arm schedules persisted by a previous process."""
        if self.path is None:
            return 0
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError:
            return 0

        try:
            restored = _schedule_list.validate_json(content) if content.strip() else []
        except ValueError as e:
            logger.error(f"Ignoring unreadable schedule file {self.path}: {e}")
            return 0

        for schedule in restored:
            if schedule.id in self._schedules or schedule.id in self._in_flight:
                continue
            self._schedules[schedule.id] = schedule
            self._arm(schedule)
        logger.info(f"Restored {len(restored)} scheduled reactivations")
        return len(restored)

    async def close(self) -> None:
        """Disarm timers and abandon running callbacks.

        Persisted schedules are kept, including those whose callback was cut
        short, so the next ``restore()`` delivers them again.
        """
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        for task in self._running:
            task.cancel()
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

    def _arm(self, schedule: Schedule) -> None:
        loop = asyncio.get_running_loop()
        delay = max(0.0, (schedule.time - self._clock()).total_seconds())
        self._handles[schedule.id] = loop.call_later(delay, self._fire_soon, schedule.id)

    def _fire_soon(self, schedule_id: str) -> None:
        task = asyncio.create_task(self._fire(schedule_id))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _fire(self, schedule_id: str) -> None:
        self._handles.pop(schedule_id, None)
        schedule = self._schedules.pop(schedule_id, None)
        if schedule is None:
            return
        if self._dispatch is None:
            logger.error(f"No dispatcher bound, dropping {schedule.callback}")
            await self._save()
            return

        self._in_flight[schedule_id] = schedule
        try:
            await self._dispatch(schedule.agent_id, schedule.callback, schedule.payload)
        except Exception:
            logger.exception(
                f"Scheduled {schedule.callback} for {schedule.agent_id} failed"
            )
        # Not reached on cancellation: the schedule stays on disk for restore().
        self._in_flight.pop(schedule_id, None)
        await self._save()

    async def _save(self) -> None:
        if self.path is None:
            return
        async with self._save_lock:
            pending = [*self._schedules.values(), *self._in_flight.values()]
            data = [s.model_dump(mode="json") for s in pending]
            await write_atomic(self.path, json.dumps(data, indent=2, ensure_ascii=False))


class InstanceScheduler:
    """A worker's view of the shared scheduler, addressed to that worker only."""

    def __init__(self, scheduler: Scheduler, agent_id: str) -> None:
        self.scheduler = scheduler
        self.agent_id = agent_id

    async def schedule_at(
        self,
        instant: datetime,
        callback: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> str:
        return await self.scheduler.schedule_at(self.agent_id, instant, callback, payload)

    def list_scheduled(self) -> list[Schedule]:
        return self.scheduler.list_scheduled(self.agent_id)

    async def cancel(self, schedule_id: str) -> bool:
        for schedule in self.list_scheduled():
            if schedule.id == schedule_id:
                return await self.scheduler.cancel(schedule_id)
        return False
