"""
Unit tests for taskloop.agent.worker

Covers:
- initialize / start / stop / reset / get_info
- Cooperative cancellation through the not-running guard
- stop() while a step is waiting on inference
- The operation registry
- Storage failures during a step
"""

import asyncio
import json

import pytest

from taskloop.agent.engine import TaskLoopEngine
from taskloop.agent.state import TaskKind, TaskStatus
from taskloop.agent.worker import PROCESS_NEXT_TASK, WorkerAgent
from taskloop.errors import (
    AlreadyInitialized,
    InferenceError,
    NotInitialized,
    StorageError,
    UnknownOperation,
)
from taskloop.runtime.store import MemoryStateStore


async def init(worker):
    return await worker.initialize(
        chat_id="chat-1", name="haiku-writer", purpose="write a haiku"
    )


class TestInitialize:
    @pytest.mark.asyncio
    async def test_initialize_seeds_state(self, worker, store):
        result = await init(worker)

        assert result["status"] == "initialized"
        assert result["metadata"] == {
            "chat_id": "chat-1",
            "name": "haiku-writer",
            "worker_id": "worker-test",
        }
        state = await store.read("worker-test")
        assert state.is_running is False
        assert len(state.task_queue) == 1
        assert state.task_queue[0].kind == TaskKind.THINK

    @pytest.mark.asyncio
    async def test_initialize_twice_fails(self, worker):
        await init(worker)
        with pytest.raises(AlreadyInitialized):
            await init(worker)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["start", "stop", "reset", "get_info"])
    async def test_operations_require_initialize(self, worker, operation):
        with pytest.raises(NotInitialized):
            await worker.call(operation)


class TestStartStop:
    @pytest.mark.asyncio
    async def test_start_runs_one_step_and_reschedules(self, worker, store, scheduler):
        await init(worker)

        result = await worker.start()

        assert result == {"status": "started", "is_running": True}
        state = await store.read("worker-test")
        assert [t.kind for t in state.completed_tasks] == [TaskKind.THINK]
        assert [t.kind for t in state.task_queue] == [TaskKind.ACTION]
        events = scheduler.list_scheduled()
        assert len(events) == 1
        assert events[0].callback == PROCESS_NEXT_TASK

    @pytest.mark.asyncio
    async def test_start_when_running_is_noop(self, worker, store, scheduler):
        await init(worker)
        await worker.start()
        before = store.dump("worker-test")

        result = await worker.start()

        assert result == {"status": "running", "is_running": True}
        assert store.dump("worker-test") == before
        assert len(scheduler.list_scheduled()) == 1

    @pytest.mark.asyncio
    async def test_restart_cancels_stale_reactivations(self, worker, scheduler):
        await init(worker)
        await worker.start()
        stale = scheduler.list_scheduled()[0].id
        await worker.stop()

        await worker.start()

        assert stale in scheduler.cancelled
        assert len(scheduler.list_scheduled()) == 1

    @pytest.mark.asyncio
    async def test_stop_then_timer_fire_leaves_state_unchanged(
        self, worker, store, scheduler
    ):
        await init(worker)
        await worker.start()

        assert await worker.stop() == {"status": "stopped"}
        before = store.dump("worker-test")

        # the reactivation scheduled before stop() still fires
        assert len(scheduler.list_scheduled()) == 1
        result = await worker.call(PROCESS_NEXT_TASK)

        assert result["is_running"] is False
        assert store.dump("worker-test") == before
        assert len(scheduler.list_scheduled()) == 1

    @pytest.mark.asyncio
    async def test_stop_when_idle(self, worker):
        await init(worker)
        assert await worker.stop() == {"status": "idle"}

    @pytest.mark.asyncio
    async def test_haiku_scenario(self, worker, store):
        await init(worker)
        await worker.start()
        await worker.process_next_task()

        state = await store.read("worker-test")
        assert [t.kind for t in state.completed_tasks] == [TaskKind.THINK, TaskKind.ACTION]
        assert len(state.task_queue) == 1
        assert state.task_queue[0].kind == TaskKind.THINK
        assert state.task_queue[0].status == TaskStatus.PENDING
        assert state.is_running is True

    @pytest.mark.asyncio
    async def test_completion_halts_without_reschedule(
        self, store, scheduler, config, make_inference
    ):
        engine = TaskLoopEngine(
            config=config, inference=make_inference(decisions=[make_inference.finished()])
        )
        worker = WorkerAgent("worker-test", store, scheduler, engine, config)
        await init(worker)

        result = await worker.start()

        assert result == {"status": "started", "is_running": False}
        assert scheduler.list_scheduled() == []

    @pytest.mark.asyncio
    async def test_failures_back_off(self, store, scheduler, config, make_inference):
        engine = TaskLoopEngine(
            config=config, inference=make_inference(error=InferenceError("down"))
        )
        worker = WorkerAgent("worker-test", store, scheduler, engine, config)
        await init(worker)

        await worker.start()

        state = await store.read("worker-test")
        assert state.completed_tasks[0].status == TaskStatus.FAILED
        event = scheduler.list_scheduled()[0]
        delay = (event.time - state.last_processed_at).total_seconds()
        assert 4.0 < delay <= 5.5

    @pytest.mark.asyncio
    async def test_steps_are_serialized(self, worker, store):
        await init(worker)
        await worker.start()

        await asyncio.gather(*(worker.process_next_task() for _ in range(4)))

        state = await store.read("worker-test")
        ids = [t.id for t in state.completed_tasks]
        assert len(ids) == len(set(ids)) == 5
        assert len(state.task_queue) == 1


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_reseeds_from_purpose(self, worker, store, scheduler):
        await init(worker)
        await worker.start()

        assert await worker.reset() == {"status": "reset"}

        state = await store.read("worker-test")
        assert state.is_running is False
        assert state.completed_tasks == []
        assert len(state.task_queue) == 1
        assert state.task_queue[0].parameters == {"purpose": "write a haiku"}
        assert state.purpose == "write a haiku"
        assert state.metadata.name == "haiku-writer"
        assert scheduler.list_scheduled() == []


class TestGetInfo:
    @pytest.mark.asyncio
    async def test_info_snapshot(self, worker, store):
        await init(worker)
        await worker.start()
        before = store.dump("worker-test")

        info = await worker.get_info()

        assert info["metadata"]["worker_id"] == "worker-test"
        assert info["purpose"] == "write a haiku"
        assert info["queue_length"] == 1
        assert len(info["completed_tasks"]) == 1
        assert info["is_running"] is True
        assert info["scheduled_events"][0]["method"] == PROCESS_NEXT_TASK
        assert store.dump("worker-test") == before
        json.dumps(info)


class TestRegistry:
    @pytest.mark.asyncio
    async def test_call_by_name(self, worker):
        result = await worker.call(
            "initialize", chat_id="chat-1", name="n", purpose="p"
        )
        assert result["status"] == "initialized"
        assert result["metadata"]["name"] == "n"

    @pytest.mark.asyncio
    async def test_operation_name_is_positional_only(self, worker):
        await init(worker)
        with pytest.raises(TypeError):
            await worker.call(operation_name="get_info")

    @pytest.mark.asyncio
    async def test_unknown_operation(self, worker):
        with pytest.raises(UnknownOperation):
            await worker.call("self_destruct")


class FailingWriteStore(MemoryStateStore):
    def __init__(self):
        super().__init__()
        self.fail = False

    async def write(self, agent_id, state):
        if self.fail:
            raise StorageError("disk full")
        await super().write(agent_id, state)


class TestStorageFailure:
    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_state(self, scheduler, engine, config):
        store = FailingWriteStore()
        worker = WorkerAgent("worker-test", store, scheduler, engine, config)
        await init(worker)
        await worker.start()
        before = store.dump("worker-test")
        store.fail = True

        with pytest.raises(StorageError):
            await worker.process_next_task()

        assert store.dump("worker-test") == before
        state = await store.read("worker-test")
        assert state.task_queue[0].kind == TaskKind.ACTION
        assert len(scheduler.list_scheduled()) == 2


class GatedInference:
    """Holds every call until ``release`` is set, then answers like ``delegate``."""

    def __init__(self, delegate):
        self.delegate = delegate
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def complete(self, prompt, schema=None, system_prompt=None):
        self.entered.set()
        await self.release.wait()
        return await self.delegate.complete(
            prompt, schema=schema, system_prompt=system_prompt
        )


class TestStopDuringStep:
    @pytest.fixture
    def gated(self, make_inference) -> GatedInference:
        return GatedInference(make_inference())

    @pytest.fixture
    def gated_worker(self, store, scheduler, config, gated) -> WorkerAgent:
        engine = TaskLoopEngine(config=config, inference=gated)
        return WorkerAgent("worker-test", store, scheduler, engine, config)

    @pytest.mark.asyncio
    async def test_stop_returns_while_step_waits_on_inference(
        self, gated_worker, gated, store
    ):
        await init(gated_worker)
        starting = asyncio.create_task(gated_worker.start())
        await asyncio.wait_for(gated.entered.wait(), timeout=2)

        result = await asyncio.wait_for(gated_worker.stop(), timeout=1)

        assert result == {"status": "stopped"}
        assert store.dump("worker-test")["is_running"] is False
        gated.release.set()
        await starting

    @pytest.mark.asyncio
    async def test_in_flight_step_commits_progress_but_halts(
        self, gated_worker, gated, store, scheduler
    ):
        await init(gated_worker)
        starting = asyncio.create_task(gated_worker.start())
        await asyncio.wait_for(gated.entered.wait(), timeout=2)
        await gated_worker.stop()

        gated.release.set()
        result = await starting

        assert result == {"status": "started", "is_running": False}
        state = await store.read("worker-test")
        assert state.is_running is False
        assert [t.kind for t in state.completed_tasks] == [TaskKind.THINK]
        assert [t.kind for t in state.task_queue] == [TaskKind.ACTION]
        assert scheduler.list_scheduled() == []

    @pytest.mark.asyncio
    async def test_stop_request_does_not_leak_into_next_start(
        self, gated_worker, gated, store, scheduler
    ):
        await init(gated_worker)
        starting = asyncio.create_task(gated_worker.start())
        await asyncio.wait_for(gated.entered.wait(), timeout=2)
        await gated_worker.stop()
        gated.release.set()
        await starting

        result = await gated_worker.start()

        assert result == {"status": "started", "is_running": True}
        assert len(scheduler.list_scheduled()) == 1
