"""
Task loop engine.

Advances one worker by exactly one task per ``step()``. The engine is a pure
transition over ``AgentState``: it receives the current state, works on a deep
copy, and returns the next state together with a loop decision
(``Reschedule`` or ``Halt``). It never reads or writes storage and never talks
to the timer; ``WorkerAgent`` commits the returned state in a single write and
turns the decision into a reactivation.
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional

from taskloop.agent.phases import ActionPhase, Phase, PhaseInput, ThinkPhase
from taskloop.agent.state import AgentState, Task, TaskKind, utc_now
from taskloop.agent.types import (
    AgentConfig,
    Halt,
    HaltReason,
    LoopDecision,
    Reschedule,
    StepResult,
)
from taskloop.errors import UnrecognizedTaskKind
from taskloop.model.llm import InferenceClient
from taskloop.utils.logger import get_logger

logger = get_logger(__name__)

# Kinds that re-queue on failure when retry_failed_tasks is enabled.
RETRYABLE_KINDS = frozenset({TaskKind.THINK, TaskKind.ACTION})


class TaskLoopEngine:
    """Dispatches the head task to the phase registered for its kind."""

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        inference: Optional[InferenceClient] = None,
        phases: Optional[dict[TaskKind, Phase]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or AgentConfig()
        self.phases: dict[TaskKind, Phase] = (
            phases
            if phases is not None
            else {
                TaskKind.THINK: ThinkPhase(inference),
                TaskKind.ACTION: ActionPhase(inference),
            }
        )
        self._clock = clock

    async def step(self, state: AgentState) -> StepResult:
        """Process the head of the queue and decide what happens next."""
        if not state.is_running:
            return StepResult(
                state=state, decision=Halt(HaltReason.NOT_RUNNING), changed=False
            )

        next_state = state.model_copy(deep=True)
        log = logger.bind(worker_id=next_state.metadata.worker_id)

        if next_state.peek_head() is None:
            log.info("Task queue drained, worker going idle")
            next_state.is_running = False
            return StepResult(state=next_state, decision=Halt(HaltReason.DRAINED))

        task = next_state.dequeue_head()
        task.mark_running(self._clock())
        log.info(f"Processing {task.kind_name} task {task.id}: {task.description}")

        decision: LoopDecision
        try:
            phase = self.phases.get(task.kind)
            if phase is None:
                raise UnrecognizedTaskKind(task.kind_name)
            outcome = await self._run_phase(phase, next_state, task)
        except UnrecognizedTaskKind as e:
            log.warning(f"Dropping task {task.id}: {e}")
            next_state.complete(task, error=str(e), now=self._clock())
            decision = Reschedule(self.config.step_delay)
        except Exception as e:
            error = str(e) or type(e).__name__
            log.error(f"Task {task.id} failed: {error}")
            next_state.complete(task, error=error, now=self._clock())
            self._maybe_retry(next_state, task)
            decision = Reschedule(self.config.backoff_delay)
        else:
            next_state.complete(task, result=outcome.result, now=self._clock())
            for follow_up in outcome.follow_ups:
                next_state.enqueue(follow_up)

            if outcome.is_complete:
                log.info("Purpose fulfilled, stopping loop")
                next_state.is_running = False
                decision = Halt(HaltReason.COMPLETED)
            elif task.kind == TaskKind.ACTION and self.config.stop_after_action:
                next_state.is_running = False
                decision = Halt(HaltReason.SINGLE_STEP)
            else:
                decision = Reschedule(self.config.step_delay)

        next_state.last_processed_at = self._clock()
        return StepResult(state=next_state, decision=decision, task=task)

    async def _run_phase(self, phase: Phase, state: AgentState, task: Task):
        phase_input = PhaseInput(
            state=state, task=task, transcript_limit=self.config.transcript_limit
        )
        if self.config.step_timeout is None:
            return await phase.run(phase_input)
        try:
            return await asyncio.wait_for(
                phase.run(phase_input), timeout=self.config.step_timeout
            )
        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"{task.kind_name} task timed out after {self.config.step_timeout}s"
            ) from e

    def _maybe_retry(self, state: AgentState, failed: Task) -> None:
        if not self.config.retry_failed_tasks or failed.kind not in RETRYABLE_KINDS:
            return
        if failed.retry_count >= failed.max_retries:
            logger.bind(worker_id=state.metadata.worker_id).warning(
                f"Task {failed.id} exhausted {failed.max_retries} retries"
            )
            return
        state.enqueue(failed.spawn_retry())
