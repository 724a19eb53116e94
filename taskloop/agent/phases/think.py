from typing import Literal, Optional

from typing_extensions import override

from pydantic import BaseModel, Field

from taskloop.agent.phases.base import Phase, PhaseInput, PhaseOutcome, configured_model
from taskloop.agent.prompts import (
    build_think_user_prompt,
    format_transcript,
    get_think_system_prompt,
)
from taskloop.agent.state import TaskKind, new_task
from taskloop.model.llm import ChatInferenceClient, InferenceClient
from taskloop.utils.logger import get_logger

logger = get_logger(__name__)


class ThinkDecision(BaseModel):
    """Schema for the think response from the LLM."""

    is_complete: bool = Field(..., description="Whether the purpose is fulfilled.")
    reasoning: str = Field(..., description="Why this decision was made.")
    next_kind: Literal["action", "think"] = "action"
    next_description: str = ""


class ThinkPhase(Phase):
    """Think phase that judges completion and proposes exactly one next step.

    The proposal becomes a new task at the tail of the queue; a decision of
    "complete" produces no follow-up at all.
    """

    def __init__(self, inference: Optional[InferenceClient] = None):
        self.inference = inference or ChatInferenceClient(
            model=configured_model("think")
        )

    @override
    async def run(self, input: PhaseInput) -> PhaseOutcome:
        """Ask the model for the next step.

        Args:
            input (PhaseInput): Working state and the running think task

        Returns:
            PhaseOutcome: The decision as result, plus at most one follow-up
        """
        state, task = input.state, input.task

        user_prompt = build_think_user_prompt(
            purpose=state.purpose,
            task=task,
            transcript=format_transcript(state.completed_tasks, input.transcript_limit),
        )
        decision: ThinkDecision = await self.inference.complete(
            user_prompt,
            schema=ThinkDecision,
            system_prompt=get_think_system_prompt(),
        )

        result = decision.model_dump()
        if decision.is_complete:
            logger.info(f"Think phase: purpose fulfilled ({decision.reasoning})")
            return PhaseOutcome(result=result, is_complete=True)

        description = decision.next_description.strip() or task.description
        follow_up = new_task(
            TaskKind(decision.next_kind),
            description,
            parameters={"rationale": decision.reasoning},
            parent=task,
            max_retries=task.max_retries,
        )
        logger.info(
            f"Think phase: next {follow_up.kind_name} task '{follow_up.description}'"
        )
        return PhaseOutcome(result=result, follow_ups=[follow_up])
