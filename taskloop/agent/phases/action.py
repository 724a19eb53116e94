from typing import Optional

from typing_extensions import override

from taskloop.agent.phases.base import Phase, PhaseInput, PhaseOutcome, configured_model
from taskloop.agent.prompts import build_action_user_prompt, get_action_system_prompt
from taskloop.agent.state import REFLECT_TASK_DESCRIPTION, TaskKind, new_task
from taskloop.model.llm import ChatInferenceClient, InferenceClient


class ActionPhase(Phase):
    """Action phase that executes a concrete step.

    Every action is followed by a reflection think task, so two actions are
    never processed back to back.
    """

    def __init__(self, inference: Optional[InferenceClient] = None):
        self.inference = inference or ChatInferenceClient(
            model=configured_model("action")
        )

    @override
    async def run(self, input: PhaseInput) -> PhaseOutcome:
        user_prompt = build_action_user_prompt(
            description=input.task.description,
            purpose=input.state.purpose,
        )

        output = await self.inference.complete(
            user_prompt,
            system_prompt=get_action_system_prompt(),
        )

        reflect = new_task(
            TaskKind.THINK,
            REFLECT_TASK_DESCRIPTION,
            parent=input.task,
            max_retries=input.task.max_retries,
        )
        return PhaseOutcome(result=str(output), follow_ups=[reflect])
