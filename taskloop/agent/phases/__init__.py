from taskloop.agent.phases.base import Phase, PhaseInput, PhaseOutcome
from taskloop.agent.phases.think import ThinkPhase, ThinkDecision
from taskloop.agent.phases.action import ActionPhase

__all__ = [
    "Phase",
    "PhaseInput",
    "PhaseOutcome",
    "ThinkPhase",
    "ThinkDecision",
    "ActionPhase",
]
