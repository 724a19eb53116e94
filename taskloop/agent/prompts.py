from datetime import datetime
from typing import Optional

from taskloop.agent.state import Task, TaskStatus

# ======================================================================
# Helper Time Function
# ======================================================================


def get_current_time() -> str:
    """Returns the current date formatted for prompts.

    Returns:
        str: such as 'Thursday, January 22, 2026'
    """
    return datetime.now().strftime("%A, %B %d, %Y")


# ======================================================================
# Think Phase Prompt
# ======================================================================

THINK_SYSTEM_PROMPT = """You are the planning component of an autonomous worker agent.

Current date: {current_date}

## Your Job

Look at the worker's purpose and what has been done so far, then decide:
1. Has the purpose been fulfilled? If so, say it is complete.
2. If not, propose the single next best step.

## Next Step Types

- action: a concrete piece of work to carry out now.
- think: more planning is needed before anything can be done.

Write next_description as one imperative sentence.

## Output

Return JSON with:
- is_complete: true when the purpose has been fulfilled.
- reasoning: one or two sentences explaining the decision.
- next_kind: "action" or "think" (ignored when is_complete is true).
- next_description: the proposed step (empty when is_complete is true).
"""


def get_think_system_prompt() -> str:
    """Return system prompt of think phase."""
    return THINK_SYSTEM_PROMPT.format(current_date=get_current_time())


def format_transcript(completed_tasks: list[Task], limit: int = 20) -> str:
    """Summarise the most recent completed tasks, one per line."""
    if not completed_tasks or limit <= 0:
        return ""

    recent = completed_tasks[-limit:]
    skipped = len(completed_tasks) - len(recent)

    lines = []
    if skipped:
        lines.append(f"({skipped} earlier tasks omitted)")
    for task in recent:
        status_symbol = "✓" if task.status == TaskStatus.COMPLETED else "✗"
        outcome = task.result if task.status == TaskStatus.COMPLETED else task.error
        line = f"{status_symbol} [{task.kind_name}] {task.description}"
        if outcome:
            line += f"\n    -> {outcome}"
        lines.append(line)
    return "\n".join(lines)


def build_think_user_prompt(
    purpose: str,
    task: Task,
    transcript: str = "",
) -> str:
    """Build user prompt for think phase."""
    transcript_section = (
        f"""
Progress so far:
{transcript}
"""
        if transcript
        else "\nNo work has been done yet.\n"
    )

    return f"""<purpose>
{purpose}
</purpose>
{transcript_section}
Current planning task: {task.description}

Decide whether the purpose is fulfilled, and if not, propose the next step.
"""


# ======================================================================
# Action Phase Prompt
# ======================================================================

ACTION_SYSTEM_PROMPT = """You are the execution component of an autonomous worker agent.

Current date: {current_date}

Carry out the action you are given as well as you can and describe the outcome briefly.
Report what was produced, not how you would go about it.
"""


def get_action_system_prompt() -> str:
    """Return system prompt of action phase."""
    return ACTION_SYSTEM_PROMPT.format(current_date=get_current_time())


def build_action_user_prompt(
    description: str,
    purpose: Optional[str] = None,
) -> str:
    """Build user prompt for action phase."""
    purpose_section = f"Overall purpose: {purpose}\n\n" if purpose else ""
    return f"""{purpose_section}You are executing the following action: "{description}".

Describe briefly the outcome of performing this action.
"""
