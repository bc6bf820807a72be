"""Choosing how a user message is processed."""
from __future__ import annotations

from agentcollab.core.models import ModeDecision, ProcessingMode

SOLO_ROUNDS = 1
MINI_WORKFLOW_ROUNDS = 2
COLLABORATIVE_ROUNDS = 3


def select_mode(
    mention_count: int,
    is_first_user_message: bool,
    has_team_roles: bool,
    *,
    has_template: bool = False,
    team_max_rounds: int = 8,
    template_max_rounds: int = 10,
) -> ModeDecision:
    """Map mention count and conversation shape to a processing mode.

    An attached template takes precedence over everything. A full team on the
    first user message runs the structured team workflow regardless of mentions.
    """
    if has_template:
        return ModeDecision(ProcessingMode.CONFIGURED, template_max_rounds)
    if has_team_roles and is_first_user_message:
        return ModeDecision(ProcessingMode.TEAM_WORKFLOW, team_max_rounds)
    if mention_count == 1:
        return ModeDecision(ProcessingMode.SOLO, SOLO_ROUNDS)
    if mention_count >= 2:
        return ModeDecision(ProcessingMode.MINI_WORKFLOW, MINI_WORKFLOW_ROUNDS)
    return ModeDecision(ProcessingMode.COLLABORATIVE, COLLABORATIVE_ROUNDS)
