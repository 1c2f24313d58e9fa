"""
Planner Agent - Produces the ordered derivation plan.
"""
import logging
from typing import List, Optional

from eqnsolver.shared.chat_client import ResilientChatClient, get_message_content
from eqnsolver.shared.errors import ChatClientError
from eqnsolver.shared.json_parser import (
    extract_json,
    normalize_string_field,
    normalize_string_list,
)
from eqnsolver.shared.models import DerivationConfig, PlanStep, ProblemContext, ProviderConfig
from eqnsolver.derivation.prompts.planning_prompts import build_planning_messages

logger = logging.getLogger(__name__)


PLAN_TEMPERATURE = 0.1
PLAN_MAX_TOKENS = 2000


def coerce_plan(data: Optional[dict]) -> List[PlanStep]:
    """
    Turn a raw planner payload into PlanSteps.

    Non-dict entries are skipped. Indexes are re-assigned 1..n by position since
    iteration k consumes plan[k-1].
    """
    if not isinstance(data, dict):
        return []
    raw_steps = data.get("plan")
    if not isinstance(raw_steps, list):
        return []

    steps = []
    for raw in raw_steps:
        if not isinstance(raw, dict):
            continue
        steps.append(PlanStep(
            index=len(steps) + 1,
            title=normalize_string_field(raw.get("title")),
            methods=normalize_string_list(raw.get("methods")),
            deliverables=normalize_string_list(raw.get("deliverables")),
            success=normalize_string_field(raw.get("success")),
            physics_checks=normalize_string_list(raw.get("physics_checks")),
        ))
    return steps


class PlannerAgent:
    """
    Agent that decomposes the problem into derivation steps.
    Never raises for provider/parse failures - an empty plan means "run the generic loop".
    """

    def __init__(self, chat_client: ResilientChatClient, provider: ProviderConfig, config: DerivationConfig):
        self.chat_client = chat_client
        self.provider = provider
        self.config = config

        self.task_sequence: int = 0
        self.role_id = "derivation_planner"

    def get_current_task_id(self) -> str:
        """Get the task ID for the current/next API call."""
        return f"plan_{self.task_sequence:03d}"

    async def plan(
        self,
        equation: str,
        context: ProblemContext,
        request_text: Optional[str] = None,
    ) -> List[PlanStep]:
        """
        Request a plan from the model.

        Returns:
            Ordered PlanSteps (possibly empty)
        """
        task_id = self.get_current_task_id()
        self.task_sequence += 1
        logger.info(f"Planner: requesting plan (task_id={task_id})")

        try:
            response = await self.chat_client.complete(
                self.provider,
                build_planning_messages(equation, context, request_text),
                temperature=PLAN_TEMPERATURE,
                max_tokens=PLAN_MAX_TOKENS,
                response_format={"type": "json_object"},
                max_retries=self.config.max_retries,
                base_delay_ms=self.config.base_delay_ms,
            )
        except ChatClientError as e:
            logger.warning(f"Planner: provider call failed, falling back to generic iterations: {e}")
            return []

        steps = coerce_plan(extract_json(get_message_content(response)))
        if not steps:
            logger.warning("Planner: empty plan, will fall back to generic iterations")
        else:
            logger.info(f"Planner: {len(steps)} steps - " + " | ".join(step.title for step in steps))
        return steps
