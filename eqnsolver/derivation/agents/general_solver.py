"""
General Solver Agent - Single-call step-by-step solution for ordinary equations.
"""
import logging
from typing import Any, Dict

from eqnsolver.shared.chat_client import ResilientChatClient, get_message_content
from eqnsolver.shared.json_parser import extract_json
from eqnsolver.shared.models import DerivationConfig, ProviderConfig
from eqnsolver.derivation.prompts.general_prompts import build_general_solver_messages

logger = logging.getLogger(__name__)


GENERAL_MAX_TOKENS = 4000


def fallback_solution(equation: str, content: str) -> Dict[str, Any]:
    """Wrap unparseable model output as a single "AI Analysis" step."""
    return {
        "type": "general",
        "steps": [
            {
                "step": 1,
                "description": "AI Analysis",
                "equation": equation,
                "latex": equation,
                "explanation": content or "No content returned",
            }
        ],
        "finalSolution": "See detailed explanation above",
        "finalSolutionLatex": "See detailed explanation above",
    }


class GeneralSolverAgent:
    """Agent for the non-physics solve path. Provider errors propagate to the route."""

    def __init__(self, chat_client: ResilientChatClient, provider: ProviderConfig, config: DerivationConfig):
        self.chat_client = chat_client
        self.provider = provider
        self.config = config

        self.task_sequence: int = 0
        self.role_id = "general_solver"

    def get_current_task_id(self) -> str:
        """Get the task ID for the current/next API call."""
        return f"general_{self.task_sequence:03d}"

    async def solve(self, equation: str, variable: str = "x") -> Dict[str, Any]:
        """
        Solve an equation in one call.

        Returns:
            {type, steps[{step, description, equation, latex, explanation}], finalSolution, finalSolutionLatex}
        """
        task_id = self.get_current_task_id()
        self.task_sequence += 1
        logger.info(f"General solver: solving '{equation[:80]}' (task_id={task_id})")

        response = await self.chat_client.complete(
            self.provider,
            build_general_solver_messages(equation, variable),
            temperature=self.config.temperature,
            max_tokens=GENERAL_MAX_TOKENS,
            response_format={"type": "json_object"},
            max_retries=self.config.max_retries,
            base_delay_ms=self.config.base_delay_ms,
        )
        content = get_message_content(response)

        data = extract_json(content)
        if data is None or data.get("truncated") or not isinstance(data.get("steps"), list):
            logger.warning(f"General solver: unusable JSON ({len(content)} chars), returning raw analysis")
            return fallback_solution(equation, content)
        return data
