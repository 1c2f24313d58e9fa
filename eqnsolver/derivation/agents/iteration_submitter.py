"""
Iteration Submitter Agent - Generates, repairs and revises derivation iterations.

One instance serves a whole run. Round calls propagate provider errors to the
coordinator; the auxiliary repair and revision calls absorb them and report
failure as None.
"""
import logging
from typing import Any, Dict, List, Optional

from eqnsolver.shared.chat_client import ResilientChatClient, get_message_content
from eqnsolver.shared.errors import ChatClientError
from eqnsolver.shared.json_parser import extract_json, normalize_string_field, restore_latex_escapes
from eqnsolver.shared.models import (
    DerivationConfig,
    Equation,
    Iteration,
    PlanStep,
    ProblemSpec,
    ProviderConfig,
)
from eqnsolver.derivation.prompts.iteration_prompts import (
    build_iteration_messages,
    build_json_repair_messages,
    build_revision_messages,
)

logger = logging.getLogger(__name__)


REPAIR_MAX_TOKENS = 1200
REPAIR_MAX_TEMPERATURE = 0.3


def _coerce_equation(raw: Any) -> Optional[Equation]:
    if isinstance(raw, dict):
        return Equation(
            latex=restore_latex_escapes(normalize_string_field(raw.get("latex"))),
            text=normalize_string_field(raw.get("text")),
        )
    if isinstance(raw, str):
        # Bare strings are math
        return Equation(latex=restore_latex_escapes(raw))
    return None


def _coerce_flag(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return None


def coerce_iteration(data: Dict[str, Any]) -> Iteration:
    """
    Shape a raw JSON record into an Iteration.

    Tolerates list-valued text fields, bare-string equations and missing keys.
    The model's k is kept only for logging; the coordinator overwrites it.
    """
    raw_equations = data.get("equations")
    if not isinstance(raw_equations, list):
        raw_equations = [raw_equations] if raw_equations else []
    equations = [eq for eq in (_coerce_equation(raw) for raw in raw_equations) if eq is not None]

    try:
        k = int(data.get("k") or 0)
    except (TypeError, ValueError):
        k = 0

    latex = restore_latex_escapes(normalize_string_field(data.get("latex"))) or None
    main_result_latex = restore_latex_escapes(normalize_string_field(data.get("main_result_latex"))) or None

    return Iteration(
        k=k,
        goal=normalize_string_field(data.get("goal")),
        analysis=normalize_string_field(data.get("analysis")),
        equations=equations,
        result_summary=normalize_string_field(data.get("result_summary")),
        latex=latex,
        stop=_coerce_flag(data.get("stop")),
        main_result_latex=main_result_latex,
    )


class IterationSubmitterAgent:
    """
    Agent that produces candidate iterations for the derivation loop.
    """

    def __init__(self, chat_client: ResilientChatClient, provider: ProviderConfig, config: DerivationConfig):
        self.chat_client = chat_client
        self.provider = provider
        self.config = config

        self.task_sequence: int = 0
        self.role_id = "derivation_iteration_submitter"

    def get_current_task_id(self) -> str:
        """Get the task ID for the current/next API call."""
        return f"iter_{self.task_sequence:03d}"

    async def _complete(self, messages: List[Dict[str, str]], temperature: float, max_tokens: int) -> str:
        task_id = self.get_current_task_id()
        self.task_sequence += 1
        logger.debug(f"Iteration submitter: calling {self.provider.name} (task_id={task_id})")
        response = await self.chat_client.complete(
            self.provider,
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
            max_retries=self.config.max_retries,
            base_delay_ms=self.config.base_delay_ms,
        )
        content = get_message_content(response)
        logger.info(f"Iteration submitter: completion received - {len(content)} chars (task_id={task_id})")
        return content

    async def repair_json(self, content: str) -> Optional[Dict[str, Any]]:
        """
        Ask the model to convert raw text into valid JSON, then extract again.

        Returns:
            Parsed record, or None if the call fails or still yields nothing
        """
        temperature = max(0.0, min(self.config.temperature, REPAIR_MAX_TEMPERATURE))
        try:
            repaired = await self._complete(build_json_repair_messages(content), temperature, REPAIR_MAX_TOKENS)
        except ChatClientError as e:
            logger.warning(f"Iteration submitter: JSON repair call failed: {e}")
            return None
        return extract_json(repaired)

    async def _to_iteration(self, content: str) -> Optional[Iteration]:
        data = extract_json(content)
        if data is None:
            logger.warning("Iteration submitter: no JSON found, attempting repair call")
            data = await self.repair_json(content)
        if data is None:
            return None
        return coerce_iteration(data)

    async def generate(
        self,
        problem: ProblemSpec,
        prior: List[Iteration],
        plan_step: Optional[PlanStep],
    ) -> Optional[Iteration]:
        """
        Produce the candidate for the next round.

        Returns:
            Candidate Iteration, or None if no JSON could be recovered

        Raises:
            ChatClientError: The round call itself failed
        """
        messages = build_iteration_messages(problem, prior, plan_step, self.config.profile)
        content = await self._complete(messages, self.config.temperature, self.config.profile.iteration_max_tokens)
        return await self._to_iteration(content)

    async def revise(
        self,
        problem: ProblemSpec,
        prior: List[Iteration],
        plan_step: Optional[PlanStep],
        failures: List[str],
    ) -> Optional[Iteration]:
        """
        Single revision attempt after a quality-gate failure.

        Returns:
            Revised candidate, or None if the call fails or yields no JSON
        """
        messages = build_revision_messages(problem, prior, plan_step, self.config.profile, failures)
        try:
            content = await self._complete(messages, self.config.temperature, self.config.profile.iteration_max_tokens)
        except ChatClientError as e:
            logger.warning(f"Iteration submitter: revision call failed: {e}")
            return None
        return await self._to_iteration(content)
