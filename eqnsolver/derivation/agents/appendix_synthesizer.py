"""
Appendix Synthesizer Agent - One final expansion pass over the accepted iterations.
"""
import logging
from typing import List

from eqnsolver.shared.chat_client import ResilientChatClient, get_message_content
from eqnsolver.shared.errors import ChatClientError
from eqnsolver.shared.json_parser import extract_json, normalize_string_field, restore_latex_escapes
from eqnsolver.shared.models import (
    DerivationConfig,
    FinalSection,
    Iteration,
    ProblemSpec,
    ProviderConfig,
)
from eqnsolver.derivation.prompts.appendix_prompts import build_appendix_messages

logger = logging.getLogger(__name__)


APPENDIX_MAX_TOKENS = 3500
APPENDIX_MAX_TEMPERATURE = 0.2


class AppendixSynthesizerAgent:
    """
    Agent that writes the supplementary appendix.
    Failures degrade to an empty appendix.
    """

    def __init__(self, chat_client: ResilientChatClient, provider: ProviderConfig, config: DerivationConfig):
        self.chat_client = chat_client
        self.provider = provider
        self.config = config

        self.task_sequence: int = 0
        self.role_id = "derivation_appendix_synthesizer"

    def get_current_task_id(self) -> str:
        """Get the task ID for the current/next API call."""
        return f"appendix_{self.task_sequence:03d}"

    async def synthesize(self, problem: ProblemSpec, iterations: List[Iteration]) -> FinalSection:
        """
        Returns:
            FinalSection with appendix_latex and (optionally) main_result_latex filled in;
            both empty when the call or parse fails
        """
        if not iterations:
            return FinalSection()

        task_id = self.get_current_task_id()
        self.task_sequence += 1
        logger.info(f"Appendix synthesizer: expanding {len(iterations)} iterations (task_id={task_id})")

        try:
            response = await self.chat_client.complete(
                self.provider,
                build_appendix_messages(problem, iterations),
                temperature=max(0.0, min(self.config.temperature, APPENDIX_MAX_TEMPERATURE)),
                max_tokens=APPENDIX_MAX_TOKENS,
                response_format={"type": "json_object"},
                max_retries=self.config.max_retries,
                base_delay_ms=self.config.base_delay_ms,
            )
        except ChatClientError as e:
            logger.warning(f"Appendix synthesizer: provider call failed, skipping appendix: {e}")
            return FinalSection()

        data = extract_json(get_message_content(response)) or {}
        section = FinalSection(
            appendix_latex=normalize_string_field(data.get("appendixLatex")),
            main_result_latex=restore_latex_escapes(normalize_string_field(data.get("main_result_latex"))),
        )
        logger.info(f"Appendix synthesizer: done - {len(section.appendix_latex)} chars")
        return section
