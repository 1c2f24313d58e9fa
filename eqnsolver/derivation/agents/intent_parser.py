"""
Intent Parser Agent - Turns a free-text request into structured problem fields.
"""
import logging
from typing import Optional

from eqnsolver.shared.chat_client import ResilientChatClient, get_message_content
from eqnsolver.shared.errors import ChatClientError
from eqnsolver.shared.json_parser import try_parse_object, normalize_string_field
from eqnsolver.shared.models import DerivationConfig, ParsedIntent, ProviderConfig
from eqnsolver.derivation.prompts.intent_prompts import build_intent_messages

logger = logging.getLogger(__name__)


INTENT_TEMPERATURE = 0.0
INTENT_MAX_TOKENS = 800


class IntentParserAgent:
    """
    Agent that extracts equation/context fields from natural language.
    Failures are absorbed: the caller falls back to requiring an explicit equation.
    """

    def __init__(self, chat_client: ResilientChatClient, provider: ProviderConfig, config: DerivationConfig):
        self.chat_client = chat_client
        self.provider = provider
        self.config = config

        self.task_sequence: int = 0
        self.role_id = "derivation_intent_parser"

    def get_current_task_id(self) -> str:
        """Get the task ID for the current/next API call."""
        return f"intent_{self.task_sequence:03d}"

    async def parse(self, request_text: Optional[str]) -> Optional[ParsedIntent]:
        """
        Extract structured fields from a free-text request.

        Returns:
            ParsedIntent, or None on empty input, provider failure or unparseable output
        """
        if not request_text or not request_text.strip():
            return None

        task_id = self.get_current_task_id()
        self.task_sequence += 1
        logger.info(f"Intent parser: extracting problem fields (task_id={task_id})")

        try:
            response = await self.chat_client.complete(
                self.provider,
                build_intent_messages(request_text),
                temperature=INTENT_TEMPERATURE,
                max_tokens=INTENT_MAX_TOKENS,
                response_format={"type": "json_object"},
                max_retries=self.config.max_retries,
                base_delay_ms=self.config.base_delay_ms,
            )
        except ChatClientError as e:
            logger.warning(f"Intent parser: provider call failed, ignoring intent: {e}")
            return None

        data = try_parse_object(get_message_content(response).strip())
        if data is None:
            logger.warning("Intent parser: response was not a JSON object")
            return None

        fields = {
            key: normalize_string_field(value)
            for key, value in data.items()
            if key in ParsedIntent.model_fields or key == "equationLatex"
        }
        intent = ParsedIntent(**{key: value for key, value in fields.items() if value})
        logger.info(f"Intent parser: extracted fields {sorted(intent.model_dump(exclude_none=True))}")
        return intent
