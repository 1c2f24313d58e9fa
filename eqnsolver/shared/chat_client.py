"""
Resilient chat-completion client.

One HTTP POST per attempt with bounded exponential backoff on transient
failures. Provider wire formats are handled by a small closed set of adapters
so every caller sees the same OpenAI-style response:

    {"choices": [{"message": {"content": "..."}}]}
"""
import asyncio
import logging
import random
from typing import List, Dict, Any, Optional, Tuple

import httpx

from eqnsolver.shared.errors import ChatClientError, ProviderError, TransientProviderError
from eqnsolver.shared.models import ProviderConfig

logger = logging.getLogger(__name__)


# Upper bound (exclusive) of the random jitter added to each backoff delay
JITTER_MS = 100


def backoff_delay_ms(attempt: int, base_delay_ms: int, jitter: bool = True) -> int:
    """
    Delay to wait after attempt `attempt` (0-indexed) fails.

    delay = base * 2^attempt + jitter(0..100ms)
    """
    delay = base_delay_ms * (2 ** attempt)
    if jitter:
        delay += random.randint(0, JITTER_MS - 1)
    return delay


def get_message_content(response: Dict[str, Any]) -> str:
    """Pull the first choice's content string out of a normalized response."""
    choices = response.get("choices") or []
    if not choices:
        return ""
    message = choices[0].get("message") or {}
    return message.get("content", "") or message.get("reasoning", "") or ""


# ============================================================================
# WIRE-FORMAT ADAPTERS
# ============================================================================


class OpenAIChatAdapter:
    """messages-array request, bearer-token auth, choices-array response."""

    def build_request(
        self, provider: ProviderConfig, body: Dict[str, Any]
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        payload = {"model": provider.model_id, **body}
        headers = {
            "Authorization": f"Bearer {provider.api_key}",
            "Content-Type": "application/json",
            **provider.extra_headers,
        }
        return provider.endpoint_url, headers, payload

    def normalize_response(self, data: Dict[str, Any]) -> Dict[str, Any]:
        # Already the canonical shape
        return data


class GeminiChatAdapter:
    """contents-array request, API key inline in the URL, candidates-array response."""

    def build_request(
        self, provider: ProviderConfig, body: Dict[str, Any]
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        system_parts: List[Dict[str, str]] = []
        contents: List[Dict[str, Any]] = []
        for msg in body.get("messages", []):
            role = msg.get("role", "user")
            text = msg.get("content", "")
            if role == "system":
                system_parts.append({"text": text})
            else:
                contents.append({
                    "role": "model" if role == "assistant" else "user",
                    "parts": [{"text": text}],
                })

        generation_config: Dict[str, Any] = {}
        if "temperature" in body:
            generation_config["temperature"] = body["temperature"]
        if "max_tokens" in body:
            generation_config["maxOutputTokens"] = body["max_tokens"]
        response_format = body.get("response_format") or {}
        if response_format.get("type") == "json_object":
            generation_config["responseMimeType"] = "application/json"

        payload: Dict[str, Any] = {"contents": contents}
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        if generation_config:
            payload["generationConfig"] = generation_config

        url = f"{provider.endpoint_url}?key={provider.api_key}"
        headers = {"Content-Type": "application/json", **provider.extra_headers}
        return url, headers, payload

    def normalize_response(self, data: Dict[str, Any]) -> Dict[str, Any]:
        candidates = data.get("candidates") or []
        text = ""
        if candidates:
            parts = (candidates[0].get("content") or {}).get("parts") or []
            text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        normalized: Dict[str, Any] = {"choices": [{"message": {"role": "assistant", "content": text}}]}
        if data.get("usageMetadata"):
            normalized["usage"] = data["usageMetadata"]
        return normalized


ADAPTERS = {
    "openai": OpenAIChatAdapter(),
    "gemini": GeminiChatAdapter(),
}


# ============================================================================
# CLIENT
# ============================================================================


class ResilientChatClient:
    """Chat-completion client with bounded exponential-backoff retry."""

    def __init__(self, timeout: Optional[float] = 120.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            limits=httpx.Limits(
                max_keepalive_connections=20,
                max_connections=50,
                keepalive_expiry=30.0
            )
        )

    async def call(
        self,
        provider: ProviderConfig,
        body: Dict[str, Any],
        max_retries: int = 3,
        base_delay_ms: int = 500,
    ) -> Dict[str, Any]:
        """
        Issue one chat-completion request with retry.

        Classification per attempt:
        - 2xx: return parsed (and normalized) JSON body
        - 429 or >= 500: retryable, error captured, back off and try again
        - any other status: fatal ProviderError raised immediately (body attached)
        - transport errors: captured and counted as an attempt

        Args:
            provider: Resolved provider configuration
            body: OpenAI-style request body (messages, temperature, max_tokens,
                  optional response_format). The model id is filled in here.
            max_retries: Retries after the first attempt (max_retries + 1 attempts total)
            base_delay_ms: Backoff base in milliseconds

        Returns:
            Normalized response dict with a choices[0].message.content string

        Raises:
            ProviderError: Non-retryable HTTP status
            ChatClientError: Retries exhausted (last captured error, or generic)
        """
        adapter = ADAPTERS[provider.wire_format]
        url, headers, payload = adapter.build_request(provider, body)
        total_attempts = max(0, int(max_retries)) + 1
        last_error: Optional[Exception] = None

        for attempt in range(total_attempts):
            try:
                response = await self.client.post(url, json=payload, headers=headers)

                if response.status_code == 429 or response.status_code >= 500:
                    error_text = response.text[:200]
                    logger.warning(
                        f"{provider.name} transient HTTP {response.status_code} "
                        f"(attempt {attempt + 1}/{total_attempts}): {error_text}"
                    )
                    last_error = TransientProviderError(
                        f"HTTP {response.status_code} {error_text}",
                        status_code=response.status_code,
                        body=response.text,
                    )
                elif not response.is_success:
                    logger.error(
                        f"{provider.name} fatal HTTP {response.status_code}: {response.text[:500]}"
                    )
                    raise ProviderError(
                        f"HTTP {response.status_code} {response.text[:200]}",
                        status_code=response.status_code,
                        body=response.text,
                    )
                else:
                    return adapter.normalize_response(response.json())

            except ProviderError:
                # Don't retry fatal provider errors - propagate immediately
                raise

            except (httpx.TransportError, ValueError) as e:
                # Network failures and undecodable bodies count as attempts
                error_type = type(e).__name__
                error_detail = repr(e) if not str(e) else str(e)
                logger.warning(
                    f"{provider.name} request error (attempt {attempt + 1}/{total_attempts}): "
                    f"[{error_type}] {error_detail}"
                )
                last_error = e

            if attempt < total_attempts - 1:
                wait_ms = backoff_delay_ms(attempt, base_delay_ms)
                logger.debug(f"Backing off {wait_ms}ms before attempt {attempt + 2}")
                await asyncio.sleep(wait_ms / 1000.0)

        if isinstance(last_error, ChatClientError):
            raise last_error
        if last_error is not None:
            raise ChatClientError(f"API call failed: {last_error}") from last_error
        raise ChatClientError("API call failed")

    async def complete(
        self,
        provider: ProviderConfig,
        messages: List[Dict[str, str]],
        temperature: float = 0.1,
        max_tokens: int = 4000,
        response_format: Optional[Dict[str, str]] = None,
        max_retries: int = 3,
        base_delay_ms: int = 500,
    ) -> Dict[str, Any]:
        """Convenience wrapper building the request body from chat arguments."""
        body: Dict[str, Any] = {
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        # Advisory - not every provider honours JSON mode
        if response_format:
            body["response_format"] = response_format
        return await self.call(provider, body, max_retries=max_retries, base_delay_ms=base_delay_ms)

    async def close(self):
        """Close the HTTP client and cleanup resources."""
        try:
            await self.client.aclose()
            logger.info("Chat client closed successfully")
        except Exception as e:
            logger.error(f"Error closing chat client: {e}")


# Shared client for the API process
chat_client = ResilientChatClient()
