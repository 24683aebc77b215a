"""
Reasoning service client (OpenAI-compatible chat completions).

Both the intent classifier and the ranking stage call ``complete``.
Transport problems (unreachable, timeout, 429, 5xx) are retried here and
surface as ReasoningTransportError; a reply that is not a JSON object
surfaces as ReasoningResponseError and is never retried.
"""

import json
from typing import Any, Dict, List, Optional, Sequence

import structlog
from openai import (
    APIConnectionError,
    APIStatusError,
    AsyncOpenAI,
    InternalServerError,
    OpenAIError,
    RateLimitError,
)
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from chatbot.errors import ReasoningResponseError, ReasoningTransportError
from chatbot.models import ConversationTurn

logger = structlog.get_logger(__name__)

RETRYABLE_ERRORS = (APIConnectionError, RateLimitError, InternalServerError)


class ReasoningClient:
    """Thin async wrapper over ``chat.completions.create``."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.x.ai/v1",
        model: str = "grok-beta",
        temperature: float = 0.3,
        max_tokens: int = 1500,
        timeout_seconds: float = 30.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        # tenacity owns retries, so the SDK's own retry loop is switched off
        if client is None and api_key:
            client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout_seconds, max_retries=0)
        self.client = client

    @staticmethod
    def build_messages(
        system_prompt: str,
        history: Sequence[ConversationTurn],
        user_message: str,
    ) -> List[Dict[str, str]]:
        """System prompt, then prior turns (role + content only), then the new user message."""
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend({"role": turn.role, "content": turn.content} for turn in history)
        messages.append({"role": "user", "content": user_message})
        return messages

    async def complete(
        self,
        system_prompt: str,
        history: Sequence[ConversationTurn],
        user_message: str,
        force_json_object: bool = True,
    ) -> str:
        """
        Run one chat completion and return the assistant's content.

        Args:
            system_prompt: Fully rendered system prompt
            history: Prior conversation turns
            user_message: The message to answer
            force_json_object: Request ``response_format=json_object`` and verify the reply

        Returns:
            Raw assistant content (a JSON object string when force_json_object is set)
        """
        if self.client is None:
            raise ReasoningTransportError("Reasoning service API key not configured")

        messages = self.build_messages(system_prompt, history, user_message)
        logger.info("Calling reasoning service", model=self.model, history_messages=len(history))

        try:
            content = await self._create(messages, force_json_object)
        except RETRYABLE_ERRORS as e:
            logger.error("Reasoning service unavailable", error=str(e), error_type=type(e).__name__)
            raise ReasoningTransportError(f"Reasoning service unavailable: {e}") from e
        except APIStatusError as e:
            logger.error("Reasoning service rejected request", status=e.status_code, error=str(e))
            raise ReasoningTransportError(f"Reasoning service returned status {e.status_code}") from e
        except OpenAIError as e:
            raise ReasoningTransportError(str(e)) from e

        if not content or not content.strip():
            raise ReasoningResponseError("Reasoning service returned empty content")

        if force_json_object:
            try:
                parsed: Any = json.loads(content)
            except json.JSONDecodeError as e:
                logger.warning("Reasoning service returned non-JSON content", content_preview=content[:200])
                raise ReasoningResponseError("Reasoning service returned non-JSON content") from e
            if not isinstance(parsed, dict):
                raise ReasoningResponseError("Reasoning service returned JSON that is not an object")

        logger.info("Reasoning service response received", chars=len(content))
        return content

    @retry(
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _create(self, messages: List[Dict[str, str]], force_json_object: bool) -> Optional[str]:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if force_json_object:
            kwargs["response_format"] = {"type": "json_object"}

        completion = await self.client.chat.completions.create(**kwargs)
        if not completion.choices:
            return None
        return completion.choices[0].message.content
