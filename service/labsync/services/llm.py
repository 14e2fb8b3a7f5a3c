"""
LLM clients.

Both providers expose the same narrow contract, `generate(prompt) -> text`.
SDK exceptions are converted to LLMError carrying the HTTP status so the
retry primitive can classify them. SDK-level retries are disabled; retries
are handled by retry_with_backoff.
"""

from typing import Protocol

import anthropic
import openai

from labsync.config import Settings
from labsync.errors import LLMError
from labsync.logging_config import get_logger
from labsync.services.key_pool import ApiKeyPool

logger = get_logger("llm")


class LLMClient(Protocol):
    async def generate(self, prompt: str) -> str:
        ...


class OpenAILLMClient:
    """Chat-completions client (single user turn, low temperature)."""

    def __init__(self, key_pool: ApiKeyPool, model: str = "gpt-4o-mini", timeout: float = 60.0):
        self.key_pool = key_pool
        self.model = model
        self.timeout = timeout
        self._clients: dict[str, openai.AsyncOpenAI] = {}

    def _client(self, key: str) -> openai.AsyncOpenAI:
        if key not in self._clients:
            self._clients[key] = openai.AsyncOpenAI(api_key=key, timeout=self.timeout, max_retries=0)
        return self._clients[key]

    async def generate(self, prompt: str) -> str:
        key = self.key_pool.next_key()
        try:
            response = await self._client(key).chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0.2,
            )
        except openai.APITimeoutError as e:
            self.key_pool.report_error(key)
            raise LLMError(f"OpenAI request timed out: {e}", code="ETIMEDOUT") from e
        except openai.APIConnectionError as e:
            self.key_pool.report_error(key)
            raise LLMError(f"OpenAI connection error: {e}", code="ECONNRESET") from e
        except openai.APIStatusError as e:
            self.key_pool.report_error(key)
            raise LLMError(e.message, status=e.status_code) from e

        self.key_pool.report_success(key)
        return response.choices[0].message.content or ""


class AnthropicLLMClient:
    """Messages API client."""

    def __init__(
        self,
        key_pool: ApiKeyPool,
        model: str = "claude-sonnet-4-20250514",
        timeout: float = 60.0,
        max_tokens: int = 4096
    ):
        self.key_pool = key_pool
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self._clients: dict[str, anthropic.AsyncAnthropic] = {}

    def _client(self, key: str) -> anthropic.AsyncAnthropic:
        if key not in self._clients:
            self._clients[key] = anthropic.AsyncAnthropic(api_key=key, timeout=self.timeout, max_retries=0)
        return self._clients[key]

    async def generate(self, prompt: str) -> str:
        key = self.key_pool.next_key()
        try:
            response = await self._client(key).messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APITimeoutError as e:
            self.key_pool.report_error(key)
            raise LLMError(f"Anthropic request timed out: {e}", code="ETIMEDOUT") from e
        except anthropic.APIConnectionError as e:
            self.key_pool.report_error(key)
            raise LLMError(f"Anthropic connection error: {e}", code="ECONNRESET") from e
        except anthropic.APIStatusError as e:
            self.key_pool.report_error(key)
            raise LLMError(e.message, status=e.status_code) from e

        self.key_pool.report_success(key)
        return "".join(block.text for block in response.content if block.type == "text")


def build_llm_client(settings: Settings, key_pool: ApiKeyPool) -> LLMClient:
    if settings.llm_provider == "anthropic":
        logger.info(f"Using Anthropic model {settings.anthropic_model}")
        return AnthropicLLMClient(key_pool, settings.anthropic_model, settings.llm_request_timeout)
    logger.info(f"Using OpenAI model {settings.openai_model}")
    return OpenAILLMClient(key_pool, settings.openai_model, settings.llm_request_timeout)
