"""
Thin async client for the OpenAI-compatible LLM gateway.
"""
from typing import AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI
from dishola.utils.config import get_settings
from dishola.utils.logger import app_logger


class LLMError(RuntimeError):
    """LLM gateway interaction failure."""


class LLMClient:
    """Text-in, text-out access to the gateway, one-shot or streaming."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self.settings = get_settings()
        self.client = client or AsyncOpenAI(
            api_key=self.settings.llm_api_key or "missing-key",
            base_url=self.settings.llm_base_url,
            timeout=self.settings.llm_timeout,
        )
        self.model = model or self.settings.search_model

    @staticmethod
    def _messages(prompt: str) -> List[Dict[str, str]]:
        return [{"role": "user", "content": prompt}]

    async def complete(self, prompt: str, temperature: Optional[float] = None,
                       max_tokens: int = 500, model: Optional[str] = None) -> str:
        """Run a single non-streaming completion and return its text."""
        try:
            response = await self.client.chat.completions.create(
                model=model or self.model,
                messages=self._messages(prompt),
                temperature=self.settings.llm_temperature if temperature is None else temperature,
                max_tokens=max_tokens,
            )
        except Exception as e:
            raise LLMError(f"LLM completion failed: {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise LLMError("LLM response without content") from e
        if not content:
            raise LLMError("LLM response without content")
        return content

    async def stream_text(self, prompt: str, temperature: Optional[float] = None,
                          max_tokens: Optional[int] = None, model: Optional[str] = None) -> AsyncIterator[str]:
        """Yield text deltas as the model produces them."""
        try:
            stream = await self.client.chat.completions.create(
                model=model or self.model,
                messages=self._messages(prompt),
                temperature=self.settings.llm_temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.settings.llm_max_tokens,
                stream=True,
            )
        except Exception as e:
            raise LLMError(f"LLM stream could not start: {e}") from e

        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except Exception as e:
            app_logger.error(f"❌ LLM stream interrupted: {e}")
            raise LLMError(f"LLM stream interrupted: {e}") from e
