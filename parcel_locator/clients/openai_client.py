"""
Rate-limited OpenAI client.
"""
import json
import os
from typing import Any, Dict, List, Optional

from aiolimiter import AsyncLimiter
from loguru import logger
from openai import AsyncOpenAI

from parcel_locator.config import OPENAI_API_KEY, OPENAI_CONCURRENCY


class OpenAIClient:
    """
    OpenAI client for chat completions, vision included.
    Uses AsyncLimiter for rate limiting instead of semaphores.
    """

    def __init__(self, api_key: Optional[str] = None, max_rate: int = OPENAI_CONCURRENCY):
        api_key = api_key or OPENAI_API_KEY or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY must be set in environment or config")

        self.client = AsyncOpenAI(api_key=api_key)
        # Token bucket: the vision endpoint is the most rate-limited dependency
        self.rate_limiter = AsyncLimiter(max_rate=max_rate, time_period=1.0)

    async def chat_completions_create(self, **kwargs):
        """
        Create a chat completion with rate limiting.
        Accepts all arguments that AsyncOpenAI.chat.completions.create accepts.

        Returns:
            The response from OpenAI's chat completions API.
        """
        async with self.rate_limiter:
            try:
                return await self.client.chat.completions.create(**kwargs)
            except Exception as e:
                logger.debug(f"⚠️ OpenAI API request failed: {e}")
                raise

    async def json_completion(
        self,
        model: str,
        content: List[Dict[str, Any]] | str,
        system: Optional[str] = None,
        max_tokens: int = 300,
        temperature: float = 0,
    ) -> Dict[str, Any]:
        """
        Run a JSON-mode completion and return the decoded object.

        Args:
            model: Model name.
            content: User message content, plain text or multimodal parts.
            system: Optional system prompt.
            max_tokens: Completion budget.
            temperature: Sampling temperature.

        Returns:
            Decoded JSON object ({} when the model answered nothing).
        """
        messages: List[Dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": content})
        resp = await self.chat_completions_create(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            response_format={"type": "json_object"},
        )
        text = resp.choices[0].message.content or "{}"
        return json.loads(text)

    async def text_completion(self, model: str, system: str, prompt: str, max_tokens: int = 250) -> str:
        resp = await self.chat_completions_create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens,
            temperature=0.2,
        )
        return (resp.choices[0].message.content or "").strip()

    async def close(self):
        await self.client.close()
