"""Answer generators."""

import logging
from typing import TYPE_CHECKING, Optional

from .base import BaseGenerator
from .embeddings import create_openai_client, openai_transient_errors
from .exceptions import TransientError

if TYPE_CHECKING:
    from .utils.config import OpenAISettings

logger = logging.getLogger(__name__)


class StaticGenerator(BaseGenerator):
    """Answers every prompt with a fixed string.

    ``last_prompt`` and ``calls`` record what the engine sent, which is
    what tests usually want to look at.
    """

    def __init__(self, answer: str = "This is a static answer."):
        self.answer = answer
        self.last_prompt: Optional[str] = None
        self.calls = 0

    async def generate(self, prompt: str) -> str:
        self.calls += 1
        self.last_prompt = prompt
        return self.answer


class OpenAIGenerator(BaseGenerator):
    """Single-turn answers from the OpenAI chat completions endpoint.

    The prompt is sent as one user message. Transient API failures are
    raised as ``TransientError`` for the engine's resilience policy.
    Needs the ``openai`` extra.
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ):
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = None

    @classmethod
    def from_settings(cls, settings: "OpenAISettings") -> "OpenAIGenerator":
        """Build the generator from the ``openai`` settings section."""
        return cls(
            model=settings.chat_model,
            api_key=settings.api_key,
            base_url=settings.base_url,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )

    def _get_client(self):
        if self._client is None:
            self._client = create_openai_client(self.api_key, self.base_url)
        return self._client

    async def generate(self, prompt: str) -> str:
        request = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        logger.debug(f"Requesting completion from {self.model} ({len(prompt)} prompt chars)")

        try:
            response = await self._get_client().chat.completions.create(**request)
        except openai_transient_errors() as e:
            raise TransientError(str(e), operation="generation") from e

        return response.choices[0].message.content or ""
