"""Text-generation capability backed by the Anthropic Messages API."""

from __future__ import annotations

import logging
from typing import Protocol

import anthropic

from mentorlens.errors import GenerationTimeout, MalformedGeneration, TransportError
from mentorlens.generation.prompts import GenerationKind

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"

MAX_TOKENS = {
    GenerationKind.PREDICTION: 600,
    GenerationKind.MENTAL_MODEL: 500,
    GenerationKind.STORYTELLING: 1024,
    GenerationKind.CHALLENGES: 1024,
}


class TextGenerator(Protocol):
    """Produces text for a rendered prompt within `timeout` seconds.

    Raises TransportError when the service is unreachable and
    GenerationTimeout when it does not answer in time.
    """

    async def generate(self, prompt: str, kind: GenerationKind, timeout: float) -> str: ...


class AnthropicGenerator:
    def __init__(self, client: anthropic.AsyncAnthropic, model: str = DEFAULT_MODEL) -> None:
        self._client = client
        self._model = model

    @classmethod
    def from_api_key(cls, api_key: str, model: str = DEFAULT_MODEL) -> AnthropicGenerator:
        # Retries are owned by the adapter, which allows at most one
        client = anthropic.AsyncAnthropic(api_key=api_key, max_retries=0)
        return cls(client, model)

    async def generate(self, prompt: str, kind: GenerationKind, timeout: float) -> str:
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=MAX_TOKENS[kind],
                messages=[{"role": "user", "content": prompt}],
                timeout=timeout,
            )
        except anthropic.APITimeoutError as e:
            raise GenerationTimeout(f"{kind.value} generation timed out") from e
        except anthropic.APIError as e:
            logger.error(f"API error during {kind.value} generation: {e}")
            raise TransportError(str(e)) from e

        if not response.content:
            raise MalformedGeneration(f"Empty response for {kind.value} generation")
        return response.content[0].text
