"""Generation adapter: structured payload -> prompt -> parsed, bounded response.

Wraps the text-generation capability with a timeout, at most one retry,
a fingerprint-keyed response cache and a deterministic local fallback.
Anything not produced by a live, well-formed generation is marked degraded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from mentorlens.activity import log_malformed_generation
from mentorlens.errors import GenerationTimeout, MalformedGeneration, TransportError
from mentorlens.generation.cache import ResponseCache, fingerprint
from mentorlens.generation.client import TextGenerator
from mentorlens.generation.prompts import (
    GenerationKind,
    fallback_sections,
    parse_sections,
    render_prompt,
)
from mentorlens.models import SkillLevel

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2  # the first call plus one retry
DEFAULT_TIMEOUT = 1.5  # seconds

ORIGIN_LIVE = "live"
ORIGIN_CACHE = "cache"
ORIGIN_FALLBACK = "fallback"


@dataclass
class GenerationResult:
    kind: GenerationKind
    sections: dict = field(default_factory=dict)
    degraded: bool = False
    origin: str = ORIGIN_LIVE

    def text(self, name: str) -> str:
        return self.sections.get(name, "")


class GenerationAdapter:
    def __init__(
        self,
        generator: TextGenerator | None,
        cache: ResponseCache | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._generator = generator
        self._cache = cache if cache is not None else ResponseCache()
        self._timeout = timeout

    async def generate(
        self,
        kind: GenerationKind,
        payload: dict,
        level: SkillLevel,
        timeout: float | None = None,
    ) -> GenerationResult:
        """Generate a response, never taking longer than `timeout` seconds in total."""
        if self._generator is None:
            return self.fallback(kind, payload, level)

        prompt = render_prompt(kind, payload, level)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (self._timeout if timeout is None else timeout)

        for attempt in range(1, MAX_ATTEMPTS + 1):
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                text = await asyncio.wait_for(
                    self._generator.generate(prompt, kind, remaining), remaining
                )
            except TransportError as e:
                logger.warning(f"{kind.value} generation failed (attempt {attempt}): {e}")
                continue
            except (GenerationTimeout, asyncio.TimeoutError):
                logger.warning(f"{kind.value} generation timed out after {attempt} attempt(s)")
                break
            except MalformedGeneration as e:
                self._report_malformed(kind, e)
                break

            try:
                sections = parse_sections(kind, text)
            except MalformedGeneration as e:
                self._report_malformed(kind, e)
                break

            self._cache.put(fingerprint(kind.value, payload, level), sections)
            return GenerationResult(kind=kind, sections=sections)

        return self.fallback(kind, payload, level)

    def fallback(self, kind: GenerationKind, payload: dict, level: SkillLevel) -> GenerationResult:
        """Best-effort response without calling the service: fresh cache, else local text."""
        cached = self._cache.get(fingerprint(kind.value, payload, level))
        if cached is not None:
            return GenerationResult(kind=kind, sections=cached, degraded=True, origin=ORIGIN_CACHE)
        return GenerationResult(
            kind=kind,
            sections=fallback_sections(kind, payload),
            degraded=True,
            origin=ORIGIN_FALLBACK,
        )

    def _report_malformed(self, kind: GenerationKind, error: MalformedGeneration) -> None:
        logger.warning(f"Malformed {kind.value} generation: {error}")
        log_malformed_generation(kind.value, str(error), error.text)
