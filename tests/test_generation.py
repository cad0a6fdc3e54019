"""Tests for mentorlens.generation (cache, adapter, Anthropic client)."""

from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from mentorlens.errors import GenerationTimeout, MalformedGeneration, TransportError
from mentorlens.generation.adapter import (
    ORIGIN_CACHE,
    ORIGIN_FALLBACK,
    ORIGIN_LIVE,
    GenerationAdapter,
)
from mentorlens.generation.cache import ResponseCache, fingerprint
from mentorlens.generation.client import AnthropicGenerator
from mentorlens.generation.prompts import GenerationKind
from mentorlens.models import SkillLevel

PAYLOAD = {"concept_id": "error-handling", "concept_name": "Error Handling", "code": "", "language": ""}
KIND = GenerationKind.MENTAL_MODEL


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestFingerprint:
    def test_stable_across_key_order(self):
        a = fingerprint("prediction", {"a": 1, "b": [1, 2]}, SkillLevel.JUNIOR)
        b = fingerprint("prediction", {"b": [1, 2], "a": 1}, SkillLevel.JUNIOR)
        assert a == b

    def test_level_and_kind_matter(self):
        base = fingerprint("prediction", {"a": 1}, SkillLevel.JUNIOR)
        assert base != fingerprint("prediction", {"a": 1}, SkillLevel.MID_LEVEL)
        assert base != fingerprint("storytelling", {"a": 1}, SkillLevel.JUNIOR)


class TestResponseCache:
    def test_fresh_entry(self):
        clock = FakeClock()
        cache = ResponseCache(ttl=60, clock=clock)
        cache.put("k", {"NARRATIVE": "story"})
        clock.now += 59
        assert cache.get("k") == {"NARRATIVE": "story"}

    def test_stale_entry(self):
        clock = FakeClock()
        cache = ResponseCache(ttl=60, clock=clock)
        cache.put("k", {"NARRATIVE": "story"})
        clock.now += 61
        assert cache.get("k") is None

    def test_put_replaces_whole_entry(self):
        cache = ResponseCache()
        cache.put("k", {"A": "1"})
        cache.put("k", {"B": "2"})
        assert cache.get("k") == {"B": "2"}
        assert len(cache) == 1

    def test_stale_entries_are_dropped_on_put(self):
        clock = FakeClock()
        cache = ResponseCache(ttl=60, clock=clock)
        for i in range(5):
            cache.put(f"old-{i}", {"NARRATIVE": "story"})
        clock.now += 61
        cache.put("new", {"NARRATIVE": "story"})
        assert len(cache) == 1
        assert cache.get("new") is not None

    def test_entry_limit_evicts_oldest(self):
        clock = FakeClock()
        cache = ResponseCache(ttl=60, clock=clock, max_entries=3)
        for key in ("a", "b", "c"):
            cache.put(key, {"NARRATIVE": key})
            clock.now += 1
        cache.put("a", {"NARRATIVE": "again"})
        cache.put("d", {"NARRATIVE": "d"})
        assert len(cache) == 3
        assert cache.get("b") is None
        assert cache.get("a") == {"NARRATIVE": "again"}
        assert cache.get("c") is not None
        assert cache.get("d") is not None


class TestGenerationAdapter:
    def test_live_result(self, stub_generator):
        generator = stub_generator()
        adapter = GenerationAdapter(generator)
        result = asyncio.run(adapter.generate(KIND, PAYLOAD, SkillLevel.JUNIOR))
        assert result.origin == ORIGIN_LIVE
        assert result.degraded is False
        assert result.text("MENTAL MODEL") == "Errors are values you route, not surprises."
        assert generator.calls == 1

    def test_no_generator_falls_back(self):
        result = asyncio.run(GenerationAdapter(None).generate(KIND, PAYLOAD, SkillLevel.JUNIOR))
        assert result.degraded is True
        assert result.origin == ORIGIN_FALLBACK
        assert result.text("MENTAL MODEL")

    def test_retries_transport_error_once(self, stub_generator, well_formed):
        generator = stub_generator([TransportError("reset"), well_formed[KIND]])
        result = asyncio.run(GenerationAdapter(generator).generate(KIND, PAYLOAD, SkillLevel.JUNIOR))
        assert result.origin == ORIGIN_LIVE
        assert generator.calls == 2

    def test_at_most_one_retry(self, failing_generator):
        generator = failing_generator
        result = asyncio.run(GenerationAdapter(generator).generate(KIND, PAYLOAD, SkillLevel.JUNIOR))
        assert result.degraded is True
        assert generator.calls == 2

    def test_hanging_generator_is_bounded(self, hanging_generator):
        generator = hanging_generator
        adapter = GenerationAdapter(generator, timeout=0.2)
        started = time.monotonic()
        result = asyncio.run(adapter.generate(KIND, PAYLOAD, SkillLevel.JUNIOR))
        assert time.monotonic() - started < 1.0
        assert result.degraded is True
        assert generator.calls == 1

    def test_explicit_timeout_overrides_default(self, hanging_generator):
        adapter = GenerationAdapter(hanging_generator, timeout=30)
        started = time.monotonic()
        asyncio.run(adapter.generate(KIND, PAYLOAD, SkillLevel.JUNIOR, timeout=0.1))
        assert time.monotonic() - started < 1.0

    def test_generation_timeout_is_not_retried(self, stub_generator):
        generator = stub_generator([GenerationTimeout("slow")])
        result = asyncio.run(GenerationAdapter(generator).generate(KIND, PAYLOAD, SkillLevel.JUNIOR))
        assert result.degraded is True
        assert generator.calls == 1

    def test_malformed_is_logged_for_review(self, tmp_path: Path, stub_generator):
        generator = stub_generator(["Sure! Here is an explanation without sections."])
        result = asyncio.run(GenerationAdapter(generator).generate(KIND, PAYLOAD, SkillLevel.JUNIOR))
        assert result.degraded is True
        assert generator.calls == 1

        entry = json.loads((tmp_path / "review.jsonl").read_text().strip())
        assert entry["kind"] == "mental_model"
        assert "MENTAL MODEL" in entry["reason"]
        assert entry["text"].startswith("Sure!")

    def test_failure_serves_fresh_cache(self, stub_generator, failing_generator):
        cache = ResponseCache()
        adapter = GenerationAdapter(stub_generator(), cache)
        asyncio.run(adapter.generate(KIND, PAYLOAD, SkillLevel.JUNIOR))

        failing = GenerationAdapter(failing_generator, cache)
        result = asyncio.run(failing.generate(KIND, PAYLOAD, SkillLevel.JUNIOR))
        assert result.origin == ORIGIN_CACHE
        assert result.degraded is True
        assert result.text("MENTAL MODEL") == "Errors are values you route, not surprises."

    def test_cache_is_keyed_by_level(self, stub_generator):
        cache = ResponseCache()
        asyncio.run(GenerationAdapter(stub_generator(), cache).generate(KIND, PAYLOAD, SkillLevel.JUNIOR))
        result = GenerationAdapter(None, cache).fallback(KIND, PAYLOAD, SkillLevel.MID_LEVEL)
        assert result.origin == ORIGIN_FALLBACK

    def test_malformed_response_is_not_cached(self, stub_generator):
        cache = ResponseCache()
        asyncio.run(
            GenerationAdapter(stub_generator(["no sections"]), cache).generate(
                KIND, PAYLOAD, SkillLevel.JUNIOR
            )
        )
        assert len(cache) == 0


def _anthropic_client(create: AsyncMock) -> MagicMock:
    client = MagicMock()
    client.messages.create = create
    return client


class TestAnthropicGenerator:
    def test_returns_text(self):
        block = MagicMock()
        block.text = "## MENTAL MODEL\nx"
        create = AsyncMock(return_value=MagicMock(content=[block]))
        generator = AnthropicGenerator(_anthropic_client(create), model="test-model")

        text = asyncio.run(generator.generate("prompt", KIND, timeout=1.0))
        assert text == "## MENTAL MODEL\nx"
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["timeout"] == 1.0
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]

    def test_timeout_maps_to_generation_timeout(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        create = AsyncMock(side_effect=anthropic.APITimeoutError(request=request))
        generator = AnthropicGenerator(_anthropic_client(create))
        with pytest.raises(GenerationTimeout):
            asyncio.run(generator.generate("prompt", KIND, timeout=1.0))

    def test_connection_error_maps_to_transport_error(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        create = AsyncMock(side_effect=anthropic.APIConnectionError(request=request))
        generator = AnthropicGenerator(_anthropic_client(create))
        with pytest.raises(TransportError):
            asyncio.run(generator.generate("prompt", KIND, timeout=1.0))

    def test_empty_content_is_malformed(self):
        create = AsyncMock(return_value=MagicMock(content=[]))
        generator = AnthropicGenerator(_anthropic_client(create))
        with pytest.raises(MalformedGeneration):
            asyncio.run(generator.generate("prompt", KIND, timeout=1.0))
