"""Shared test fixtures for mentorlens."""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from mentorlens.analysis.concepts import ConceptCatalog
from mentorlens.coordinator import Coordinator
from mentorlens.errors import TransportError
from mentorlens.generation.adapter import GenerationAdapter
from mentorlens.generation.cache import ResponseCache
from mentorlens.generation.prompts import GenerationKind
from mentorlens.models import CommitRecord
from mentorlens.storage.db import get_connection
from mentorlens.storage.repository import ProfileStore

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

WELL_FORMED = {
    GenerationKind.PREDICTION: (
        "## PREDICTION\nThe fetch on line 2 will reject when the network drops.\n\n"
        "## QUESTION\nWhat happens to the page if the request fails?\n\n"
        "## MENTAL MODEL\nEvery call that crosses the network can fail; decide where that failure goes."
    ),
    GenerationKind.MENTAL_MODEL: "## MENTAL MODEL\nErrors are values you route, not surprises.",
    GenerationKind.STORYTELLING: "## NARRATIVE\nThe module was split, then a null check was fixed.",
    GenerationKind.CHALLENGES: (
        "## CHALLENGE 1\nConcept: error-handling\nTitle: Guard the fetch\n"
        "Task: Wrap the request and show a retry button on failure.\nHint: try/catch around await."
    ),
}

JS_FETCH = """\
async function load(url) {
  const res = await fetch(url);
  return res.json();
}
"""

PY_LOOPS = """\
def pairs(items, others):
    out = []
    for a in items:
        for b in others:
            out.append((a, b))
    return out
"""


def _make_commit(
    commit_id: str,
    message: str,
    minutes: int = 0,
    diff: str = "@@ -1,2 +1,3 @@\n line\n+added\n line",
    author: str = "Dana",
) -> CommitRecord:
    return CommitRecord(
        id=commit_id,
        author=author,
        timestamp=T0 + timedelta(minutes=minutes),
        message=message,
        diff=diff,
        line_ranges=((1, 3),),
    )


class StubGenerator:
    """Returns canned well-formed text, or replays a scripted list of outcomes."""

    def __init__(self, outcomes: list | None = None, delay: float = 0.0) -> None:
        self._outcomes = list(outcomes or [])
        self._delay = delay
        self.calls = 0

    async def generate(self, prompt: str, kind: GenerationKind, timeout: float) -> str:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._outcomes:
            outcome = self._outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return WELL_FORMED[kind]


class HangingGenerator:
    """Never answers."""

    def __init__(self) -> None:
        self.calls = 0

    async def generate(self, prompt: str, kind: GenerationKind, timeout: float) -> str:
        self.calls += 1
        await asyncio.sleep(3600)
        return ""


class FailingGenerator:
    def __init__(self) -> None:
        self.calls = 0

    async def generate(self, prompt: str, kind: GenerationKind, timeout: float) -> str:
        self.calls += 1
        raise TransportError("connection refused")


class StubCommitLog:
    """Commit log returning fixed commits, or raising a fixed error."""

    def __init__(
        self,
        commits: list[CommitRecord] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self._commits = list(commits or [])
        self._error = error
        self._delay = delay
        self.calls: list[tuple] = []
        self.closed = False

    async def read(self, path, start, end, max_commits, timeout=None):
        self.calls.append((path, start, end, max_commits, timeout))
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._commits[:max_commits]

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def js_fetch() -> str:
    return JS_FETCH


@pytest.fixture
def py_loops() -> str:
    return PY_LOOPS


@pytest.fixture
def well_formed() -> dict[GenerationKind, str]:
    return dict(WELL_FORMED)


@pytest.fixture
def make_commit():
    """Builder for CommitRecords touching lines 1-3, `minutes` after a fixed start."""
    return _make_commit


@pytest.fixture
def stub_generator():
    """Factory for generators replaying `outcomes`, then canned well-formed text."""
    return StubGenerator


@pytest.fixture
def hanging_generator() -> HangingGenerator:
    return HangingGenerator()


@pytest.fixture
def failing_generator() -> FailingGenerator:
    return FailingGenerator()


@pytest.fixture
def stub_commit_log():
    """Factory for commit logs returning fixed commits or raising a fixed error."""
    return StubCommitLog


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def db_conn(db_path: Path) -> sqlite3.Connection:
    conn = get_connection(db_path)
    yield conn
    conn.close()


@pytest.fixture
def store(db_conn: sqlite3.Connection) -> ProfileStore:
    return ProfileStore(db_conn)


@pytest.fixture
def catalog() -> ConceptCatalog:
    return ConceptCatalog.load()


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep activity and review logs out of the working directory."""
    monkeypatch.setenv("MENTORLENS_LOG_PATH", str(tmp_path / "activity.jsonl"))
    monkeypatch.setenv("MENTORLENS_REVIEW_LOG_PATH", str(tmp_path / "review.jsonl"))


@pytest.fixture
def make_coordinator(store: ProfileStore, catalog: ConceptCatalog):
    def _make(generator=None, commit_log=None, budget: float = 2.0, **kwargs) -> Coordinator:
        generation_timeout = kwargs.pop("generation_timeout", 1.5)
        adapter = GenerationAdapter(generator, ResponseCache(), timeout=generation_timeout)
        return Coordinator(
            store=store,
            catalog=catalog,
            adapter=adapter,
            commit_log=commit_log,
            budget=budget,
            generation_timeout=generation_timeout,
            **kwargs,
        )

    return _make
