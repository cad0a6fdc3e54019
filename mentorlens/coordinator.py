"""Request coordinator: gathers analysis, calls generation, assembles responses.

Each request moves through Received -> Gathering -> Generating -> Assembled,
or ends in Errored. A wall-clock budget runs from Received; when it is spent
before generation, the request goes straight to Assembled with fallback text.

Component failures (history, pattern scan, generation) degrade the response
instead of failing it. Only a profile store write failure (StoreError) is
fatal to a request.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from enum import Enum

from mentorlens.analysis.concepts import (
    ConceptCatalog,
    assess_skill_level,
    mastered_concepts,
    update_profile,
    weak_concepts,
)
from mentorlens.analysis.patterns import detect_patterns
from mentorlens.config import Config
from mentorlens.errors import HistoryIncomplete, HistoryUnavailable, ProfileNotFound
from mentorlens.generation.adapter import GenerationAdapter, GenerationResult
from mentorlens.generation.cache import ResponseCache
from mentorlens.generation.client import AnthropicGenerator
from mentorlens.generation.prompts import GenerationKind
from mentorlens.history.extractor import extract_timeline
from mentorlens.history.reader import CommitLog
from mentorlens.models import (
    CommitRecord,
    ConfidenceScore,
    Concept,
    Decision,
    HistoryTimeline,
    PatternFinding,
    Prediction,
    PredictionResponse,
    ProgressEvent,
    ProgressKind,
    SkillLevel,
    SkillProfile,
)
from mentorlens.storage.repository import ProfileStore

logger = logging.getLogger(__name__)

DEFAULT_BUDGET = 2.0  # seconds
DEFAULT_MAX_COMMITS = 20
DEFAULT_WEAK_THRESHOLD = 0.5
DEFAULT_HISTORY_TIMEOUT = 1.0
DEFAULT_GENERATION_TIMEOUT = 1.5
# Credited when a user confirms a prediction caught a real mistake
MINUTES_SAVED_PER_CATCH = 10.0


class RequestState(str, Enum):
    RECEIVED = "received"
    GATHERING = "gathering"
    GENERATING = "generating"
    ASSEMBLED = "assembled"
    ERRORED = "errored"


class _Request:
    def __init__(self, operation: str, budget: float) -> None:
        self.operation = operation
        self._loop = asyncio.get_running_loop()
        self.deadline = self._loop.time() + budget
        self.states: list[RequestState] = [RequestState.RECEIVED]
        self.degraded = False

    def remaining(self) -> float:
        return self.deadline - self._loop.time()

    def advance(self, state: RequestState) -> None:
        logger.debug(f"{self.operation}: {self.states[-1].value} -> {state.value}")
        self.states.append(state)

    @property
    def state_names(self) -> list[str]:
        return [s.value for s in self.states]


@dataclass
class _Gathered:
    findings: list[PatternFinding] = field(default_factory=list)
    scores: dict[Concept, ConfidenceScore] = field(default_factory=dict)
    timeline: HistoryTimeline = field(default_factory=HistoryTimeline)
    history_available: bool = False


class _JsonMixin:
    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)


@dataclass
class PredictResponse(_JsonMixin):
    prediction_id: str
    prediction: str
    question: str
    mental_model: str
    confidence: float
    skill_level: SkillLevel
    findings: list[PatternFinding] = field(default_factory=list)
    degraded: bool = False
    states: list[str] = field(default_factory=list)


@dataclass
class StoryResponse(_JsonMixin):
    narrative: str
    commits: list[CommitRecord] = field(default_factory=list)
    decisions: list[Decision] = field(default_factory=list)
    history_available: bool = False
    history_complete: bool = True
    degraded: bool = False
    states: list[str] = field(default_factory=list)


@dataclass
class SkillAnalysisResponse(_JsonMixin):
    user_id: str
    weak_concepts: list[Concept] = field(default_factory=list)
    scores: list[ConfidenceScore] = field(default_factory=list)
    challenges: list[dict] = field(default_factory=list)
    skill_level: SkillLevel = SkillLevel.JUNIOR
    degraded: bool = False
    states: list[str] = field(default_factory=list)


@dataclass
class ExplainResponse(_JsonMixin):
    concept: Concept
    mental_model: str
    degraded: bool = False
    states: list[str] = field(default_factory=list)


@dataclass
class ProgressResponse(_JsonMixin):
    user_id: str
    time_saved_minutes: float = 0.0
    mastered_concepts: list[str] = field(default_factory=list)
    accuracy: float = 0.0
    predictions_answered: int = 0
    skill_level: SkillLevel = SkillLevel.JUNIOR
    mastery: dict[str, int] = field(default_factory=dict)
    events_recorded: int = 0


class Coordinator:
    """Entry point for every operation exposed to the editor and the CLI."""

    def __init__(
        self,
        store: ProfileStore,
        catalog: ConceptCatalog,
        adapter: GenerationAdapter,
        commit_log: CommitLog | None = None,
        budget: float = DEFAULT_BUDGET,
        max_commits: int = DEFAULT_MAX_COMMITS,
        weak_threshold: float = DEFAULT_WEAK_THRESHOLD,
        history_timeout: float = DEFAULT_HISTORY_TIMEOUT,
        generation_timeout: float = DEFAULT_GENERATION_TIMEOUT,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._adapter = adapter
        self._commit_log = commit_log
        self._budget = budget
        self._max_commits = max_commits
        self._weak_threshold = weak_threshold
        self._history_timeout = history_timeout
        self._generation_timeout = generation_timeout
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_config(cls, config: Config, store: ProfileStore) -> Coordinator:
        generator = None
        if config.anthropic_api_key:
            generator = AnthropicGenerator.from_api_key(config.anthropic_api_key, config.model)

        commit_log: CommitLog
        if config.uses_github:
            from mentorlens.history.github_log import GitHubClient, GitHubCommitLog

            client = GitHubClient(token=config.github_token, repo=config.github_repo)
            commit_log = GitHubCommitLog(client, timeout=config.history_timeout)
        else:
            from mentorlens.history.git_log import GitCommitLog

            commit_log = GitCommitLog(config.repo_dir, timeout=config.history_timeout)

        return cls(
            store=store,
            catalog=ConceptCatalog.load(config.concepts_path),
            adapter=GenerationAdapter(
                generator,
                ResponseCache(ttl=config.cache_ttl),
                timeout=config.generation_timeout,
            ),
            commit_log=commit_log,
            budget=config.budget_seconds,
            max_commits=config.max_commits,
            weak_threshold=config.weak_threshold,
            history_timeout=config.history_timeout,
            generation_timeout=config.generation_timeout,
        )

    @property
    def catalog(self) -> ConceptCatalog:
        return self._catalog

    def close(self) -> None:
        """Release the commit log backend (the GitHub session, when there is one)."""
        if self._commit_log is not None:
            self._commit_log.close()

    # -- operations --------------------------------------------------------

    async def predict(
        self,
        code: str,
        language: str,
        user_id: str,
        skill_level: SkillLevel | None = None,
    ) -> PredictResponse:
        """Predict the most likely mistake in a code context."""
        async with self._request("predict") as req:
            req.advance(RequestState.GATHERING)
            gathered = await self._gather(req, snippets=[(code, language)])
            level = skill_level or self._current_level(user_id)

            ranked = _ranked_scores(gathered.scores)
            payload = {
                "code": code,
                "language": language,
                "findings": [_finding_dict(f) for f in gathered.findings],
                "concepts": [
                    {"id": s.concept.id, "name": s.concept.name, "score": s.score}
                    for s in ranked
                ],
            }
            result = await self._generate(req, GenerationKind.PREDICTION, payload, level)

            confidence = ranked[0].score if ranked else 0.0
            prediction = Prediction(
                id=str(uuid.uuid4()),
                user_id=user_id,
                code_context=code,
                predicted_mistake=result.text("PREDICTION"),
                follow_up_question=result.text("QUESTION"),
                mental_model=result.text("MENTAL MODEL"),
                confidence=confidence,
            )
            self._store.save_prediction(prediction)

            req.advance(RequestState.ASSEMBLED)
            return PredictResponse(
                prediction_id=prediction.id,
                prediction=prediction.predicted_mistake,
                question=prediction.follow_up_question,
                mental_model=prediction.mental_model,
                confidence=confidence,
                skill_level=level,
                findings=gathered.findings,
                degraded=req.degraded,
                states=req.state_names,
            )

    async def storytelling(
        self,
        path: str,
        start: int,
        end: int,
        selected_code: str = "",
        skill_level: SkillLevel = SkillLevel.JUNIOR,
    ) -> StoryResponse:
        """Explain how the selected lines evolved, from their commit history."""
        async with self._request("storytelling") as req:
            req.advance(RequestState.GATHERING)
            gathered = await self._gather(req, history=(path, start, end))
            timeline = gathered.timeline

            dates = {c.id: c.timestamp.date().isoformat() for c in timeline.commits}
            payload = {
                "path": path,
                "selected_code": selected_code,
                "complete": timeline.complete,
                "commits": [
                    {
                        "id": c.id,
                        "author": c.author,
                        "date": dates[c.id],
                        "summary": c.summary,
                    }
                    for c in timeline.commits
                ],
                "decisions": [
                    {
                        "category": d.category.value,
                        "description": d.description,
                        "rationale": d.rationale or "",
                        "commit": d.commit_id,
                        "date": dates[d.commit_id],
                    }
                    for d in timeline.decisions
                ],
            }
            result = await self._generate(req, GenerationKind.STORYTELLING, payload, skill_level)

            req.advance(RequestState.ASSEMBLED)
            return StoryResponse(
                narrative=result.text("NARRATIVE"),
                commits=timeline.commits,
                decisions=timeline.decisions,
                history_available=gathered.history_available,
                history_complete=timeline.complete,
                degraded=req.degraded,
                states=req.state_names,
            )

    async def analyze_skill(
        self,
        snippets: list[tuple[str, str]],
        user_id: str,
    ) -> SkillAnalysisResponse:
        """Find weak concepts across snippets, record them, and generate challenges.

        `snippets` holds (code, language) pairs.
        """
        async with self._request("analyze-skill") as req:
            req.advance(RequestState.GATHERING)
            gathered = await self._gather(req, snippets=snippets)
            weak = weak_concepts(gathered.scores, self._weak_threshold)

            # Shielded: a budget cancellation must not interrupt a profile write
            profile = await asyncio.shield(
                self._mutate_profile(
                    user_id,
                    lambda p: update_profile(p, [c.id for c in weak], completed=False),
                )
            )

            challenges: list[dict] = []
            if weak:
                payload = {
                    "concepts": [
                        {
                            "id": c.id,
                            "name": c.name,
                            "score": gathered.scores[c].score,
                        }
                        for c in weak
                    ],
                    "code": "\n\n".join(code for code, _lang in snippets),
                }
                result = await self._generate(
                    req, GenerationKind.CHALLENGES, payload, profile.skill_level
                )
                challenges = result.sections.get("challenges", [])

            req.advance(RequestState.ASSEMBLED)
            return SkillAnalysisResponse(
                user_id=user_id,
                weak_concepts=weak,
                scores=_ranked_scores(gathered.scores),
                challenges=challenges,
                skill_level=profile.skill_level,
                degraded=req.degraded,
                states=req.state_names,
            )

    async def explain_concept(
        self,
        concept_id: str,
        user_id: str,
        code: str = "",
        language: str = "",
        skill_level: SkillLevel | None = None,
    ) -> ExplainResponse:
        """Explain a concept's mental model, optionally tied to a code sample."""
        concept = self._catalog.get(concept_id)
        if concept is None:
            raise ValueError(f"Unknown concept '{concept_id}'")

        async with self._request("explain-concept") as req:
            req.advance(RequestState.GATHERING)
            level = skill_level or self._current_level(user_id)
            payload = {
                "concept_id": concept.id,
                "concept_name": concept.name,
                "code": code,
                "language": language,
            }
            result = await self._generate(req, GenerationKind.MENTAL_MODEL, payload, level)

            req.advance(RequestState.ASSEMBLED)
            return ExplainResponse(
                concept=concept,
                mental_model=result.text("MENTAL MODEL"),
                degraded=req.degraded,
                states=req.state_names,
            )

    def get_progress(self, user_id: str) -> ProgressResponse:
        """Read-only summary of a user's progress. Unknown users get an empty summary."""
        try:
            profile = self._store.get(user_id)
        except ProfileNotFound:
            return ProgressResponse(user_id=user_id)
        return ProgressResponse(
            user_id=user_id,
            time_saved_minutes=profile.time_saved_minutes,
            mastered_concepts=mastered_concepts(profile),
            accuracy=profile.accuracy,
            predictions_answered=profile.predictions_answered,
            skill_level=profile.skill_level,
            mastery={cid: m.level for cid, m in sorted(profile.mastery.items())},
            events_recorded=self._store.count_events(user_id),
        )

    async def post_progress(self, user_id: str, event: ProgressEvent) -> bool:
        """Apply one progress event. Returns False when the event is rejected."""
        unknown = [cid for cid in event.concept_ids if self._catalog.get(cid) is None]
        if unknown:
            logger.warning(f"Rejecting progress event with unknown concept(s): {', '.join(unknown)}")
            return False

        if event.kind == ProgressKind.PREDICTION_RESPONSE:
            if event.response is None:
                return False
            prediction = self._store.get_prediction(event.prediction_id)
            if prediction is None or prediction.user_id != user_id:
                logger.warning(f"No prediction {event.prediction_id} for user '{user_id}'")
                return False
            if prediction.response is not None:
                logger.info(f"Prediction {event.prediction_id} already has a response")
                return False
        elif not event.concept_ids:
            return False

        profile = await asyncio.shield(
            self._mutate_profile(user_id, lambda p: _apply_event(p, event), event=event)
        )
        return profile is not None

    async def reset(self, user_id: str) -> bool:
        """Delete the user's profile. Succeeds whether or not one existed."""
        async with self._lock_for(user_id):
            existed = self._store.delete(user_id)
        logger.info(f"Reset profile for '{user_id}' (existed: {existed})")
        return True

    # -- internals ---------------------------------------------------------

    @asynccontextmanager
    async def _request(self, operation: str):
        req = _Request(operation, self._budget)
        try:
            yield req
        except BaseException:
            req.advance(RequestState.ERRORED)
            raise

    async def _gather(
        self,
        req: _Request,
        history: tuple[str, int, int] | None = None,
        snippets: list[tuple[str, str]] | None = None,
    ) -> _Gathered:
        gathered = _Gathered()
        tasks = []
        if history is not None:
            tasks.append(self._gather_history(req, gathered, *history))
        if snippets is not None:
            tasks.append(self._gather_patterns(req, gathered, snippets))
        await asyncio.gather(*tasks)
        return gathered

    async def _gather_history(
        self, req: _Request, gathered: _Gathered, path: str, start: int, end: int
    ) -> None:
        if self._commit_log is None:
            gathered.timeline = extract_timeline([])
            return

        timeout = max(min(self._history_timeout, req.remaining()), 0.0)
        complete = True
        try:
            commits = await self._commit_log.read(
                path, start, end, self._max_commits, timeout=timeout
            )
            gathered.history_available = True
        except HistoryUnavailable as e:
            logger.info(f"No history for {path}:{start}-{end}: {e}")
            commits = []
        except HistoryIncomplete as e:
            logger.warning(f"History for {path} is partial ({len(e.partial)} commit(s)): {e}")
            commits = e.partial
            complete = False
            gathered.history_available = bool(commits)
            req.degraded = True
        except Exception as e:
            # Reader failures never abort the request
            logger.exception(f"Commit log backend failed for {path}: {e}")
            commits = []
            req.degraded = True
        gathered.timeline = extract_timeline(commits, complete=complete)

    async def _gather_patterns(
        self, req: _Request, gathered: _Gathered, snippets: list[tuple[str, str]]
    ) -> None:
        findings: list[PatternFinding] = []
        for code, language in snippets:
            try:
                findings.extend(detect_patterns(code, language))
            except (ValueError, IndexError, RecursionError) as e:
                logger.error(f"Pattern scan failed for a {language} snippet: {e}")
                req.degraded = True
        gathered.findings = findings
        gathered.scores = self._catalog.score(findings)

    async def _generate(
        self, req: _Request, kind: GenerationKind, payload: dict, level: SkillLevel
    ) -> GenerationResult:
        remaining = req.remaining()
        if remaining <= 0:
            logger.warning(f"{req.operation}: budget spent before generation, using fallback")
            result = self._adapter.fallback(kind, payload, level)
        else:
            req.advance(RequestState.GENERATING)
            result = await self._adapter.generate(
                kind, payload, level, timeout=min(self._generation_timeout, remaining)
            )
        if result.degraded:
            req.degraded = True
        return result

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        return self._locks.setdefault(user_id, asyncio.Lock())

    async def _mutate_profile(
        self, user_id: str, mutate, event: ProgressEvent | None = None
    ) -> SkillProfile | None:
        """Load (or create), mutate, re-assess and store a profile under the user's lock.

        A prediction response is stored in the same write as the profile it
        credits. Returns None when that prediction was answered concurrently.
        """
        async with self._lock_for(user_id):
            try:
                profile = self._store.get(user_id)
            except ProfileNotFound:
                logger.info(f"Creating skill profile for '{user_id}'")
                profile = SkillProfile(user_id=user_id)
            mutate(profile)
            profile.skill_level = assess_skill_level(profile)
            if event is not None and event.kind == ProgressKind.PREDICTION_RESPONSE:
                if not self._store.answer_prediction(profile, event):
                    logger.info(f"Prediction {event.prediction_id} already has a response")
                    return None
            else:
                self._store.put(profile, event)
            return profile

    def _current_level(self, user_id: str) -> SkillLevel:
        try:
            return self._store.get(user_id).skill_level
        except ProfileNotFound:
            return SkillLevel.JUNIOR


def _apply_event(profile: SkillProfile, event: ProgressEvent) -> None:
    if event.kind == ProgressKind.CHALLENGE_COMPLETED:
        update_profile(profile, event.concept_ids, completed=True, at=event.occurred_at)
        profile.time_saved_minutes += event.time_saved_minutes
    elif event.kind == ProgressKind.CONCEPT_PRACTICED:
        update_profile(profile, event.concept_ids, completed=False, at=event.occurred_at)
    elif event.kind == ProgressKind.PREDICTION_RESPONSE:
        if event.response == PredictionResponse.CORRECT:
            profile.predictions_correct += 1
            profile.predictions_answered += 1
            profile.time_saved_minutes += event.time_saved_minutes or MINUTES_SAVED_PER_CATCH
        elif event.response == PredictionResponse.INCORRECT:
            profile.predictions_answered += 1
        if event.concept_ids:
            update_profile(profile, event.concept_ids, completed=False, at=event.occurred_at)
        profile.updated_at = event.occurred_at


def _ranked_scores(scores: dict[Concept, ConfidenceScore]) -> list[ConfidenceScore]:
    return sorted(scores.values(), key=lambda s: (-s.score, s.concept.id))


def _finding_dict(finding: PatternFinding) -> dict:
    return {
        "pattern_type": finding.pattern_type,
        "line": finding.line_range[0],
        "severity": finding.severity,
        "message": finding.message,
    }

