"""Core data models for mentorlens."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

_DIFF_CHANGE = re.compile(r"^[+-](?![+-]{2} )", re.MULTILINE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SkillLevel(str, Enum):
    JUNIOR = "junior"
    MID_LEVEL = "mid-level"


class DecisionCategory(str, Enum):
    ARCHITECTURAL = "architectural"
    REFACTORING = "refactoring"
    BUGFIX = "bugfix"


class PredictionResponse(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    SKIPPED = "skipped"


class ProgressKind(str, Enum):
    CHALLENGE_COMPLETED = "challenge_completed"
    CONCEPT_PRACTICED = "concept_practiced"
    PREDICTION_RESPONSE = "prediction_response"


@dataclass(frozen=True)
class CommitRecord:
    id: str  # full commit hash
    author: str
    timestamp: datetime
    message: str
    diff: str  # unified diff text
    line_ranges: tuple[tuple[int, int], ...] = ()  # inclusive, new-file side

    @property
    def summary(self) -> str:
        lines = self.message.strip().splitlines()
        return lines[0].strip() if lines else ""

    @property
    def body(self) -> str:
        """Explanatory text after the one-line summary, or "" if there is none."""
        lines = self.message.strip().splitlines()
        return "\n".join(lines[1:]).strip()

    @property
    def diff_size(self) -> int:
        return len(_DIFF_CHANGE.findall(self.diff))


@dataclass(frozen=True)
class Decision:
    category: DecisionCategory
    description: str
    commit_id: str  # lookup key into the timeline's commits, never the record itself
    rationale: str | None = None


@dataclass
class HistoryTimeline:
    commits: list[CommitRecord] = field(default_factory=list)
    decisions: list[Decision] = field(default_factory=list)
    complete: bool = True

    def commit_for(self, decision: Decision) -> CommitRecord | None:
        for commit in self.commits:
            if commit.id == decision.commit_id:
                return commit
        return None


@dataclass(frozen=True)
class PatternFinding:
    pattern_type: str  # e.g. "missing-error-handling"
    line_range: tuple[int, int]  # 1-based, inclusive
    severity: float  # 0-1, fixed per rule
    message: str = ""


@dataclass(frozen=True)
class Concept:
    id: str  # e.g. "error-handling"
    name: str  # e.g. "Error Handling"
    category: str  # e.g. "reliability"


@dataclass(frozen=True)
class ConfidenceScore:
    concept: Concept
    score: float  # always within [0, 1]
    evidence: tuple[PatternFinding, ...] = ()


@dataclass
class Mastery:
    level: int = 0  # 0-5
    last_practiced: datetime | None = None
    challenges_completed: int = 0


@dataclass
class SkillProfile:
    user_id: str
    skill_level: SkillLevel = SkillLevel.JUNIOR
    mastery: dict[str, Mastery] = field(default_factory=dict)
    predictions_correct: int = 0
    predictions_answered: int = 0  # correct + incorrect, skips excluded
    time_saved_minutes: float = 0.0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def accuracy(self) -> float:
        if not self.predictions_answered:
            return 0.0
        return self.predictions_correct / self.predictions_answered


@dataclass
class Prediction:
    id: str  # UUID
    user_id: str
    code_context: str
    predicted_mistake: str
    follow_up_question: str
    mental_model: str
    confidence: float
    response: PredictionResponse | None = None
    created_at: datetime = field(default_factory=utcnow)
    responded_at: datetime | None = None


@dataclass
class ProgressEvent:
    kind: ProgressKind
    concept_ids: list[str] = field(default_factory=list)
    prediction_id: str = ""
    response: PredictionResponse | None = None
    time_saved_minutes: float = 0.0
    occurred_at: datetime = field(default_factory=utcnow)
