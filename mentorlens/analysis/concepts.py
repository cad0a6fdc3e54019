"""Concept confidence scoring and skill profile evolution.

Findings map to concepts through a table loaded from JSON, so new pattern
types can be wired to concepts without touching the scoring code. The
default table ships in mentorlens/data/concepts.json.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

from mentorlens.models import (
    ConfidenceScore,
    Concept,
    Mastery,
    PatternFinding,
    SkillLevel,
    SkillProfile,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "data" / "concepts.json"

MAX_MASTERY = 5
MASTERED_LEVEL = 4

# assess_skill_level thresholds
MID_SOLID_LEVEL = 3
MID_SOLID_CONCEPTS = 3
MID_MIN_ACCURACY = 0.6
MID_MIN_ANSWERED = 5
MID_MASTERED_CONCEPTS = 5


class ConceptCatalog:
    """Read-only concept catalog plus the pattern -> concept table."""

    def __init__(self, concepts: list[Concept], patterns: dict[str, str], version: str = "") -> None:
        self._concepts = {c.id: c for c in concepts}
        for pattern_type, concept_id in patterns.items():
            if concept_id not in self._concepts:
                raise ValueError(
                    f"Pattern '{pattern_type}' maps to unknown concept '{concept_id}'"
                )
        self._patterns = dict(patterns)
        self.version = version

    @classmethod
    def load(cls, path: Path | None = None) -> ConceptCatalog:
        path = path or DEFAULT_CATALOG_PATH
        data = json.loads(Path(path).read_text())
        concepts = [
            Concept(id=c["id"], name=c["name"], category=c.get("category", "general"))
            for c in data.get("concepts", [])
        ]
        return cls(concepts, data.get("patterns", {}), version=str(data.get("version", "")))

    @property
    def concepts(self) -> list[Concept]:
        return sorted(self._concepts.values(), key=lambda c: c.id)

    def get(self, concept_id: str) -> Concept | None:
        return self._concepts.get(concept_id)

    def concept_for(self, pattern_type: str) -> Concept | None:
        concept_id = self._patterns.get(pattern_type)
        return self._concepts[concept_id] if concept_id else None

    def score(self, findings: list[PatternFinding]) -> dict[Concept, ConfidenceScore]:
        """Confidence per concept: the highest severity among its findings.

        Max rather than sum, so ten minor findings never outweigh one serious
        one. The returned mapping is new on every call.
        """
        evidence: dict[Concept, list[PatternFinding]] = {}
        for finding in findings:
            concept = self.concept_for(finding.pattern_type)
            if concept is None:
                logger.debug(f"No concept mapped for pattern '{finding.pattern_type}'")
                continue
            evidence.setdefault(concept, []).append(finding)

        return {
            concept: ConfidenceScore(
                concept=concept,
                score=_clip(max(f.severity for f in items)),
                evidence=tuple(items),
            )
            for concept, items in evidence.items()
        }


def weak_concepts(scores: dict[Concept, ConfidenceScore], threshold: float) -> list[Concept]:
    """Concepts scoring at or above threshold, highest first, then by id."""
    weak = [s for s in scores.values() if s.score >= threshold]
    weak.sort(key=lambda s: (-s.score, s.concept.id))
    return [s.concept for s in weak]


def update_profile(
    profile: SkillProfile,
    concept_ids: list[str],
    completed: bool = False,
    at: datetime | None = None,
) -> SkillProfile:
    """Apply one touching event to the mastery map, in place.

    Every touched concept gets a new last-practiced time. Only a completed
    challenge counts toward challenges_completed and raises the level, by
    one, up to MAX_MASTERY. Levels never go down here.
    """
    at = at or utcnow()
    for concept_id in dict.fromkeys(concept_ids):
        mastery = profile.mastery.setdefault(concept_id, Mastery())
        mastery.last_practiced = at
        if completed:
            mastery.challenges_completed += 1
            mastery.level = min(mastery.level + 1, MAX_MASTERY)
    profile.updated_at = at
    return profile


def assess_skill_level(profile: SkillProfile) -> SkillLevel:
    """Derive the skill level from mastery spread and prediction accuracy."""
    levels = [m.level for m in profile.mastery.values()]
    solid = sum(1 for level in levels if level >= MID_SOLID_LEVEL)
    mastered = sum(1 for level in levels if level >= MASTERED_LEVEL)

    if mastered >= MID_MASTERED_CONCEPTS:
        return SkillLevel.MID_LEVEL
    if (
        solid >= MID_SOLID_CONCEPTS
        and profile.predictions_answered >= MID_MIN_ANSWERED
        and profile.accuracy >= MID_MIN_ACCURACY
    ):
        return SkillLevel.MID_LEVEL
    return SkillLevel.JUNIOR


def mastered_concepts(profile: SkillProfile) -> list[str]:
    return sorted(cid for cid, m in profile.mastery.items() if m.level >= MASTERED_LEVEL)


def _clip(value: float) -> float:
    return min(max(value, 0.0), 1.0)
