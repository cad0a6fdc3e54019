"""Decision extraction from commit history.

Classifies commits into decision categories with a fixed keyword table and
orders them into a timeline. Pure: the same commits always produce the same
timeline, so nothing here touches the generation service.
"""

from __future__ import annotations

import re

from mentorlens.models import CommitRecord, Decision, DecisionCategory, HistoryTimeline

RULES_VERSION = "2024.1"

# Commits with no trigger term still count as a refactoring decision above this size
LARGE_DIFF_THRESHOLD = 40

# Category order doubles as the tie-break when two terms match at the same position
TRIGGER_TERMS: dict[DecisionCategory, list[str]] = {
    DecisionCategory.ARCHITECTURAL: [
        "refactor", "refactored", "refactoring", "redesign", "redesigned",
        "restructure", "restructured", "architecture", "architectural",
        "migrate", "migrated", "migration", "split", "decouple", "decoupled",
        "modularize", "extract", "introduce", "replace", "rewrite", "rewrote",
    ],
    DecisionCategory.BUGFIX: [
        "fix", "fixed", "fixes", "bug", "bugfix", "hotfix", "patch",
        "regression", "crash", "resolve", "resolved", "null check",
    ],
    DecisionCategory.REFACTORING: [
        "cleanup", "clean up", "tidy", "rename", "renamed", "simplify",
        "simplified", "reorganize", "dedupe", "deduplicate",
    ],
}

# Conventional commit types ("fix:", "refactor(core):") override keyword matching
CONVENTIONAL_TYPES: dict[str, DecisionCategory] = {
    "fix": DecisionCategory.BUGFIX,
    "hotfix": DecisionCategory.BUGFIX,
    "refactor": DecisionCategory.ARCHITECTURAL,
    "arch": DecisionCategory.ARCHITECTURAL,
    "perf": DecisionCategory.REFACTORING,
    "style": DecisionCategory.REFACTORING,
    "chore": DecisionCategory.REFACTORING,
}

_CONVENTIONAL_PREFIX = re.compile(r"^(?P<type>[a-z]+)(?:\([^)]*\))?!?:", re.IGNORECASE)

_TERM_PATTERNS: list[tuple[DecisionCategory, re.Pattern[str]]] = [
    (category, re.compile(rf"\b{re.escape(term)}\b", re.IGNORECASE))
    for category, terms in TRIGGER_TERMS.items()
    for term in terms
]

_CATEGORY_ORDER = {category: i for i, category in enumerate(TRIGGER_TERMS)}


def extract_timeline(commits: list[CommitRecord], complete: bool = True) -> HistoryTimeline:
    """Order commits and derive one Decision per classifiable commit.

    Commits keep their place in the raw timeline even when they yield no
    Decision. `complete` is carried through so consumers know whether the
    commit set was cut short.
    """
    ordered = sorted(commits, key=lambda c: (c.timestamp, c.id))
    decisions: list[Decision] = []
    for commit in ordered:
        category = classify_commit(commit)
        if category is None:
            continue
        decisions.append(
            Decision(
                category=category,
                description=commit.summary,
                commit_id=commit.id,
                rationale=commit.body or None,
            )
        )
    return HistoryTimeline(commits=ordered, decisions=decisions, complete=complete)


def classify_commit(commit: CommitRecord) -> DecisionCategory | None:
    """Return the decision category for a commit, or None if it is not a decision."""
    summary = commit.summary

    prefix = _CONVENTIONAL_PREFIX.match(summary)
    if prefix:
        category = CONVENTIONAL_TYPES.get(prefix.group("type").lower())
        if category is not None:
            return category

    category = _match_terms(summary)
    if category is not None:
        return category

    if commit.diff_size > LARGE_DIFF_THRESHOLD:
        return DecisionCategory.REFACTORING
    return None


def _match_terms(text: str) -> DecisionCategory | None:
    """Earliest trigger term in the text wins; category order breaks ties."""
    best: tuple[int, int] | None = None
    best_category: DecisionCategory | None = None
    for category, pattern in _TERM_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        rank = (match.start(), _CATEGORY_ORDER[category])
        if best is None or rank < best:
            best = rank
            best_category = category
    return best_category
