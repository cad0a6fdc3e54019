"""Configuration loading for mentorlens.

Config sources (in priority order):
1. Explicit arguments passed to functions
2. Environment variables (MENTORLENS_DB_PATH, ANTHROPIC_API_KEY, etc.)
3. .env file in current directory
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DB_PATH = Path("mentorlens.db")
DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_USER = "local"
DEFAULT_BUDGET_SECONDS = 2.0
DEFAULT_GENERATION_TIMEOUT = 1.5
DEFAULT_HISTORY_TIMEOUT = 1.0
DEFAULT_MAX_COMMITS = 20
DEFAULT_WEAK_THRESHOLD = 0.5
DEFAULT_CACHE_TTL = 24 * 60 * 60  # seconds


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Config:
    anthropic_api_key: str = ""
    model: str = DEFAULT_MODEL
    db_path: Path = DEFAULT_DB_PATH
    repo_dir: Path = Path(".")
    github_token: str = ""
    github_repo: str = ""  # "owner/repo", only used without a local clone
    user_id: str = DEFAULT_USER
    budget_seconds: float = DEFAULT_BUDGET_SECONDS
    generation_timeout: float = DEFAULT_GENERATION_TIMEOUT
    history_timeout: float = DEFAULT_HISTORY_TIMEOUT
    max_commits: int = DEFAULT_MAX_COMMITS
    weak_threshold: float = DEFAULT_WEAK_THRESHOLD
    cache_ttl: float = DEFAULT_CACHE_TTL
    concepts_path: Path | None = None

    @classmethod
    def load(cls) -> Config:
        concepts_path = os.getenv("MENTORLENS_CONCEPTS_PATH", "")
        return cls(
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            model=os.getenv("MENTORLENS_MODEL", DEFAULT_MODEL),
            db_path=Path(os.getenv("MENTORLENS_DB_PATH", str(DEFAULT_DB_PATH))),
            repo_dir=Path(os.getenv("MENTORLENS_REPO_DIR", ".")),
            github_token=os.getenv("MENTORLENS_GITHUB_TOKEN", ""),
            github_repo=os.getenv("MENTORLENS_GITHUB_REPO", ""),
            user_id=os.getenv("MENTORLENS_USER", DEFAULT_USER),
            budget_seconds=_env_float("MENTORLENS_BUDGET_SECONDS", DEFAULT_BUDGET_SECONDS),
            generation_timeout=_env_float(
                "MENTORLENS_GENERATION_TIMEOUT", DEFAULT_GENERATION_TIMEOUT
            ),
            history_timeout=_env_float("MENTORLENS_HISTORY_TIMEOUT", DEFAULT_HISTORY_TIMEOUT),
            max_commits=_env_int("MENTORLENS_MAX_COMMITS", DEFAULT_MAX_COMMITS),
            weak_threshold=_env_float("MENTORLENS_WEAK_THRESHOLD", DEFAULT_WEAK_THRESHOLD),
            cache_ttl=_env_float("MENTORLENS_CACHE_TTL", DEFAULT_CACHE_TTL),
            concepts_path=Path(concepts_path) if concepts_path else None,
        )

    @property
    def uses_github(self) -> bool:
        """True when history should come from the GitHub API instead of a local clone."""
        return bool(self.github_token and self.github_repo)

    def validate(self) -> list[str]:
        """Return a list of config issues. Generation degrades to fallbacks without a key."""
        issues = []
        if not self.anthropic_api_key:
            issues.append("Anthropic API key not set (ANTHROPIC_API_KEY); responses will be degraded")
        if self.budget_seconds <= 0:
            issues.append("Budget must be positive (MENTORLENS_BUDGET_SECONDS)")
        if self.max_commits < 1:
            issues.append("Max commits must be at least 1 (MENTORLENS_MAX_COMMITS)")
        if not 0.0 <= self.weak_threshold <= 1.0:
            issues.append("Weak concept threshold must be within [0, 1] (MENTORLENS_WEAK_THRESHOLD)")
        if bool(self.github_token) != bool(self.github_repo):
            issues.append(
                "GitHub history needs both MENTORLENS_GITHUB_TOKEN and MENTORLENS_GITHUB_REPO"
            )
        return issues
