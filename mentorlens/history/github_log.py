"""Reads line-range history through the GitHub REST API.

For when there is no local clone. GitHub has no line-range log, so this
walks the commits that touched the file and keeps those whose patch hunks
overlap the requested range on the new-file side. PyGithub is blocking, so
the walk runs in a worker thread under the same timeout policy as the git
backend.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import timezone

from github import Auth, Github
from github.Commit import Commit
from github.GithubException import GithubException, UnknownObjectException
from github.Repository import Repository

from mentorlens.errors import HistoryIncomplete, HistoryTimeout, HistoryUnavailable
from mentorlens.history.reader import check_line_range, overlaps, parse_hunk_ranges
from mentorlens.models import CommitRecord

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3.0  # seconds
# Commits inspected per requested commit; most file commits miss the range
SCAN_FACTOR = 5


class GitHubClient:
    """Authenticated GitHub client scoped to a single repository."""

    def __init__(self, token: str, repo: str) -> None:
        self._gh = Github(auth=Auth.Token(token))
        self._repo_name = repo
        self._repo: Repository | None = None

    @property
    def repo(self) -> Repository:
        if self._repo is None:
            self._repo = self._gh.get_repo(self._repo_name)
        return self._repo

    def close(self) -> None:
        self._gh.close()


class GitHubCommitLog:
    """Commit log backed by the GitHub API."""

    def __init__(self, client: GitHubClient, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._client = client
        self._timeout = timeout

    def close(self) -> None:
        self._client.close()

    async def read(
        self,
        path: str,
        start: int,
        end: int,
        max_commits: int,
        timeout: float | None = None,
    ) -> list[CommitRecord]:
        collected: list[CommitRecord] = []
        stop = threading.Event()
        task = asyncio.to_thread(self._walk, path, start, end, max_commits, collected, stop)
        try:
            await asyncio.wait_for(task, self._timeout if timeout is None else timeout)
        except asyncio.TimeoutError:
            stop.set()
            partial = list(collected)
            logger.warning(
                f"GitHub history timed out for {path}:{start}-{end}, "
                f"keeping {len(partial)} commit(s)"
            )
            raise HistoryTimeout(f"History query for {path} timed out", partial) from None
        return collected

    def _walk(
        self,
        path: str,
        start: int,
        end: int,
        max_commits: int,
        collected: list[CommitRecord],
        stop: threading.Event,
    ) -> None:
        try:
            repo = self._client.repo
            content = repo.get_contents(path)
            commits = repo.get_commits(path=path)
        except UnknownObjectException:
            raise HistoryUnavailable(f"{path} is not tracked in the repository") from None
        except GithubException as e:
            # Bad credentials, unknown repository, rate limits
            raise HistoryUnavailable(f"Could not read {path}: {e}") from None
        if isinstance(content, list):
            raise HistoryUnavailable(f"{path} is a directory")
        text = (content.decoded_content or b"").decode("utf-8", errors="replace")
        check_line_range(path, start, end, len(text.splitlines()))

        scanned = 0
        try:
            for commit in commits:
                if stop.is_set() or len(collected) >= max_commits:
                    break
                if scanned >= max_commits * SCAN_FACTOR:
                    break
                scanned += 1
                record = _to_record(commit, path)
                if record is not None and overlaps(record.line_ranges, start, end):
                    # list.append is atomic; the caller may snapshot mid-walk
                    collected.append(record)
        except GithubException as e:
            logger.error(f"GitHub error while reading history for {path}: {e}")
            raise HistoryIncomplete(
                f"History walk for {path} stopped early: {e}", list(collected)
            ) from None


def _to_record(commit: Commit, path: str) -> CommitRecord | None:
    patch = ""
    for changed in commit.files:
        if changed.filename == path:
            patch = changed.patch or ""
            break
    if not patch:
        return None

    git_commit = commit.commit
    timestamp = git_commit.author.date
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return CommitRecord(
        id=commit.sha,
        author=git_commit.author.name or "",
        timestamp=timestamp,
        message=(git_commit.message or "").strip(),
        diff=patch,
        line_ranges=parse_hunk_ranges(patch),
    )
