"""Commit log capability shared by the git and GitHub backends."""

from __future__ import annotations

import re
from typing import Protocol

from mentorlens.errors import HistoryUnavailable
from mentorlens.models import CommitRecord

_HUNK_HEADER = re.compile(r"^@@ -\d+(?:,\d+)? \+(\d+)(?:,(\d+))? @@", re.MULTILINE)


class CommitLog(Protocol):
    """Returns commits that touched a line range, most recent first.

    Implementations raise HistoryUnavailable for untracked paths or bad
    ranges, HistoryTimeout when the query runs past `timeout` seconds, and
    HistoryIncomplete when the backend fails part-way. Both carry the
    records read so far in `partial`.
    """

    async def read(
        self,
        path: str,
        start: int,
        end: int,
        max_commits: int,
        timeout: float | None = None,
    ) -> list[CommitRecord]: ...

    def close(self) -> None: ...


def parse_hunk_ranges(diff: str) -> tuple[tuple[int, int], ...]:
    """Extract the new-side line ranges touched by each hunk of a unified diff."""
    ranges: list[tuple[int, int]] = []
    for match in _HUNK_HEADER.finditer(diff):
        first = int(match.group(1))
        count = int(match.group(2)) if match.group(2) is not None else 1
        if count == 0:
            # Pure deletion: the hunk sits just after line `first`
            point = max(first, 1)
            ranges.append((point, point))
        else:
            ranges.append((first, first + count - 1))
    return tuple(ranges)


def overlaps(ranges: tuple[tuple[int, int], ...], start: int, end: int) -> bool:
    return any(lo <= end and hi >= start for lo, hi in ranges)


def check_line_range(path: str, start: int, end: int, line_count: int) -> None:
    if start < 1 or end < start:
        raise HistoryUnavailable(f"Invalid line range {start}-{end} for {path}")
    if end > line_count:
        raise HistoryUnavailable(
            f"Line range {start}-{end} is outside {path} ({line_count} lines)"
        )
