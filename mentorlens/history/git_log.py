"""Reads line-range history from a local git clone.

Uses `git log -L<start>,<end>:<path>` so git itself follows the range
through earlier revisions. Output is streamed and parsed record by record;
if the query runs out of time, every commit that arrived in full is kept.

Record layout produced by LOG_FORMAT:
    \\x1e<hash>\\x1f<author>\\x1f<unix time>\\x1f<raw message>\\x1d<diff>
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from mentorlens.errors import HistoryTimeout, HistoryUnavailable
from mentorlens.history.reader import check_line_range, parse_hunk_ranges
from mentorlens.models import CommitRecord

logger = logging.getLogger(__name__)

RECORD_SEP = "\x1e"
FIELD_SEP = "\x1f"
HEADER_END = "\x1d"
LOG_FORMAT = "%x1e%H%x1f%an%x1f%at%x1f%B%x1d"
READ_CHUNK = 64 * 1024
DEFAULT_TIMEOUT = 1.0  # seconds


@dataclass
class _LogStreamParser:
    """Incremental parser for LOG_FORMAT output."""

    records: list[CommitRecord] = field(default_factory=list)
    _buffer: str = ""
    _started: bool = False

    def feed(self, text: str) -> None:
        self._buffer += text
        parts = self._buffer.split(RECORD_SEP)
        if not self._started:
            if len(parts) == 1:
                return
            # Anything before the first separator is noise
            parts = parts[1:]
            self._started = True
        # The last part may still be growing
        self._buffer = parts[-1]
        for raw in parts[:-1]:
            self._add(raw)

    def finish(self) -> list[CommitRecord]:
        if self._started and self._buffer:
            self._add(self._buffer)
            self._buffer = ""
        return self.records

    def _add(self, raw: str) -> None:
        record = parse_record(raw)
        if record is not None:
            self.records.append(record)


def parse_record(raw: str) -> CommitRecord | None:
    header, sep, diff = raw.partition(HEADER_END)
    if not sep:
        return None
    fields = header.split(FIELD_SEP, 3)
    if len(fields) != 4:
        logger.debug(f"Skipping malformed log record: {header[:80]!r}")
        return None
    commit_hash, author, unix_time, message = fields
    try:
        timestamp = datetime.fromtimestamp(int(unix_time), tz=timezone.utc)
    except ValueError:
        logger.debug(f"Skipping record {commit_hash[:12]} with bad timestamp {unix_time!r}")
        return None
    diff = diff.strip("\n")
    return CommitRecord(
        id=commit_hash.strip(),
        author=author,
        timestamp=timestamp,
        message=message.strip(),
        diff=diff,
        line_ranges=parse_hunk_ranges(diff),
    )


class GitCommitLog:
    """Commit log backed by the `git` executable."""

    def __init__(self, repo_dir: Path, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._repo_dir = Path(repo_dir)
        self._timeout = timeout

    def close(self) -> None:
        """Nothing to release; each read runs its own subprocess."""

    async def read(
        self,
        path: str,
        start: int,
        end: int,
        max_commits: int,
        timeout: float | None = None,
    ) -> list[CommitRecord]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (self._timeout if timeout is None else timeout)
        rel_path = self._relative(path)

        try:
            line_count = await self._line_count(rel_path, deadline)
        except asyncio.TimeoutError:
            raise HistoryTimeout(f"Timed out validating {rel_path}") from None
        check_line_range(rel_path, start, end, line_count)

        proc = await asyncio.create_subprocess_exec(
            "git", "-C", str(self._repo_dir), "log",
            f"-L{start},{end}:{rel_path}",
            f"--max-count={max_commits}",
            "--no-color",
            f"--format={LOG_FORMAT}",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        parser = _LogStreamParser()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError
                chunk = await asyncio.wait_for(proc.stdout.read(READ_CHUNK), remaining)
                if not chunk:
                    break
                parser.feed(decoder.decode(chunk))
            stderr = await asyncio.wait_for(
                proc.stderr.read(), max(deadline - loop.time(), 0.01)
            )
            returncode = await asyncio.wait_for(
                proc.wait(), max(deadline - loop.time(), 0.01)
            )
        except asyncio.TimeoutError:
            _kill(proc)
            await proc.wait()
            partial = parser.records[:max_commits]
            logger.warning(
                f"git log timed out for {rel_path}:{start}-{end}, "
                f"keeping {len(partial)} commit(s)"
            )
            raise HistoryTimeout(f"History query for {rel_path} timed out", partial) from None

        if returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise HistoryUnavailable(f"git log failed for {rel_path}: {message}")

        parser.feed(decoder.decode(b"", final=True))
        return parser.finish()[:max_commits]

    def _relative(self, path: str) -> str:
        candidate = Path(path)
        if candidate.is_absolute():
            try:
                candidate = candidate.resolve().relative_to(self._repo_dir.resolve())
            except ValueError:
                raise HistoryUnavailable(f"{path} is outside {self._repo_dir}") from None
        return candidate.as_posix()

    async def _line_count(self, rel_path: str, deadline: float) -> int:
        """Count lines of the committed file. Untracked paths raise HistoryUnavailable."""
        loop = asyncio.get_running_loop()
        proc = await asyncio.create_subprocess_exec(
            "git", "-C", str(self._repo_dir), "show", f"HEAD:./{rel_path}",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), max(deadline - loop.time(), 0.01)
            )
        except asyncio.TimeoutError:
            _kill(proc)
            await proc.wait()
            raise
        if proc.returncode != 0:
            raise HistoryUnavailable(
                f"{rel_path} is not tracked: {stderr.decode('utf-8', errors='replace').strip()}"
            )
        text = stdout.decode("utf-8", errors="replace")
        return len(text.splitlines())


def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass
