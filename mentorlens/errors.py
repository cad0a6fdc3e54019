"""Exception types shared across mentorlens components."""

from __future__ import annotations


class MentorLensError(Exception):
    """Base class for mentorlens errors."""


class HistoryUnavailable(MentorLensError):
    """The path is not tracked, the range is outside the file, or the backend refused the query."""


class HistoryIncomplete(MentorLensError):
    """The commit log stopped part-way. `partial` holds the records read before it stopped."""

    def __init__(self, message: str, partial: list | None = None) -> None:
        super().__init__(message)
        self.partial = list(partial or [])


class TimeoutExceeded(MentorLensError):
    """A suspension point ran past its bound."""


class HistoryTimeout(TimeoutExceeded, HistoryIncomplete):
    """The commit log query was cut off by its timeout."""


class GenerationTimeout(TimeoutExceeded):
    """The text-generation call did not answer in time."""


class TransportError(MentorLensError):
    """The text-generation service could not be reached or rejected the call."""


class MalformedGeneration(MentorLensError):
    """Generated text is missing sections the response shape requires."""

    def __init__(self, message: str, text: str = "") -> None:
        super().__init__(message)
        self.text = text


class ProfileNotFound(MentorLensError):
    """No skill profile exists for the user."""


class StoreError(MentorLensError):
    """The profile store could not be written. Always fatal to the request."""
