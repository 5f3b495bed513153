"""Exception hierarchy shared by the transport, poller, splitter and stitcher."""

from __future__ import annotations

from typing import Any


class LyricVisionError(Exception):
    """Base class for all pipeline errors."""


class EmptyInputError(LyricVisionError, ValueError):
    """Raised when an operation is called with nothing to do (a caller bug)."""


class TransportError(LyricVisionError):
    """Raised when the remote job server cannot be reached or answers badly.

    Covers network errors, timeouts, non-2xx responses and malformed JSON.
    """

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class GenerationError(LyricVisionError):
    """Base class for failures of a submitted generation job."""


class BackendExecutionError(GenerationError):
    """The remote job reported a runtime failure.

    ``str(exc)`` is the user-facing message (possibly rewritten into a
    remediation); ``raw_message`` keeps what the backend actually said.
    """

    def __init__(self, message: str, raw_message: str = "", node_type: str | None = None):
        self.raw_message = raw_message or message
        self.node_type = node_type
        super().__init__(message)


class NoArtifactError(GenerationError):
    """The job finished but no usable output could be extracted."""


class CapabilityMissingError(GenerationError):
    """The backend lacks a model or node type the requested graph needs."""


class GenerationTimeoutError(GenerationError, TimeoutError):
    """Bounded polling of an image job ran out of attempts."""


class ClipSequenceError(GenerationError):
    """A clip of a multi-clip (long video) sequence failed.

    Attributes:
        clip_index: 1-indexed position of the failing clip.
        completed: Clips produced before the failure.
    """

    def __init__(self, message: str, clip_index: int, completed: list | None = None):
        self.clip_index = clip_index
        self.completed = completed or []
        super().__init__(message)


class MediaError(LyricVisionError):
    """ffmpeg is missing or a media operation on local files failed."""


class StitchError(MediaError):
    """Concatenating clips into one file failed."""


class IncompatibleClipsError(StitchError):
    """Clips do not share codec parameters, so they cannot be stream-copied."""


class ArchiveError(LyricVisionError):
    """None of the requested artifacts could be bundled."""
