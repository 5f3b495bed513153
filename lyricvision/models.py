"""Data models for the lyrics-to-music-video generation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from lyricvision.errors import EmptyInputError


class MotionEffect(str, Enum):
    """Camera motion applied to an AnimateDiff clip through a motion LoRA.

    Values are the LoRA file names expected on the backend.
    """
    AUTO = "auto"
    NONE = "none"
    PAN_LEFT = "v2_lora_PanLeft.ckpt"
    PAN_RIGHT = "v2_lora_PanRight.ckpt"
    ZOOM_IN = "v2_lora_ZoomIn.ckpt"
    ZOOM_OUT = "v2_lora_ZoomOut.ckpt"
    TILT_UP = "v2_lora_TiltUp.ckpt"
    TILT_DOWN = "v2_lora_TiltDown.ckpt"
    ROLLING_CLOCKWISE = "v2_lora_RollingClockwise.ckpt"
    ROLLING_ANTICLOCKWISE = "v2_lora_RollingAnticlockwise.ckpt"

    @property
    def is_lora(self) -> bool:
        return self not in (MotionEffect.AUTO, MotionEffect.NONE)


class JobKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    AMBIGUOUS = "ambiguous"


class SceneStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


class ClipRole(str, Enum):
    SCENE = "scene"
    TRANSITION = "transition"


@dataclass(frozen=True)
class OutputFile:
    """A file written by the remote job server.

    Attributes:
        filename: Name of the file in the server's output directory.
        subfolder: Subfolder under that directory ("" for the root).
        kind: Storage area ("output", "temp" or "input").
    """
    filename: str
    subfolder: str = ""
    kind: str = "output"

    @property
    def extension(self) -> str:
        _, dot, ext = self.filename.rpartition(".")
        return f".{ext.lower()}" if dot else ""


@dataclass(frozen=True)
class ImageArtifact:
    ref: OutputFile


@dataclass(frozen=True)
class VideoArtifact:
    ref: OutputFile


@dataclass(frozen=True)
class FrameSequenceArtifact:
    refs: tuple[OutputFile, ...]


ArtifactResult = Union[ImageArtifact, VideoArtifact, FrameSequenceArtifact]


@dataclass(frozen=True)
class JobHandle:
    """One submitted unit of work.

    Attributes:
        job_id: Opaque id assigned by the backend.
        submitted_at: Clock reading at submission time.
        graph: The job graph that was submitted.
    """
    job_id: str
    submitted_at: float
    graph: dict = field(repr=False, compare=False)


@dataclass(frozen=True)
class JobState:
    """State of a job as last observed by the poller."""
    status: JobStatus
    artifact: ArtifactResult | None = None
    reason: str | None = None
    error: Exception | None = field(default=None, compare=False)
    raw_history: dict | None = field(default=None, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.SUCCEEDED, JobStatus.FAILED)

    @classmethod
    def queued(cls) -> JobState:
        return cls(JobStatus.QUEUED)

    @classmethod
    def running(cls) -> JobState:
        return cls(JobStatus.RUNNING)

    @classmethod
    def succeeded(cls, artifact: ArtifactResult) -> JobState:
        return cls(JobStatus.SUCCEEDED, artifact=artifact)

    @classmethod
    def failed(cls, error: Exception) -> JobState:
        return cls(JobStatus.FAILED, reason=str(error), error=error)

    @classmethod
    def ambiguous(cls, raw_history: dict) -> JobState:
        return cls(JobStatus.AMBIGUOUS, raw_history=raw_history)


@dataclass
class Clip:
    """A produced media artifact placed in the final sequence.

    Attributes:
        ref: Data URL, http(s) URL or local path of the clip.
        role: Whether this is a scene clip or a transition.
        scene_index: Scene this clip belongs to (transitions: the scene they follow).
        ordinal: Position in the final sequence, set when the sequence is built.
    """
    ref: str
    role: ClipRole = ClipRole.SCENE
    scene_index: int = 0
    ordinal: int = 0


@dataclass
class Scene:
    """A unit of narrative content turned into one or more clips.

    Attributes:
        prompt: Motion/visual prompt for the video job.
        duration: Requested duration in seconds.
        image_ref: Source image (data URL, URL or path); None if it must be generated.
        image_prompt: Prompt used to generate the source image when missing.
        start: Offset of the scene in the overall timeline, in seconds.
        end: End offset in the overall timeline, in seconds.
        status: Generation status.
        error: Human-readable failure summary when status is ERROR.
        clips: Clips produced for this scene, in order.
        status_history: Every status the scene has been in, oldest first.
    """
    prompt: str
    duration: float = 5.0
    image_ref: str | None = None
    image_prompt: str | None = None
    start: float = 0.0
    end: float = 0.0
    status: SceneStatus = SceneStatus.PENDING
    error: str | None = None
    clips: list[Clip] = field(default_factory=list)
    status_history: list[SceneStatus] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        if not self.status_history:
            self.status_history.append(self.status)

    def mark(self, status: SceneStatus, error: str | None = None) -> None:
        self.status = status
        self.error = error
        self.status_history.append(status)

    def to_status(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "duration": self.duration,
            "start": self.start,
            "end": self.end,
            "status": self.status.value,
            "error": self.error,
            "clips": len(self.clips),
        }


@dataclass(frozen=True)
class StitchJob:
    """Ordered clip references plus the name of the file to produce."""
    clip_refs: tuple[str, ...]
    output_name: str = "music_video.mp4"

    def __post_init__(self) -> None:
        if not self.clip_refs:
            raise EmptyInputError("No video URLs provided")


@dataclass(frozen=True)
class MediaBlob:
    data: bytes = field(repr=False)
    content_type: str
    filename: str


@dataclass(frozen=True)
class ProgressSnapshot:
    """Best-effort progress of the job currently being polled.

    Attributes:
        percent: 0-100.
        message: Short description of the current phase.
        elapsed_seconds: Time since the job was submitted.
        remaining_seconds: Estimated time left, only once the estimate is meaningful.
    """
    percent: float = 0.0
    message: str = ""
    elapsed_seconds: float = 0.0
    remaining_seconds: float | None = None
