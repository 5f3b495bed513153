"""LyricVision: remote generation job orchestration for lyric-driven music videos."""

from lyricvision.errors import (
    LyricVisionError,
    TransportError,
    GenerationError,
    BackendExecutionError,
    NoArtifactError,
    CapabilityMissingError,
    GenerationTimeoutError,
    ClipSequenceError,
    StitchError,
)
from lyricvision.models import Clip, JobKind, JobState, JobStatus, MotionEffect, Scene
from lyricvision.settings import GenerationSettings, resolve_settings
from lyricvision.transport import JobTransport
from lyricvision.poller import JobPoller
from lyricvision.splitter import LongClipSplitter
from lyricvision.stitcher import ClipStitcher
from lyricvision.transitions import TransitionSynthesizer
from lyricvision.motion import SmartMotionResolver
from lyricvision.pipeline import MusicVideoPipeline

__all__ = [
    "LyricVisionError",
    "TransportError",
    "GenerationError",
    "BackendExecutionError",
    "NoArtifactError",
    "CapabilityMissingError",
    "GenerationTimeoutError",
    "ClipSequenceError",
    "StitchError",
    "Clip",
    "JobKind",
    "JobState",
    "JobStatus",
    "MotionEffect",
    "Scene",
    "GenerationSettings",
    "resolve_settings",
    "JobTransport",
    "JobPoller",
    "LongClipSplitter",
    "ClipStitcher",
    "TransitionSynthesizer",
    "SmartMotionResolver",
    "MusicVideoPipeline",
]
