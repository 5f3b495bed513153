"""Split a long video request into several chained clips.

A single job can only produce ``frame_count / frame_rate`` seconds of video.
Longer requests are split into equal-length clips; the last frame of each
clip seeds the next one so the motion continues across cuts.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Protocol

from lyricvision.errors import (
    ClipSequenceError,
    EmptyInputError,
    GenerationError,
    MediaError,
    TransportError,
)
from lyricvision.media import parse_data_url, to_data_url
from lyricvision.models import Clip, ClipRole
from lyricvision.settings import GenerationSettings

logger = logging.getLogger(__name__)


class FrameExtractor(Protocol):
    def extract_last_frame(self, video_bytes: bytes) -> bytes:
        """Return the last decodable frame of a video as image bytes."""


class VideoClipSource(Protocol):
    async def generate_video(
        self, image_ref: str, prompt: str, seed: int, settings: GenerationSettings
    ) -> str:
        """Generate one clip from a seed image and return it as a data URL."""


@dataclass(frozen=True)
class ClipPlan:
    clip_count: int
    per_clip_duration: float
    adjusted_frame_count: int


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def plan_clips(requested_duration: float, settings: GenerationSettings) -> ClipPlan:
    """Split a duration into equal clips no longer than one job can produce.

    Raises:
        EmptyInputError: If the requested duration is not positive.
    """
    if requested_duration <= 0:
        raise EmptyInputError(f"Requested duration must be positive, got {requested_duration}")
    max_clip_duration = settings.duration
    clip_count = max(1, math.ceil(requested_duration / max_clip_duration))
    per_clip_duration = requested_duration / clip_count
    adjusted = max(1, _round_half_up(per_clip_duration * settings.frame_rate))
    return ClipPlan(clip_count, per_clip_duration, adjusted)


class LongClipSplitter:
    """Generates a long video as a chain of clips, one at a time."""

    def __init__(self, source: VideoClipSource, frame_extractor: FrameExtractor) -> None:
        self.source = source
        self.frame_extractor = frame_extractor

    async def generate(
        self,
        image_ref: str,
        prompt: str,
        requested_duration: float,
        settings: GenerationSettings,
        seed: int,
        scene_index: int = 0,
    ) -> list[Clip]:
        """Generate all clips of a long video in order.

        Clip ``i`` (0-based) uses ``seed + i``; every clip after the first is
        seeded with the last frame of the previous one.

        Returns:
            The clips, in playback order.

        Raises:
            ClipSequenceError: If any clip fails. ``clip_index`` is 1-based
                and ``completed`` holds the clips produced before it.
        """
        plan = plan_clips(requested_duration, settings)
        clip_settings = settings.with_overrides(frame_count=plan.adjusted_frame_count)
        logger.info(
            "Splitting %.1fs into %d clip(s) of %.2fs (%d frames at %d fps)",
            requested_duration, plan.clip_count, plan.per_clip_duration,
            plan.adjusted_frame_count, settings.frame_rate,
        )

        clips: list[Clip] = []
        current_image = image_ref
        for index in range(plan.clip_count):
            position = index + 1
            try:
                video_ref = await self.source.generate_video(
                    current_image, prompt, seed + index, clip_settings
                )
                clips.append(Clip(ref=video_ref, role=ClipRole.SCENE, scene_index=scene_index))
                logger.info("Clip %d/%d done", position, plan.clip_count)

                if index < plan.clip_count - 1:
                    video_bytes, _ = parse_data_url(video_ref)
                    frame = await asyncio.to_thread(self.frame_extractor.extract_last_frame, video_bytes)
                    current_image = to_data_url(frame, "image/png")
            except (TransportError, GenerationError, MediaError, ValueError) as exc:
                raise ClipSequenceError(
                    f"Clip {position}/{plan.clip_count} failed: {exc}",
                    clip_index=position,
                    completed=clips,
                ) from exc
        return clips
