"""AI morph transitions between consecutive scene clips."""

from __future__ import annotations

import logging
from typing import Sequence

from lyricvision.errors import GenerationError, MediaError, TransportError
from lyricvision.models import Clip, ClipRole, Scene
from lyricvision.settings import GenerationSettings
from lyricvision.splitter import VideoClipSource

logger = logging.getLogger(__name__)

TRANSITION_PROMPT = "smooth morphing transformation, seamless transition, fluid motion, cinematic blend"
TRANSITION_DURATION = 3.0


def interleave(scene_clips: Sequence[Clip], transitions: dict[int, Clip]) -> list[Clip]:
    """Build ``scene0, t(0->1), scene1, ...`` and number the clips.

    Args:
        scene_clips: Scene clips in playback order.
        transitions: Transition clip keyed by the index of the scene clip it follows.
            Missing keys leave the neighbouring scenes adjacent.
    """
    sequence: list[Clip] = []
    for index, clip in enumerate(scene_clips):
        sequence.append(clip)
        if index < len(scene_clips) - 1 and index in transitions:
            sequence.append(transitions[index])
    for ordinal, clip in enumerate(sequence):
        clip.ordinal = ordinal
    return sequence


class TransitionSynthesizer:
    """Generates one short morph clip per adjacent scene pair."""

    def __init__(
        self,
        source: VideoClipSource,
        prompt: str = TRANSITION_PROMPT,
        duration: float = TRANSITION_DURATION,
    ) -> None:
        self.source = source
        self.prompt = prompt
        self.duration = duration

    def _settings(self, settings: GenerationSettings) -> GenerationSettings:
        frames = max(1, round(self.duration * settings.frame_rate))
        return settings.with_overrides(frame_count=frames, pingpong=False)

    async def synthesize(
        self,
        scene_clips: Sequence[Clip],
        scenes: Sequence[Scene],
        settings: GenerationSettings,
        seed: int,
    ) -> list[Clip]:
        """Generate transitions and return the interleaved sequence.

        ``scene_clips[i]`` must come from ``scenes[scene_clips[i].scene_index]``;
        each transition is seeded from the source image of the scene before it.
        A failed transition is logged and left out.
        """
        transition_settings = self._settings(settings)
        transitions: dict[int, Clip] = {}
        for index in range(len(scene_clips) - 1):
            before = scene_clips[index]
            after = scene_clips[index + 1]
            if before.scene_index == after.scene_index:
                # Sub-clips of one long scene are already continuous
                continue
            image_ref = scenes[before.scene_index].image_ref
            if not image_ref:
                continue
            logger.info("Generating transition %d -> %d", before.scene_index + 1, after.scene_index + 1)
            try:
                ref = await self.source.generate_video(image_ref, self.prompt, seed + index, transition_settings)
            except (TransportError, GenerationError, MediaError, OSError, ValueError) as exc:
                logger.warning(
                    "Transition %d -> %d failed, scenes stay adjacent: %s",
                    before.scene_index + 1, after.scene_index + 1, exc,
                )
                continue
            transitions[index] = Clip(ref=ref, role=ClipRole.TRANSITION, scene_index=before.scene_index)
        return interleave(scene_clips, transitions)
