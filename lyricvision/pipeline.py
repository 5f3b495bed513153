"""Scene batch pipeline: scenes in, one stitched music video out.

Scenes are generated one at a time in order. A failed scene is marked as
such and skipped; the remaining scenes still make it into the video.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from lyricvision.errors import (
    ClipSequenceError,
    EmptyInputError,
    GenerationError,
    MediaError,
    TransportError,
)
from lyricvision.generation import ClipGenerator, random_seed
from lyricvision.models import Clip, MediaBlob, MotionEffect, Scene, SceneStatus
from lyricvision.motion import SmartMotionResolver
from lyricvision.settings import GenerationSettings
from lyricvision.splitter import FrameExtractor, LongClipSplitter
from lyricvision.stitcher import ClipStitcher
from lyricvision.transitions import TransitionSynthesizer

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Outcome of one pipeline run.

    Attributes:
        output: The stitched video.
        clips: Every clip in the stitched sequence, in order.
        failed_scenes: Indexes of scenes that produced no clip.
    """
    output: MediaBlob
    clips: list[Clip] = field(default_factory=list)
    failed_scenes: list[int] = field(default_factory=list)


def assign_timeline(scenes: Sequence[Scene]) -> float:
    """Set each scene's start/end offsets; return the total length."""
    offset = 0.0
    for scene in scenes:
        scene.start = offset
        offset += scene.duration
        scene.end = offset
    return offset


class MusicVideoPipeline:
    """Runs scenes through generation, transitions and stitching."""

    def __init__(
        self,
        generator: ClipGenerator,
        stitcher: ClipStitcher,
        frame_extractor: FrameExtractor,
        resolver: SmartMotionResolver | None = None,
        transitions: TransitionSynthesizer | None = None,
    ) -> None:
        self.generator = generator
        self.stitcher = stitcher
        self.splitter = LongClipSplitter(generator, frame_extractor)
        self.resolver = resolver or SmartMotionResolver()
        self.transitions = transitions

    async def _motion_settings(self, prompt: str, settings: GenerationSettings) -> GenerationSettings:
        if settings.motion_effect is not MotionEffect.AUTO:
            return settings
        decision = await self.resolver.resolve(MotionEffect.AUTO, prompt)
        return settings.with_overrides(motion_effect=decision.effect, motion_strength=decision.strength)

    async def _generate_scene(
        self, index: int, scene: Scene, settings: GenerationSettings, seed: int
    ) -> list[Clip]:
        if not scene.image_ref:
            logger.info("Scene %d has no image, generating one", index + 1)
            scene.image_ref = await self.generator.generate_image(
                scene.image_prompt or scene.prompt, seed, settings.width, settings.height
            )
        scene_settings = await self._motion_settings(scene.prompt, settings)
        if scene.duration > scene_settings.duration:
            return await self.splitter.generate(
                scene.image_ref, scene.prompt, scene.duration, scene_settings, seed, scene_index=index
            )
        clip_settings = scene_settings
        frames = max(1, round(scene.duration * scene_settings.frame_rate))
        if frames != scene_settings.frame_count:
            clip_settings = scene_settings.with_overrides(frame_count=frames)
        ref = await self.generator.generate_video(scene.image_ref, scene.prompt, seed, clip_settings)
        return [Clip(ref=ref, scene_index=index)]

    async def run(
        self,
        scenes: Sequence[Scene],
        settings: GenerationSettings,
        output_name: str = "music_video.mp4",
        seed: int | None = None,
        with_transitions: bool = True,
    ) -> PipelineResult:
        """Generate every scene and stitch the result.

        Args:
            scenes: Scenes in playback order; their status is updated in place.
            settings: Settings shared by all scenes.
            output_name: File name of the stitched video.
            seed: Base seed; scene ``i`` uses ``seed + i * 1000``.
            with_transitions: Generate morph clips between scenes.

        Returns:
            The stitched video and the clip sequence.

        Raises:
            EmptyInputError: If there are no scenes.
            GenerationError: If no scene produced a clip.
        """
        if not scenes:
            raise EmptyInputError("No scenes to generate")
        base_seed = random_seed() if seed is None else seed
        total = assign_timeline(scenes)
        logger.info("Generating %d scene(s), %.1fs total", len(scenes), total)

        scene_clips: list[Clip] = []
        failed: list[int] = []
        for index, scene in enumerate(scenes):
            scene.mark(SceneStatus.GENERATING)
            try:
                clips = await self._generate_scene(index, scene, settings, base_seed + index * 1000)
            except ClipSequenceError as exc:
                scene.clips = list(exc.completed)
                scene.mark(SceneStatus.ERROR, str(exc))
                failed.append(index)
                logger.error("Scene %d failed: %s", index + 1, exc)
                continue
            except (TransportError, GenerationError, MediaError, ValueError) as exc:
                scene.mark(SceneStatus.ERROR, str(exc))
                failed.append(index)
                logger.error("Scene %d failed: %s", index + 1, exc)
                continue
            scene.clips = clips
            scene_clips.extend(clips)
            scene.mark(SceneStatus.COMPLETE)
            logger.info("Scene %d/%d complete (%d clip(s))", index + 1, len(scenes), len(clips))

        if not scene_clips:
            raise GenerationError(f"No scene produced a clip ({len(failed)} failed)")

        if with_transitions and self.transitions is not None and len(scene_clips) > 1:
            transition_settings = await self._motion_settings(self.transitions.prompt, settings)
            sequence = await self.transitions.synthesize(scene_clips, scenes, transition_settings, base_seed)
        else:
            sequence = scene_clips
            for ordinal, clip in enumerate(sequence):
                clip.ordinal = ordinal

        output = await self.stitcher.stitch([clip.ref for clip in sequence], output_name)
        return PipelineResult(output=output, clips=sequence, failed_scenes=failed)
