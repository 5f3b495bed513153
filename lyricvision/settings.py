"""Generation settings: the typed parameter registry and its named presets.

A ``GenerationSettings`` value is built once per job (defaults, then a preset,
then explicit overrides) and passed explicitly into the workflow builders and
the poller. It is never mutated; ``with_overrides`` returns a new value.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any

from lyricvision.models import MotionEffect

SAMPLER_OPTIONS = (
    "euler",
    "euler_ancestral",
    "dpmpp_2m",
    "dpmpp_2m_sde",
    "dpmpp_sde",
    "ddim",
    "uni_pc",
    "lcm",
)

SCHEDULER_OPTIONS = ("normal", "karras", "exponential", "sgm_uniform", "simple", "ddim_uniform")

FORMAT_OPTIONS = {
    "video/h264-mp4": "H.264 MP4",
    "video/h265-mp4": "H.265 MP4",
    "video/webm": "WebM",
    "image/gif": "GIF",
}

MOTION_MODEL_OPTIONS = (
    "mm_sd_v15_v2.ckpt",
    "v3_sd15_mm.ckpt",
    "mm_sd_v15.ckpt",
    "mm_sd_v14.ckpt",
)

# Slider limits: (min, max)
FRAME_COUNT_RANGE = (8, 32)
FRAME_RATE_RANGE = (6, 24)
STEPS_RANGE = (10, 50)
CFG_RANGE = (1.0, 20.0)
DENOISE_RANGE = (0.1, 1.0)
QUALITY_RANGE = (10, 30)


def parse_motion_effect(value: str) -> MotionEffect:
    """Accept a LoRA file name ("v2_lora_ZoomIn.ckpt") or a member name ("zoom_in")."""
    try:
        return MotionEffect(value)
    except ValueError:
        pass
    try:
        return MotionEffect[str(value).upper()]
    except KeyError:
        raise ValueError(f"Unknown motion effect: {value!r}") from None


@dataclass(frozen=True)
class GenerationSettings:
    """Parameters of one generation job.

    Attributes:
        sampler: KSampler sampler name.
        scheduler: KSampler scheduler name.
        steps: Sampling steps (>= 1).
        cfg: Classifier-free guidance scale.
        denoise: Denoise strength, 0-1.
        frame_count: Frames per clip.
        frame_rate: Frames per second of the encoded clip.
        width: Output width in pixels.
        height: Output height in pixels.
        motion_effect: Motion LoRA to apply (AUTO must be resolved before building a graph).
        motion_strength: Motion LoRA strength.
        motion_model: AnimateDiff motion module file.
        output_format: VHS output container/codec id.
        quality: Encoder CRF; lower is better.
        pingpong: Loop mode, play forward then backward.
    """
    sampler: str = "euler_ancestral"
    scheduler: str = "normal"
    steps: int = 20
    cfg: float = 7.0
    denoise: float = 1.0
    frame_count: int = 16
    frame_rate: int = 8
    width: int = 512
    height: int = 512
    motion_effect: MotionEffect = MotionEffect.ZOOM_IN
    motion_strength: float = 0.7
    motion_model: str = "mm_sd_v15_v2.ckpt"
    output_format: str = "video/h264-mp4"
    quality: int = 19
    pingpong: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.motion_effect, MotionEffect):
            object.__setattr__(self, "motion_effect", parse_motion_effect(self.motion_effect))
        if self.steps < 1:
            raise ValueError(f"steps must be >= 1, got {self.steps}")
        if not 0.0 <= self.denoise <= 1.0:
            raise ValueError(f"denoise must be within 0-1, got {self.denoise}")
        if self.frame_count < 1:
            raise ValueError(f"frame_count must be >= 1, got {self.frame_count}")
        if self.frame_rate < 1:
            raise ValueError(f"frame_rate must be >= 1, got {self.frame_rate}")
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Output size must be positive, got {self.width}x{self.height}")
        if self.output_format not in FORMAT_OPTIONS:
            raise ValueError(f"Unknown output format: {self.output_format}")

    @property
    def duration(self) -> float:
        """Clip duration in seconds."""
        return self.frame_count / self.frame_rate

    def with_overrides(self, **overrides: Any) -> GenerationSettings:
        unknown = set(overrides) - {f.name for f in dataclasses.fields(self)}
        if unknown:
            raise ValueError(f"Unknown generation settings: {', '.join(sorted(unknown))}")
        return dataclasses.replace(self, **overrides)

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["motion_effect"] = self.motion_effect.value
        return data


PRESETS: dict[str, dict[str, Any]] = {
    "fast": {
        "steps": 12,
        "cfg": 6.0,
        "frame_count": 12,
        "frame_rate": 8,
        "sampler": "euler",
        "scheduler": "normal",
        "quality": 23,
    },
    "balanced": {
        "steps": 20,
        "cfg": 7.0,
        "frame_count": 16,
        "frame_rate": 8,
        "sampler": "euler_ancestral",
        "scheduler": "normal",
        "quality": 19,
    },
    "quality": {
        "steps": 35,
        "cfg": 7.5,
        "frame_count": 24,
        "frame_rate": 12,
        "sampler": "dpmpp_2m",
        "scheduler": "karras",
        "quality": 15,
    },
    "smooth": {
        "steps": 25,
        "cfg": 7.0,
        "frame_count": 32,
        "frame_rate": 16,
        "sampler": "dpmpp_2m",
        "scheduler": "karras",
        "quality": 17,
    },
    "loop": {
        "steps": 20,
        "cfg": 7.0,
        "frame_count": 16,
        "frame_rate": 8,
        "pingpong": True,
        "quality": 19,
    },
    "cinematic": {
        "steps": 30,
        "cfg": 8.0,
        "frame_count": 24,
        "frame_rate": 12,
        "width": 768,
        "height": 432,
        "sampler": "dpmpp_2m_sde",
        "scheduler": "karras",
        "quality": 16,
    },
}


def resolve_settings(
    preset: str | None = None,
    overrides: dict[str, Any] | None = None,
    custom_presets: dict[str, dict[str, Any]] | None = None,
) -> GenerationSettings:
    """Merge defaults, a named preset and explicit overrides into one value.

    Args:
        preset: Built-in or custom preset name; None for plain defaults.
        overrides: Field values applied after the preset.
        custom_presets: User presets, checked before the built-in ones.

    Returns:
        The merged settings.

    Raises:
        ValueError: If the preset is unknown or a value is invalid.
    """
    merged: dict[str, Any] = {}
    if preset:
        presets = {**PRESETS, **(custom_presets or {})}
        if preset not in presets:
            raise ValueError(
                f"Unknown preset {preset!r}. Available: {', '.join(sorted(presets))}"
            )
        merged.update(presets[preset])
    merged.update(overrides or {})
    return GenerationSettings().with_overrides(**merged)
