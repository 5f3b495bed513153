"""Automatic camera motion selection.

When the user picks the automatic motion effect, a chat model classifies the
clip prompt into one of eight camera moves via a ``suggest_motion`` tool
call. Any failure falls back to the same fixed default.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from openai import AsyncOpenAI

from lyricvision.models import MotionEffect
from lyricvision.settings import parse_motion_effect

logger = logging.getLogger(__name__)

DEFAULT_STRENGTH = 0.7
MIN_STRENGTH = 0.4
MAX_STRENGTH = 1.0
FALLBACK_REASON = "Default (AI unavailable)"

MOTION_TO_EFFECT: dict[str, MotionEffect] = {
    "PanLeft": MotionEffect.PAN_LEFT,
    "PanRight": MotionEffect.PAN_RIGHT,
    "ZoomIn": MotionEffect.ZOOM_IN,
    "ZoomOut": MotionEffect.ZOOM_OUT,
    "TiltUp": MotionEffect.TILT_UP,
    "TiltDown": MotionEffect.TILT_DOWN,
    "RollingClockwise": MotionEffect.ROLLING_CLOCKWISE,
    "RollingAnticlockwise": MotionEffect.ROLLING_ANTICLOCKWISE,
}
DEFAULT_EFFECT = MotionEffect.ZOOM_IN

SYSTEM_PROMPT = """You are a cinematography expert. Analyze the given prompt and suggest the best camera motion for a video.

Available camera motions:
- PanLeft: Camera pans left. Best for: wide landscapes, cityscapes, revealing scenes, horizontal movement
- PanRight: Camera pans right. Best for: wide landscapes, cityscapes, revealing scenes, horizontal movement
- ZoomIn: Camera zooms in. Best for: dramatic focus, portraits, emotional moments, close-ups, faces, eyes
- ZoomOut: Camera zooms out. Best for: establishing shots, reveals, showing scale, person in vast environment
- TiltUp: Camera tilts up. Best for: tall subjects, buildings, waterfalls, looking up at something, character reveals
- TiltDown: Camera tilts down. Best for: looking down, descending motion, ground reveals
- RollingClockwise: Camera rotates clockwise. Best for: dreamy/surreal content, space scenes, abstract visuals, disorientation
- RollingAnticlockwise: Camera rotates counter-clockwise. Best for: dreamy/surreal content, space scenes, abstract visuals

Rules:
1. Choose the single best motion that enhances the prompt
2. Consider the subject matter and emotional tone
3. ZoomIn is safest for most prompts - use it when unsure
4. Use pans for wide/horizontal scenes
5. Use tilts for tall/vertical subjects
6. Use rolling only for surreal/abstract content"""

SUGGEST_MOTION_TOOL = {
    "type": "function",
    "function": {
        "name": "suggest_motion",
        "description": "Suggest the best camera motion for the video prompt",
        "parameters": {
            "type": "object",
            "properties": {
                "motion": {
                    "type": "string",
                    "enum": list(MOTION_TO_EFFECT),
                    "description": "The recommended camera motion",
                },
                "reason": {
                    "type": "string",
                    "description": "Brief reason for this choice (max 20 words)",
                },
                "strength": {
                    "type": "number",
                    "description": "Recommended strength between 0.4 and 1.0",
                },
            },
            "required": ["motion", "reason", "strength"],
            "additionalProperties": False,
        },
    },
}


class MotionClassifier(Protocol):
    async def classify(self, prompt: str) -> dict[str, Any]:
        """Return ``{"motion", "reason", "strength"}`` or ``{"error": ...}``."""


class OpenAIMotionClassifier:
    """Motion classification through an OpenAI-compatible chat completion API."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        timeout: float = 20.0,
    ) -> None:
        self.model = model
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    async def classify(self, prompt: str) -> dict[str, Any]:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            tools=[SUGGEST_MOTION_TOOL],
            tool_choice={"type": "function", "function": {"name": "suggest_motion"}},
        )
        tool_calls = response.choices[0].message.tool_calls if response.choices else None
        if not tool_calls:
            return {"motion": "ZoomIn", "reason": "Default choice for versatility", "strength": DEFAULT_STRENGTH}
        return json.loads(tool_calls[0].function.arguments)

    async def close(self) -> None:
        await self._client.close()


@dataclass(frozen=True)
class MotionDecision:
    """The motion to apply to one clip.

    Attributes:
        effect: Resolved motion LoRA.
        strength: LoRA strength.
        reason: Why this motion was picked, when the classifier said so.
        is_fallback: True when the classifier could not be used.
    """
    effect: MotionEffect
    strength: float
    reason: str | None = None
    is_fallback: bool = False


FALLBACK_DECISION = MotionDecision(DEFAULT_EFFECT, DEFAULT_STRENGTH, FALLBACK_REASON, is_fallback=True)


def clamp_strength(value: Any) -> float:
    try:
        strength = float(value) if value else DEFAULT_STRENGTH
    except (TypeError, ValueError):
        strength = DEFAULT_STRENGTH
    return min(MAX_STRENGTH, max(MIN_STRENGTH, strength))


class SmartMotionResolver:
    """Turns a selected motion (possibly automatic) into a concrete effect."""

    def __init__(self, classifier: MotionClassifier | None = None) -> None:
        self.classifier = classifier

    async def resolve(self, selected: MotionEffect | str, prompt: str) -> MotionDecision:
        selected = parse_motion_effect(selected)
        if selected is not MotionEffect.AUTO:
            return MotionDecision(selected, DEFAULT_STRENGTH)

        if self.classifier is None or not prompt.strip():
            return FALLBACK_DECISION

        try:
            suggestion = await self.classifier.classify(prompt)
        except Exception as exc:
            logger.warning("Motion classification failed, using default: %s", exc)
            return FALLBACK_DECISION

        if not isinstance(suggestion, dict) or suggestion.get("error") or not suggestion.get("motion"):
            logger.warning("Motion classification returned no motion: %s", suggestion)
            return FALLBACK_DECISION

        name = suggestion["motion"]
        effect = MOTION_TO_EFFECT.get(name, DEFAULT_EFFECT)
        decision = MotionDecision(effect, clamp_strength(suggestion.get("strength")), suggestion.get("reason"))
        logger.info("Auto motion for %r: %s (%.2f) %s", prompt[:60], name, decision.strength, decision.reason or "")
        return decision
