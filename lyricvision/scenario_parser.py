"""Scenario YAML parser.

Loads a scenario file describing the scenes of a music video.
"""

from __future__ import annotations

from pathlib import Path

import yaml

from lyricvision.media import is_data_url, load_local_image
from lyricvision.models import Scene


def _resolve_image(raw: str | None, base_dir: Path) -> str | None:
    if not raw:
        return None
    if is_data_url(raw) or raw.startswith(("http://", "https://")):
        return raw
    path = Path(raw)
    if not path.is_absolute():
        path = base_dir / path
    return load_local_image(path)


def load_scenario(path: str | Path) -> tuple[list[Scene], dict]:
    """Load scenes from a YAML file.

    Expected YAML structure::

        title: "Midnight Drive"
        output_name: "midnight_drive.mp4"
        generation:
          preset: cinematic
          motion_effect: auto
        scenes:
          - image: images/verse1.png
            prompt: "neon city at night, rain on the windshield"
            duration: 6
          - image_prompt: "empty highway at dawn, long shadows"
            prompt: "slow drift forward, warm light"
            duration: 4

    Relative image paths are resolved against the scenario file's directory.

    Args:
        path: Path to the scenario YAML file.

    Returns:
        (scenes, options) where options holds every top-level key except ``scenes``.

    Raises:
        FileNotFoundError: If the file or a referenced image does not exist.
        ValueError: If required fields are missing.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Scenario file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError(f"Scenario file must be a YAML mapping, got {type(raw).__name__}")

    raw_scenes = raw.get("scenes")
    if not isinstance(raw_scenes, list) or not raw_scenes:
        raise ValueError("Scenario must contain a non-empty 'scenes' list")

    scenes: list[Scene] = []
    for index, item in enumerate(raw_scenes, start=1):
        if not isinstance(item, dict):
            raise ValueError(f"Scene {index} must be a mapping")
        prompt = item.get("prompt")
        if not prompt:
            raise ValueError(f"Scene {index} is missing 'prompt'")
        image = _resolve_image(item.get("image"), path.parent)
        if image is None and not item.get("image_prompt"):
            raise ValueError(f"Scene {index} needs either 'image' or 'image_prompt'")
        duration = float(item.get("duration", 5))
        if duration <= 0:
            raise ValueError(f"Scene {index} has a non-positive duration: {duration}")
        scenes.append(
            Scene(
                prompt=prompt,
                duration=duration,
                image_ref=image,
                image_prompt=item.get("image_prompt"),
            )
        )

    options = {key: value for key, value in raw.items() if key != "scenes"}
    return scenes, options
