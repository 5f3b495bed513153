"""Configuration loading from config.yaml."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from lyricvision.settings import GenerationSettings, resolve_settings

_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"
_PLACEHOLDER_ADDRESS = "https://your-tunnel-url.ngrok.io"

ADDRESS_ENV = "LYRICVISION_BACKEND_URL"
OPENAI_KEY_ENV = "OPENAI_API_KEY"


def load_config(config_path: str | Path | None = None) -> dict:
    """Load and return the full configuration dictionary.

    Args:
        config_path: Override path to config file. Defaults to project root config.yaml.

    Returns:
        The parsed config dictionary.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the file is not a YAML mapping.
    """
    path = Path(config_path) if config_path else _CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}
    if not isinstance(config, dict):
        raise ValueError(f"Config file must be a YAML mapping, got {type(config).__name__}")
    return config


def get_backend_address(config: dict) -> str:
    """Return the job server address.

    The ``LYRICVISION_BACKEND_URL`` environment variable wins over the file.

    Raises:
        ValueError: If no address is set or it is still the placeholder.
    """
    address = os.environ.get(ADDRESS_ENV) or config.get("backend", {}).get("address", "")
    if not address or address == _PLACEHOLDER_ADDRESS:
        raise ValueError(
            "Job server address not configured. Set 'backend.address' in config.yaml "
            f"or the {ADDRESS_ENV} environment variable."
        )
    return address.rstrip("/")


def get_generation_settings(config: dict, preset: str | None = None, **overrides: Any) -> GenerationSettings:
    """Build the settings for a job: defaults, preset, config overrides, then call overrides."""
    section = config.get("generation", {}) or {}
    merged = dict(section.get("overrides") or {})
    merged.update({key: value for key, value in overrides.items() if value is not None})
    return resolve_settings(
        preset or section.get("preset"),
        merged,
        custom_presets=section.get("custom_presets") or {},
    )


def get_poller_options(config: dict) -> dict[str, Any]:
    """Keyword arguments for ``JobPoller`` from the ``polling`` section."""
    section = config.get("polling", {}) or {}
    mapping = {
        "image_interval_seconds": "image_poll_interval",
        "video_interval_seconds": "video_poll_interval",
        "image_max_attempts": "image_max_attempts",
        "grace_attempts": "grace_attempts",
        "grace_delay_seconds": "grace_delay",
        "expected_video_seconds": "expected_video_seconds",
        "max_poll_errors": "max_poll_errors",
    }
    return {arg: section[key] for key, arg in mapping.items() if section.get(key) is not None}


def get_motion_config(config: dict) -> dict[str, Any] | None:
    """Return classifier settings, or None if no API key is available."""
    section = dict(config.get("motion", {}) or {})
    api_key = section.get("api_key") or os.environ.get(OPENAI_KEY_ENV, "")
    if not api_key:
        return None
    section["api_key"] = api_key
    return section


def resolve_output_paths(config: dict, scenario_path: str | None = None) -> dict:
    """Resolve output paths, scoped per scenario.

    Returns dict with keys: output_dir, status_file.
    """
    base_dir = Path((config.get("output") or {}).get("base_dir", "output"))
    stem = Path(scenario_path).stem if scenario_path else "default"
    output_dir = base_dir / stem
    return {
        "output_dir": output_dir,
        "status_file": output_dir / "status.json",
    }
