import pytest

from lyricvision.models import MotionEffect
from lyricvision.settings import PRESETS, GenerationSettings, resolve_settings


def test_defaults_make_two_second_clips():
    settings = GenerationSettings()

    assert settings.duration == 2.0
    assert settings.motion_effect is MotionEffect.ZOOM_IN
    assert settings.output_format == "video/h264-mp4"


def test_every_preset_resolves():
    for name in PRESETS:
        assert resolve_settings(name).steps == PRESETS[name]["steps"]
    assert resolve_settings("loop").pingpong is True
    assert (resolve_settings("cinematic").width, resolve_settings("cinematic").height) == (768, 432)


def test_overrides_apply_after_the_preset():
    settings = resolve_settings("quality", {"steps": 40, "motion_effect": "pan_left"})

    assert settings.steps == 40
    assert settings.sampler == "dpmpp_2m"
    assert settings.motion_effect is MotionEffect.PAN_LEFT


def test_custom_presets_are_available_by_name():
    settings = resolve_settings("lofi", custom_presets={"lofi": {"frame_count": 12, "frame_rate": 6}})

    assert settings.duration == 2.0


def test_unknown_preset_lists_the_choices():
    with pytest.raises(ValueError, match="balanced"):
        resolve_settings("ultra")


def test_unknown_field_is_rejected():
    with pytest.raises(ValueError, match="fps"):
        GenerationSettings().with_overrides(fps=30)


@pytest.mark.parametrize(
    "field, value",
    [("steps", 0), ("denoise", 1.5), ("frame_rate", 0), ("width", -1), ("output_format", "video/avi"), ("motion_effect", "spin")],
)
def test_invalid_values_are_rejected(field, value):
    with pytest.raises(ValueError):
        GenerationSettings(**{field: value})


def test_settings_are_immutable_values():
    base = GenerationSettings()
    changed = base.with_overrides(frame_count=24)

    assert base.frame_count == 16
    assert changed.frame_count == 24
    assert changed.to_dict()["motion_effect"] == "v2_lora_ZoomIn.ckpt"
