import pytest

from lyricvision.errors import CapabilityMissingError
from lyricvision.models import MotionEffect
from lyricvision.settings import GenerationSettings
from lyricvision.workflows import (
    WAN_FRAME_RATE,
    build_image_graph,
    build_image_to_video_graph,
    build_large_video_model_graph,
    graph_to_json,
    select_sd15_checkpoint,
)

CHECKPOINTS = ["sd_xl_base_1.0.safetensors", "dreamshaper_8.safetensors"]


def _video_graph(settings=None, nodes=True, checkpoints=CHECKPOINTS):
    return build_image_to_video_graph(
        "seed.png", "rain on neon streets", 42, settings or GenerationSettings(), checkpoints, nodes
    )


def test_same_arguments_give_identical_json():
    assert graph_to_json(_video_graph()) == graph_to_json(_video_graph())
    assert graph_to_json(build_image_graph("a", 1, 512, 512)) == graph_to_json(build_image_graph("a", 1, 512, 512))


def test_video_graph_ends_in_video_combine_when_available():
    settings = GenerationSettings(frame_count=24, frame_rate=12, quality=15, pingpong=True)
    graph = _video_graph(settings)

    combine = graph["14"]
    assert combine["class_type"] == "VHS_VideoCombine"
    assert combine["inputs"]["frame_rate"] == 12
    assert combine["inputs"]["crf"] == 15
    assert combine["inputs"]["pingpong"] is True
    assert graph["11"]["inputs"]["amount"] == 24
    assert graph["1"]["inputs"]["ckpt_name"] == "dreamshaper_8.safetensors"


def test_video_graph_falls_back_to_save_image():
    graph = _video_graph(nodes=False)

    assert graph["14"]["class_type"] == "SaveImage"
    assert graph["14"]["inputs"]["images"] == ["13", 0]
    assert all(node["class_type"] != "VHS_VideoCombine" for node in graph.values())


def test_motion_lora_is_chained_into_the_motion_model():
    graph = _video_graph(GenerationSettings(motion_effect=MotionEffect.PAN_LEFT, motion_strength=0.55))

    assert graph["4"]["inputs"] == {"name": "v2_lora_PanLeft.ckpt", "strength": 0.55}
    assert graph["5"]["inputs"]["motion_lora"] == ["4", 0]


def test_no_motion_lora_for_none_effect():
    graph = _video_graph(GenerationSettings(motion_effect=MotionEffect.NONE))

    assert "4" not in graph
    assert "motion_lora" not in graph["5"]["inputs"]


def test_auto_motion_must_be_resolved_first():
    with pytest.raises(ValueError):
        _video_graph(GenerationSettings(motion_effect=MotionEffect.AUTO))


def test_only_xl_checkpoints_is_a_capability_error():
    with pytest.raises(CapabilityMissingError, match="SD1.5"):
        _video_graph(checkpoints=["sd_xl_base_1.0.safetensors", "juggernautXL.safetensors"])
    with pytest.raises(CapabilityMissingError):
        select_sd15_checkpoint([])


def test_explicit_checkpoint_wins():
    assert select_sd15_checkpoint("realisticVision.safetensors") == "realisticVision.safetensors"


def test_image_graph_flux_and_checkpoint_variants():
    flux = build_image_graph("city", 7, 1280, 720)
    assert flux["4"]["class_type"] == "UnetLoaderGGUF"
    assert flux["5"]["inputs"]["width"] == 1280

    sd = build_image_graph("city", 7, 512, 512, checkpoint="dreamshaper_8.safetensors")
    assert sd["4"] == {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": "dreamshaper_8.safetensors"}}
    assert sd["9"]["class_type"] == "SaveImage"


def test_wan_graph_wires_conditioning_through_image_to_video():
    graph = build_large_video_model_graph("seed.png", "drift", 5, 832, 480, frame_count=33)

    wan = graph["9"]
    assert wan["class_type"] == "WanImageToVideo"
    assert wan["inputs"]["length"] == 33
    assert wan["inputs"]["start_image"] == ["5", 0]
    sampler = graph["10"]["inputs"]
    assert (sampler["positive"], sampler["negative"], sampler["latent_image"]) == (["9", 0], ["9", 1], ["9", 2])
    assert graph["12"]["inputs"]["frame_rate"] == WAN_FRAME_RATE
