"""Job graph builders for the remote job server.

Each builder is a pure function returning a node graph in the server's API
format: ``{node_id: {"class_type": ..., "inputs": {...}}}`` where an input is
either a literal or a ``[node_id, output_slot]`` link. Identical arguments
always produce identical graphs; ``graph_to_json`` gives the canonical bytes
that are submitted.
"""

from __future__ import annotations

import json
from typing import Any, Sequence

from lyricvision.errors import CapabilityMissingError
from lyricvision.models import MotionEffect
from lyricvision.settings import GenerationSettings

Graph = dict[str, dict[str, Any]]

FLUX_UNET = "flux1-schnell-Q4_K_S.gguf"
FLUX_CLIP = ("t5xxl_fp16.safetensors", "clip_l.safetensors")
FLUX_VAE = "ae.safetensors"

IMAGE_NEGATIVE_PROMPT = "blurry, low quality, distorted, ugly"
VIDEO_NEGATIVE_PROMPT = "blurry, low quality, distorted, static, frozen, bad anatomy, watermark"
ANIMATEDIFF_NEGATIVE_PROMPT = "blurry, low quality, distorted, deformed, watermark, text, flicker"

WAN_DIFFUSION_MODEL = "wan2.1_i2v_480p_14B_fp8_scaled.safetensors"
WAN_VAE = "wan_2.1_vae.safetensors"
WAN_CLIP_VISION = "clip_vision_h.safetensors"
WAN_TEXT_ENCODER = "umt5_xxl_fp8_e4m3fn_scaled.safetensors"
WAN_FRAME_RATE = 16

VIDEO_COMBINE_NODE = "VHS_VideoCombine"


def graph_to_json(graph: Graph) -> str:
    """Serialize a graph to its canonical JSON form."""
    return json.dumps(graph, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def is_xl_checkpoint(name: str) -> bool:
    return "xl" in name.lower()


def select_sd15_checkpoint(checkpoint_choice: str | Sequence[str] | None) -> str:
    """Pick a checkpoint usable by the SD1.5 motion modules.

    Args:
        checkpoint_choice: A single checkpoint name, or the list of names the
            backend offers (the first non-XL one is used).

    Raises:
        CapabilityMissingError: If no non-XL checkpoint is available.
    """
    if isinstance(checkpoint_choice, str):
        candidates = [checkpoint_choice]
    else:
        candidates = list(checkpoint_choice or [])
    for name in candidates:
        if name and not is_xl_checkpoint(name):
            return name
    raise CapabilityMissingError(
        "AnimateDiff needs an SD1.5 checkpoint but none is available "
        f"(offered: {', '.join(candidates) or 'none'}). "
        "Install an SD1.5 model such as dreamshaper_8.safetensors on the backend."
    )


def build_image_graph(
    prompt: str,
    seed: int,
    width: int,
    height: int,
    checkpoint: str | None = None,
) -> Graph:
    """Text-to-image graph.

    With no checkpoint the FLUX schnell GGUF pipeline is used; otherwise a
    standard checkpoint pipeline with a fixed negative prompt.
    """
    if checkpoint is None:
        return {
            "3": {
                "class_type": "KSampler",
                "inputs": {
                    "seed": seed,
                    "steps": 4,
                    "cfg": 1.0,
                    "sampler_name": "euler",
                    "scheduler": "simple",
                    "denoise": 1.0,
                    "model": ["4", 0],
                    "positive": ["6", 0],
                    "negative": ["7", 0],
                    "latent_image": ["5", 0],
                },
            },
            "4": {"class_type": "UnetLoaderGGUF", "inputs": {"unet_name": FLUX_UNET}},
            "5": {
                "class_type": "EmptyLatentImage",
                "inputs": {"width": width, "height": height, "batch_size": 1},
            },
            "6": {"class_type": "CLIPTextEncode", "inputs": {"text": prompt, "clip": ["11", 0]}},
            "7": {"class_type": "CLIPTextEncode", "inputs": {"text": "", "clip": ["11", 0]}},
            "8": {"class_type": "VAEDecode", "inputs": {"samples": ["3", 0], "vae": ["10", 0]}},
            "9": {"class_type": "SaveImage", "inputs": {"filename_prefix": "LyricVision", "images": ["8", 0]}},
            "10": {"class_type": "VAELoader", "inputs": {"vae_name": FLUX_VAE}},
            "11": {
                "class_type": "DualCLIPLoader",
                "inputs": {"clip_name1": FLUX_CLIP[0], "clip_name2": FLUX_CLIP[1], "type": "flux"},
            },
        }

    return {
        "3": {
            "class_type": "KSampler",
            "inputs": {
                "seed": seed,
                "steps": 20,
                "cfg": 7.0,
                "sampler_name": "euler_ancestral",
                "scheduler": "normal",
                "denoise": 1.0,
                "model": ["4", 0],
                "positive": ["6", 0],
                "negative": ["7", 0],
                "latent_image": ["5", 0],
            },
        },
        "4": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": checkpoint}},
        "5": {
            "class_type": "EmptyLatentImage",
            "inputs": {"width": width, "height": height, "batch_size": 1},
        },
        "6": {"class_type": "CLIPTextEncode", "inputs": {"text": prompt, "clip": ["4", 1]}},
        "7": {"class_type": "CLIPTextEncode", "inputs": {"text": IMAGE_NEGATIVE_PROMPT, "clip": ["4", 1]}},
        "8": {"class_type": "VAEDecode", "inputs": {"samples": ["3", 0], "vae": ["4", 2]}},
        "9": {"class_type": "SaveImage", "inputs": {"filename_prefix": "LyricVision", "images": ["8", 0]}},
    }


def build_image_to_video_graph(
    input_image_ref: str,
    prompt: str,
    seed: int,
    settings: GenerationSettings,
    checkpoint_choice: str | Sequence[str] | None,
    has_advanced_video_nodes: bool,
) -> Graph:
    """AnimateDiff image-to-video graph.

    The source image is VAE-encoded and repeated ``settings.frame_count``
    times as the starting latent batch, so ``settings.denoise`` controls how
    far the frames may drift from it. A motion LoRA is chained in unless the
    effect is ``MotionEffect.NONE``.

    Args:
        input_image_ref: Name of the uploaded image on the backend.
        prompt: Motion/visual prompt.
        seed: Sampler seed.
        settings: Resolved generation settings.
        checkpoint_choice: Checkpoint name or list of available names.
        has_advanced_video_nodes: Whether ``VHS_VideoCombine`` is installed.
            Without it the graph ends in ``SaveImage`` and yields a frame
            sequence instead of an encoded video.

    Returns:
        The job graph.

    Raises:
        CapabilityMissingError: If no SD1.5 checkpoint is available.
        ValueError: If the motion effect is still ``AUTO``.
    """
    if settings.motion_effect is MotionEffect.AUTO:
        raise ValueError("Resolve the automatic motion effect before building the graph")
    checkpoint = select_sd15_checkpoint(checkpoint_choice)

    graph: Graph = {
        "1": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": checkpoint}},
        "2": {"class_type": "LoadImage", "inputs": {"image": input_image_ref}},
        "3": {"class_type": "ADE_LoadAnimateDiffModel", "inputs": {"model_name": settings.motion_model}},
        "5": {
            "class_type": "ADE_ApplyAnimateDiffModelSimple",
            "inputs": {"motion_model": ["3", 0]},
        },
        "6": {
            "class_type": "ADE_UseEvolvedSampling",
            "inputs": {"model": ["1", 0], "m_models": ["5", 0], "beta_schedule": "autoselect"},
        },
        "7": {"class_type": "CLIPTextEncode", "inputs": {"text": prompt, "clip": ["1", 1]}},
        "8": {"class_type": "CLIPTextEncode", "inputs": {"text": ANIMATEDIFF_NEGATIVE_PROMPT, "clip": ["1", 1]}},
        "9": {
            "class_type": "ImageScale",
            "inputs": {
                "image": ["2", 0],
                "upscale_method": "lanczos",
                "width": settings.width,
                "height": settings.height,
                "crop": "center",
            },
        },
        "10": {"class_type": "VAEEncode", "inputs": {"pixels": ["9", 0], "vae": ["1", 2]}},
        "11": {"class_type": "RepeatLatentBatch", "inputs": {"samples": ["10", 0], "amount": settings.frame_count}},
        "12": {
            "class_type": "KSampler",
            "inputs": {
                "seed": seed,
                "steps": settings.steps,
                "cfg": settings.cfg,
                "sampler_name": settings.sampler,
                "scheduler": settings.scheduler,
                "denoise": settings.denoise,
                "model": ["6", 0],
                "positive": ["7", 0],
                "negative": ["8", 0],
                "latent_image": ["11", 0],
            },
        },
        "13": {"class_type": "VAEDecode", "inputs": {"samples": ["12", 0], "vae": ["1", 2]}},
    }

    if settings.motion_effect.is_lora:
        graph["4"] = {
            "class_type": "ADE_AnimateDiffLoRALoader",
            "inputs": {"name": settings.motion_effect.value, "strength": settings.motion_strength},
        }
        graph["5"]["inputs"]["motion_lora"] = ["4", 0]

    if has_advanced_video_nodes:
        graph["14"] = {
            "class_type": VIDEO_COMBINE_NODE,
            "inputs": {
                "images": ["13", 0],
                "frame_rate": settings.frame_rate,
                "loop_count": 0,
                "filename_prefix": "LyricVision_AnimateDiff",
                "format": settings.output_format,
                "pingpong": settings.pingpong,
                "save_output": True,
                "crf": settings.quality,
            },
        }
    else:
        graph["14"] = {
            "class_type": "SaveImage",
            "inputs": {"images": ["13", 0], "filename_prefix": "LyricVision_Frames"},
        }
    return graph


def build_large_video_model_graph(
    input_image_ref: str,
    prompt: str,
    seed: int,
    width: int,
    height: int,
    frame_count: int,
    steps: int = 20,
    guidance: float = 5.0,
) -> Graph:
    """Wan 2.1 480p image-to-video graph, encoded at 16 fps by VHS."""
    return {
        "1": {"class_type": "UNETLoader", "inputs": {"unet_name": WAN_DIFFUSION_MODEL, "weight_dtype": "default"}},
        "2": {"class_type": "VAELoader", "inputs": {"vae_name": WAN_VAE}},
        "3": {"class_type": "CLIPVisionLoader", "inputs": {"clip_name": WAN_CLIP_VISION}},
        "4": {"class_type": "CLIPLoader", "inputs": {"clip_name": WAN_TEXT_ENCODER, "type": "wan"}},
        "5": {"class_type": "LoadImage", "inputs": {"image": input_image_ref}},
        "6": {
            "class_type": "CLIPVisionEncode",
            "inputs": {"clip_vision": ["3", 0], "image": ["5", 0], "crop": "none"},
        },
        "7": {"class_type": "CLIPTextEncode", "inputs": {"text": prompt, "clip": ["4", 0]}},
        "8": {"class_type": "CLIPTextEncode", "inputs": {"text": VIDEO_NEGATIVE_PROMPT, "clip": ["4", 0]}},
        "9": {
            "class_type": "WanImageToVideo",
            "inputs": {
                "positive": ["7", 0],
                "negative": ["8", 0],
                "vae": ["2", 0],
                "width": width,
                "height": height,
                "length": frame_count,
                "batch_size": 1,
                "clip_vision_output": ["6", 0],
                "start_image": ["5", 0],
            },
        },
        "10": {
            "class_type": "KSampler",
            "inputs": {
                "seed": seed,
                "steps": steps,
                "cfg": guidance,
                "sampler_name": "euler",
                "scheduler": "normal",
                "denoise": 1.0,
                "model": ["1", 0],
                "positive": ["9", 0],
                "negative": ["9", 1],
                "latent_image": ["9", 2],
            },
        },
        "11": {"class_type": "VAEDecode", "inputs": {"samples": ["10", 0], "vae": ["2", 0]}},
        "12": {
            "class_type": VIDEO_COMBINE_NODE,
            "inputs": {
                "images": ["11", 0],
                "frame_rate": WAN_FRAME_RATE,
                "loop_count": 0,
                "filename_prefix": "WAN_Video",
                "format": "video/h264-mp4",
                "pingpong": False,
                "save_output": True,
            },
        },
    }
