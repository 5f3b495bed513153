import asyncio

import httpx
import pytest

from lyricvision.artifacts import OOM_REMEDIATION
from lyricvision.errors import GenerationError
from lyricvision.generation import BackendCapabilities, ClipGenerator
from lyricvision.media import parse_data_url, to_data_url
from lyricvision.models import ClipRole, MotionEffect, Scene, SceneStatus
from lyricvision.pipeline import MusicVideoPipeline
from lyricvision.poller import JobPoller
from lyricvision.settings import GenerationSettings
from lyricvision.stitcher import ClipStitcher
from lyricvision.transitions import TransitionSynthesizer

CAPABILITIES = BackendCapabilities(checkpoints=("dreamshaper_8.safetensors",), has_video_combine=True)


def _image(name):
    return to_data_url(name.encode(), "image/png")


def _pipeline(server, engine, sleep, tmp_path, transitions=True, http_client=None):
    poller = JobPoller(server, "http://gpu.test", sleep=sleep)
    generator = ClipGenerator(server, poller, CAPABILITIES, ffmpeg=engine, http_client=http_client)
    return MusicVideoPipeline(
        generator,
        ClipStitcher(engine, work_root=tmp_path),
        engine,
        transitions=TransitionSynthesizer(generator) if transitions else None,
    )


def test_three_scenes_become_one_video_with_transitions(fake_server, fake_engine, no_sleep, tmp_path):
    scenes = [Scene(prompt=f"verse {i}", duration=2.0, image_ref=_image(f"img{i}")) for i in range(3)]
    pipeline = _pipeline(fake_server, fake_engine, no_sleep, tmp_path)

    result = asyncio.run(pipeline.run(scenes, GenerationSettings(motion_effect=MotionEffect.AUTO), "video.mp4", seed=500))

    assert result.output.data == b"job-1.mp4|job-4.mp4|job-2.mp4|job-5.mp4|job-3.mp4"
    assert result.output.filename == "video.mp4"
    assert [clip.role for clip in result.clips] == [
        ClipRole.SCENE, ClipRole.TRANSITION, ClipRole.SCENE, ClipRole.TRANSITION, ClipRole.SCENE,
    ]
    assert result.failed_scenes == []
    for scene in scenes:
        assert scene.status_history == [SceneStatus.PENDING, SceneStatus.GENERATING, SceneStatus.COMPLETE]
    assert [(scene.start, scene.end) for scene in scenes] == [(0.0, 2.0), (2.0, 4.0), (4.0, 6.0)]
    assert [graph["12"]["inputs"]["seed"] for graph in fake_server.graphs[:3]] == [500, 1500, 2500]
    # Without a classifier, automatic motion resolves to the default zoom
    assert fake_server.graphs[0]["4"]["inputs"]["name"] == MotionEffect.ZOOM_IN.value


def test_failed_scene_is_skipped_and_reported(fake_server, fake_engine, no_sleep, tmp_path):
    fake_server.failures = {"job-2": "CUDA out of memory. Tried to allocate 1.50 GiB"}
    scenes = [Scene(prompt=f"verse {i}", duration=2.0, image_ref=_image(f"img{i}")) for i in range(3)]

    result = asyncio.run(_pipeline(fake_server, fake_engine, no_sleep, tmp_path).run(scenes, GenerationSettings(), seed=1))

    assert result.failed_scenes == [1]
    assert scenes[1].status is SceneStatus.ERROR
    assert scenes[1].error == OOM_REMEDIATION
    assert scenes[1].status_history == [SceneStatus.PENDING, SceneStatus.GENERATING, SceneStatus.ERROR]
    assert result.output.data == b"job-1.mp4|job-4.mp4|job-3.mp4"


def test_long_scene_is_split_and_missing_image_generated(fake_server, fake_engine, no_sleep, tmp_path):
    scenes = [
        Scene(prompt="chorus", duration=4.0, image_ref=_image("img0")),
        Scene(prompt="bridge", duration=2.0, image_prompt="empty highway at dawn"),
    ]

    result = asyncio.run(
        _pipeline(fake_server, fake_engine, no_sleep, tmp_path, transitions=False).run(scenes, GenerationSettings(), seed=3)
    )

    assert result.output.data == b"job-1.mp4|job-2.mp4|job-4.mp4"
    assert len(scenes[0].clips) == 2
    assert parse_data_url(scenes[1].image_ref)[0] == b"job-3.png"
    uploaded = [parse_data_url(ref)[0] for _, ref in fake_server.uploads]
    assert uploaded == [b"img0", b"last-frame-of:job-1.mp4", b"job-3.png"]
    assert [clip.ordinal for clip in result.clips] == [0, 1, 2]


def test_no_clips_at_all_is_an_error(fake_server, fake_engine, no_sleep, tmp_path):
    fake_server.failures = {"job-1": "boom", "job-2": "boom"}
    scenes = [Scene(prompt=f"verse {i}", duration=2.0, image_ref=_image(f"img{i}")) for i in range(2)]

    with pytest.raises(GenerationError, match="No scene produced a clip"):
        asyncio.run(_pipeline(fake_server, fake_engine, no_sleep, tmp_path).run(scenes, GenerationSettings(), seed=0))

    assert [scene.error for scene in scenes] == ["KSampler: boom", "KSampler: boom"]


def test_unreachable_scene_image_only_fails_that_scene(fake_server, fake_engine, no_sleep, tmp_path):
    def refuse(request):
        raise httpx.ConnectError("All connection attempts failed", request=request)

    scenes = [
        Scene(prompt="verse 0", duration=2.0, image_ref=_image("img0")),
        Scene(prompt="verse 1", duration=2.0, image_ref="http://images.test/missing.png"),
        Scene(prompt="verse 2", duration=2.0, image_ref=_image("img2")),
    ]
    pipeline = _pipeline(
        fake_server, fake_engine, no_sleep, tmp_path,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)),
    )

    result = asyncio.run(pipeline.run(scenes, GenerationSettings(), seed=2))

    assert result.failed_scenes == [1]
    assert scenes[1].status is SceneStatus.ERROR
    assert scenes[1].error.startswith("Could not read source image")
    assert [scene.status for scene in (scenes[0], scenes[2])] == [SceneStatus.COMPLETE, SceneStatus.COMPLETE]
    assert result.output.data == b"job-1.mp4|job-3.mp4|job-2.mp4"
