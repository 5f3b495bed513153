import asyncio

import httpx
import pytest

from lyricvision.errors import EmptyInputError
from lyricvision.media import fetch_media, load_local_image, parse_data_url, strip_data_url, to_data_url
from lyricvision.models import Scene, SceneStatus, StitchJob


def test_data_url_helpers():
    ref = to_data_url(b"\x89PNG", "image/png")

    assert parse_data_url(ref) == (b"\x89PNG", "image/png")
    assert strip_data_url(ref) == ref.partition(",")[2]
    assert strip_data_url("aGVsbG8=") == "aGVsbG8="
    with pytest.raises(ValueError):
        parse_data_url("https://example.com/a.png")


def test_load_local_image(tmp_path):
    path = tmp_path / "cover.jpg"
    path.write_bytes(b"jpeg")

    assert parse_data_url(load_local_image(path)) == (b"jpeg", "image/jpeg")
    with pytest.raises(FileNotFoundError):
        load_local_image(tmp_path / "missing.png")


def test_fetch_media_downloads_urls():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"clip")))

    async def go():
        async with client:
            return await fetch_media("https://cdn.example.com/clip.mp4", client)

    assert asyncio.run(go()) == b"clip"


def test_stitch_job_needs_clips():
    with pytest.raises(EmptyInputError):
        StitchJob(())


def test_scene_status_history():
    scene = Scene(prompt="neon")
    scene.mark(SceneStatus.GENERATING)
    scene.mark(SceneStatus.ERROR, "timeout")

    assert scene.status_history == [SceneStatus.PENDING, SceneStatus.GENERATING, SceneStatus.ERROR]
    assert scene.to_status()["error"] == "timeout"
