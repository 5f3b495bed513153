import asyncio
import base64
import json

import httpx
import pytest

from lyricvision.errors import EmptyInputError, TransportError
from lyricvision.transport import Action, JobTransport

ADDRESS = "https://gpu.example.com/"


def _transport(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return JobTransport(client=client)


def _call(handler, action, payload=None, address=ADDRESS):
    async def go():
        async with _transport(handler) as transport:
            return await transport.submit(action, address, payload)
    return asyncio.run(go())


def test_queue_prompt_posts_graph_and_returns_job_id():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"prompt_id": "abc-123", "number": 7, "node_errors": {}})

    result = _call(handler, Action.QUEUE_PROMPT, {"prompt": {"1": {"class_type": "LoadImage", "inputs": {}}}})

    assert result == {"job_id": "abc-123", "number": 7}
    assert seen["path"] == "/prompt"
    assert seen["body"]["prompt"]["1"]["class_type"] == "LoadImage"


def test_queue_prompt_without_id_is_a_transport_error():
    def handler(request):
        return httpx.Response(200, json={"error": "invalid prompt"})

    with pytest.raises(TransportError):
        _call(handler, Action.QUEUE_PROMPT, {"prompt": {"1": {}}})


def test_get_queue_returns_job_ids():
    def handler(request):
        assert request.url.path == "/queue"
        return httpx.Response(200, json={
            "queue_running": [[3, "run-1", {}, {}, []]],
            "queue_pending": [[4, "pend-1", {}, {}, []], [5, "pend-2", {}, {}, []]],
        })

    assert _call(handler, Action.GET_QUEUE) == {"running": ["run-1"], "pending": ["pend-1", "pend-2"]}


def test_get_history_returns_entry_or_empty():
    entry = {"outputs": {"9": {"images": [{"filename": "a.png"}]}}, "status": {"completed": True}}

    def handler(request):
        job_id = request.url.path.rsplit("/", 1)[1]
        return httpx.Response(200, json={"known": entry} if job_id == "known" else {})

    assert _call(handler, Action.GET_HISTORY, {"job_id": "known"}) == entry
    assert _call(handler, Action.GET_HISTORY, {"job_id": "missing"}) == {}


def test_get_artifact_is_base64_encoded():
    def handler(request):
        assert request.url.path == "/view"
        assert request.url.params["filename"] == "clip.mp4"
        assert request.url.params["type"] == "output"
        return httpx.Response(200, content=b"\x00\x01video", headers={"content-type": "video/mp4; charset=binary"})

    result = _call(handler, "get_video", {"filename": "clip.mp4"})

    assert base64.b64decode(result["data"]) == b"\x00\x01video"
    assert result["content_type"] == "video/mp4"
    assert result["data_url"] == "data:video/mp4;base64," + result["data"]


def test_upload_image_sends_multipart_and_returns_name():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = request.content
        return httpx.Response(200, json={"name": "seed.png", "subfolder": "", "type": "input"})

    image = "data:image/png;base64," + base64.b64encode(b"PNGDATA").decode()
    result = _call(handler, Action.UPLOAD_IMAGE, {"image_data": image, "filename": "seed.png"})

    assert result == {"name": "seed.png", "subfolder": ""}
    assert seen["path"] == "/upload/image"
    assert b"PNGDATA" in seen["body"]
    assert b'name="overwrite"' in seen["body"]


def test_get_models_lists_checkpoints():
    def handler(request):
        return httpx.Response(200, json={
            "CheckpointLoaderSimple": {"input": {"required": {"ckpt_name": [["dreamshaper_8.safetensors", "sd_xl_base.safetensors"]]}}}
        })

    assert _call(handler, Action.GET_MODELS) == {"checkpoints": ["dreamshaper_8.safetensors", "sd_xl_base.safetensors"]}


def test_object_info_not_found_means_unavailable():
    def handler(request):
        return httpx.Response(404, text="not found")

    assert _call(handler, Action.OBJECT_INFO, {"node_class": "VHS_VideoCombine"}) == {"available": False, "info": {}}


def test_http_error_keeps_status_and_body():
    def handler(request):
        return httpx.Response(500, text="server exploded")

    with pytest.raises(TransportError) as excinfo:
        _call(handler, Action.GET_QUEUE)
    assert excinfo.value.status_code == 500
    assert excinfo.value.body == "server exploded"


def test_malformed_json_is_a_transport_error():
    def handler(request):
        return httpx.Response(200, text="<html>tunnel offline</html>")

    with pytest.raises(TransportError, match="Malformed JSON"):
        _call(handler, Action.SYSTEM_STATS)


def test_empty_address_and_unknown_action():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(EmptyInputError):
        _call(handler, Action.GET_QUEUE, address="")
    with pytest.raises(ValueError, match="Unknown action"):
        _call(handler, "reboot")


def test_check_connection_reports_unreachable_server():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def go():
        async with _transport(handler) as transport:
            return await transport.check_connection(ADDRESS)

    assert asyncio.run(go()) is False


def test_undecodable_json_body_is_a_transport_error():
    def handler(request):
        return httpx.Response(200, content=b"\xff\xfe\xfa{", headers={"content-type": "application/json"})

    with pytest.raises(TransportError):
        _call(handler, Action.GET_QUEUE)
