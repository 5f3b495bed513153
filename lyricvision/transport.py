"""Async job transport for a remote ComfyUI-style GPU job server.

The server is only reachable through an address the user configures (usually
a tunnel URL). Every call goes through ``JobTransport.submit`` which forwards
one action, normalizes the server's response into a uniform shape and
base64-encodes binary artifacts so that callers only ever deal with JSON.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

import httpx

from lyricvision.errors import EmptyInputError, TransportError
from lyricvision.media import strip_data_url

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30.0
_CONNECT_TIMEOUT = 10.0
_CHECK_TIMEOUT = 5.0


class Action:
    """Names of the actions understood by ``JobTransport.submit``."""
    SYSTEM_STATS = "system_stats"
    QUEUE_PROMPT = "queue_prompt"
    GET_QUEUE = "get_queue"
    GET_HISTORY = "get_history"
    GET_ARTIFACT = "get_artifact"
    UPLOAD_IMAGE = "upload_image"
    GET_MODELS = "get_models"
    OBJECT_INFO = "object_info"


# Older callers ask for images and videos by separate names.
_ALIASES = {
    "get_image": Action.GET_ARTIFACT,
    "get_video": Action.GET_ARTIFACT,
}


class JobTransport:
    """Async client for the remote job server.

    Holds no state between calls apart from the pooled HTTP connection.

    Usage::

        async with JobTransport() as transport:
            queued = await transport.submit("queue_prompt", url, {"prompt": graph})
            history = await transport.submit("get_history", url, {"job_id": queued["job_id"]})
    """

    def __init__(
        self,
        timeout: float = _DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=_CONNECT_TIMEOUT),
            follow_redirects=True,
        )

    async def __aenter__(self) -> JobTransport:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self, method: str, url: str, timeout: float | None = None, **kwargs: Any
    ) -> httpx.Response:
        if timeout is not None:
            kwargs["timeout"] = httpx.Timeout(timeout)
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"HTTP {exc.response.status_code}: {exc.response.text}",
                status_code=exc.response.status_code,
                body=exc.response.text,
            ) from exc
        except httpx.TimeoutException as exc:
            raise TransportError(f"Request timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Network error: {exc}") from exc

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(
                f"Malformed JSON from {response.request.url}: {exc}",
                status_code=response.status_code,
                body=response.text,
            ) from exc

    @staticmethod
    def _queue_ids(entries: list) -> list[str]:
        # Queue entries are [number, prompt_id, prompt, extra_data, outputs]
        ids = []
        for entry in entries or []:
            if isinstance(entry, (list, tuple)) and len(entry) > 1:
                ids.append(str(entry[1]))
        return ids

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit(
        self,
        action: str,
        target_address: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Forward one action to the job server and normalize the reply.

        Args:
            action: One of the ``Action`` names.
            target_address: Base URL of the job server.
            payload: Action-specific arguments.

        Returns:
            The normalized response dict.

        Raises:
            EmptyInputError: If no address is given.
            ValueError: If the action is unknown or the payload is incomplete.
            TransportError: On network errors, timeouts, non-2xx responses
                or malformed JSON.
        """
        if not target_address:
            raise EmptyInputError("No job server address configured")
        base = target_address.rstrip("/")
        payload = payload or {}
        action = _ALIASES.get(action, action)
        logger.debug("-> %s %s", action, base)

        if action == Action.SYSTEM_STATS:
            return self._json(await self._request("GET", f"{base}/system_stats"))

        if action == Action.QUEUE_PROMPT:
            graph = payload.get("prompt")
            if not graph:
                raise ValueError("queue_prompt requires a 'prompt' graph")
            data = self._json(await self._request("POST", f"{base}/prompt", json={"prompt": graph}))
            job_id = data.get("prompt_id")
            if not job_id:
                raise TransportError(f"No prompt_id in queue response: {data}", body=data)
            return {"job_id": str(job_id), "number": data.get("number")}

        if action == Action.GET_QUEUE:
            data = self._json(await self._request("GET", f"{base}/queue"))
            return {
                "running": self._queue_ids(data.get("queue_running", [])),
                "pending": self._queue_ids(data.get("queue_pending", [])),
            }

        if action == Action.GET_HISTORY:
            job_id = payload.get("job_id")
            if not job_id:
                raise ValueError("get_history requires a 'job_id'")
            data = self._json(await self._request("GET", f"{base}/history/{job_id}"))
            entry = data.get(job_id) if isinstance(data, dict) else None
            return entry if isinstance(entry, dict) else {}

        if action == Action.GET_ARTIFACT:
            filename = payload.get("filename")
            if not filename:
                raise ValueError("get_artifact requires a 'filename'")
            params = {
                "filename": filename,
                "subfolder": payload.get("subfolder", ""),
                "type": payload.get("type", "output"),
            }
            response = await self._request("GET", f"{base}/view", params=params)
            content_type = response.headers.get("content-type", "application/octet-stream")
            content_type = content_type.split(";")[0].strip()
            encoded = base64.b64encode(response.content).decode("ascii")
            return {
                "data": encoded,
                "content_type": content_type,
                "data_url": f"data:{content_type};base64,{encoded}",
            }

        if action == Action.UPLOAD_IMAGE:
            image_data = payload.get("image_data")
            filename = payload.get("filename") or "input.png"
            if not image_data:
                raise ValueError("upload_image requires 'image_data'")
            try:
                raw = base64.b64decode(strip_data_url(image_data), validate=True)
            except binascii.Error as exc:
                raise ValueError(f"upload_image data is not valid base64: {exc}") from exc
            response = await self._request(
                "POST",
                f"{base}/upload/image",
                files={"image": (filename, raw, "image/png")},
                data={"overwrite": "true"},
            )
            data = self._json(response)
            return {"name": data.get("name") or filename, "subfolder": data.get("subfolder", "")}

        if action == Action.GET_MODELS:
            data = self._json(await self._request("GET", f"{base}/object_info/CheckpointLoaderSimple"))
            try:
                names = data["CheckpointLoaderSimple"]["input"]["required"]["ckpt_name"][0]
            except (KeyError, IndexError, TypeError):
                names = []
            return {"checkpoints": list(names) if isinstance(names, list) else []}

        if action == Action.OBJECT_INFO:
            node_class = payload.get("node_class")
            if not node_class:
                raise ValueError("object_info requires a 'node_class'")
            try:
                data = self._json(await self._request("GET", f"{base}/object_info/{node_class}"))
            except TransportError as exc:
                # Missing custom nodes answer 404 on some server versions
                if exc.status_code == 404:
                    return {"available": False, "info": {}}
                raise
            info = data.get(node_class) if isinstance(data, dict) else None
            return {"available": bool(info), "info": info or {}}

        raise ValueError(f"Unknown action: {action}")

    async def check_connection(self, target_address: str, timeout: float = _CHECK_TIMEOUT) -> bool:
        """Return True if the job server answers its status endpoint in time."""
        if not target_address:
            raise EmptyInputError("No job server address configured")
        try:
            await self._request("GET", f"{target_address.rstrip('/')}/system_stats", timeout=timeout)
        except TransportError as exc:
            logger.warning("Job server at %s is not reachable: %s", target_address, exc)
            return False
        return True

    async def fetch_data_url(self, target_address: str, filename: str, subfolder: str = "", kind: str = "output") -> str:
        """Fetch one output file and return it as a data URL."""
        result = await self.submit(
            Action.GET_ARTIFACT,
            target_address,
            {"filename": filename, "subfolder": subfolder, "type": kind},
        )
        return result["data_url"]

    async def upload_image(self, target_address: str, image_ref: str, filename: str) -> str:
        """Upload a data-URL image and return the name the server stored it under."""
        result = await self.submit(
            Action.UPLOAD_IMAGE,
            target_address,
            {"image_data": image_ref, "filename": filename},
        )
        return result["name"]

