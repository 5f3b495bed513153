"""Media references: data URLs, remote URLs and local files.

Binary payloads cross the transport boundary base64-encoded, so clips and
images are carried around as data URLs until they need to hit the disk.
"""

from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)

_FETCH_TIMEOUT = 120.0

_EXTENSIONS = {
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "image/gif": ".gif",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}


def to_data_url(data: bytes, content_type: str) -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


def is_data_url(ref: str) -> bool:
    return ref.startswith("data:")


def parse_data_url(ref: str) -> tuple[bytes, str]:
    """Decode a ``data:<type>;base64,<payload>`` URL.

    Returns:
        (bytes, content_type)

    Raises:
        ValueError: If the reference is not a base64 data URL.
    """
    header, sep, payload = ref.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError(f"Not a base64 data URL: {ref[:40]}...")
    content_type = header[len("data:"):-len(";base64")] or "application/octet-stream"
    try:
        return base64.b64decode(payload, validate=True), content_type
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64 payload in data URL: {exc}") from exc


def strip_data_url(data: str) -> str:
    """Return the bare base64 payload of a data URL (or the input unchanged)."""
    if is_data_url(data):
        return data.partition(",")[2]
    return data


def guess_content_type(name: str, default: str = "application/octet-stream") -> str:
    content_type, _ = mimetypes.guess_type(name)
    return content_type or default


def extension_for(content_type: str) -> str:
    return _EXTENSIONS.get(content_type.split(";")[0].strip(), ".bin")


def load_local_image(path: str | Path) -> str:
    """Read a local file into a data URL."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")
    return to_data_url(path.read_bytes(), guess_content_type(path.name, "image/png"))


async def fetch_media(
    ref: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = _FETCH_TIMEOUT,
) -> bytes:
    """Return the bytes behind a media reference.

    Args:
        ref: Data URL, http(s) URL or local file path.
        client: Optional shared HTTP client for URL references.
        timeout: Per-request timeout for URL references.

    Raises:
        FileNotFoundError: If a local path does not exist.
        httpx.HTTPError: If downloading a URL fails.
    """
    if is_data_url(ref):
        data, _ = parse_data_url(ref)
        return data
    if ref.startswith(("http://", "https://")):
        logger.debug("Fetching %s", ref)
        if client is not None:
            response = await client.get(ref, timeout=timeout)
            response.raise_for_status()
            return response.content
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as fetch_client:
            response = await fetch_client.get(ref)
            response.raise_for_status()
            return response.content
    path = Path(ref)
    if not path.exists():
        raise FileNotFoundError(f"Media file not found: {path}")
    return path.read_bytes()
