"""Extraction of produced artifacts and errors from job history entries.

A history entry looks like::

    {
        "outputs": {"14": {"gifs": [{"filename": "x.mp4", "subfolder": "", "type": "output"}]}},
        "status": {"status_str": "success", "completed": True, "messages": [...]},
    }

The keys present under each node depend on which output node ran, so the
lookup is an explicit ordered list of rules applied node by node in listing
order. The first rule that matches wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable

from lyricvision.errors import BackendExecutionError
from lyricvision.models import (
    ArtifactResult,
    FrameSequenceArtifact,
    ImageArtifact,
    JobKind,
    OutputFile,
    VideoArtifact,
)

VIDEO_EXTENSIONS = (".mp4", ".webm", ".mov", ".mkv", ".gif")
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp")

OOM_REMEDIATION = (
    "Not enough GPU memory for this job. "
    "Reduce the frame count or the output resolution and try again."
)

_OOM_PATTERNS = (
    re.compile(r"out of memory", re.IGNORECASE),
    re.compile(r"OutOfMemoryError"),
    re.compile(r"\bOOM\b"),
    re.compile(r"allocation on device", re.IGNORECASE),
)


@dataclass(frozen=True)
class ExtractionRule:
    """Looks up one list key of a node output.

    Attributes:
        key: Output list name ("images", "videos", "gifs", "files").
        preferred: Extension chosen over list order when present.
        extensions: If set, entries with other extensions are ignored.
        build: Turns the matched entries into an artifact.
    """
    key: str
    preferred: str
    build: Callable[[OutputFile, list[OutputFile]], ArtifactResult]
    extensions: tuple[str, ...] = ()


def _as_video(picked: OutputFile, entries: list[OutputFile]) -> ArtifactResult:
    return VideoArtifact(picked)


def _as_image(picked: OutputFile, entries: list[OutputFile]) -> ArtifactResult:
    return ImageArtifact(picked)


def _as_frames(picked: OutputFile, entries: list[OutputFile]) -> ArtifactResult:
    return FrameSequenceArtifact(tuple(entries))


IMAGE_RULES = (
    ExtractionRule("images", ".png", _as_image),
    ExtractionRule("files", ".png", _as_image, IMAGE_EXTENSIONS),
)

VIDEO_RULES = (
    ExtractionRule("videos", ".mp4", _as_video),
    ExtractionRule("gifs", ".mp4", _as_video),
    ExtractionRule("files", ".mp4", _as_video, VIDEO_EXTENSIONS),
    ExtractionRule("images", ".png", _as_frames),
)


def _entries(raw: Any, extensions: tuple[str, ...]) -> list[OutputFile]:
    files = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict) or not item.get("filename"):
            continue
        ref = OutputFile(
            filename=item["filename"],
            subfolder=item.get("subfolder") or "",
            kind=item.get("type") or "output",
        )
        if extensions and ref.extension not in extensions:
            continue
        files.append(ref)
    return files


def _pick(entries: list[OutputFile], preferred: str) -> OutputFile:
    for ref in entries:
        if ref.extension == preferred:
            return ref
    return entries[0]


def extract_artifact(history: dict, kind: JobKind) -> ArtifactResult | None:
    """Return the first artifact in a history entry, or None.

    Image jobs look for ``images`` then ``files`` with an image extension.
    Video jobs look for ``videos``, ``gifs``, ``files`` with a video
    extension, then ``images`` which become a frame sequence. Within a list
    the preferred extension wins, otherwise the first entry.
    """
    outputs = history.get("outputs") if isinstance(history, dict) else None
    if not isinstance(outputs, dict):
        return None
    rules = IMAGE_RULES if kind is JobKind.IMAGE else VIDEO_RULES
    for node_output in outputs.values():
        if not isinstance(node_output, dict):
            continue
        for rule in rules:
            entries = _entries(node_output.get(rule.key), rule.extensions)
            if entries:
                return rule.build(_pick(entries, rule.preferred), entries)
    return None


def history_completed(history: dict) -> bool:
    status = history.get("status") or {}
    return bool(status.get("completed")) or status.get("status_str") == "success"


def _execution_error(history: dict) -> tuple[str, str | None] | None:
    status = history.get("status") or {}
    if status.get("status_str") != "error":
        return None
    for message in status.get("messages") or []:
        if isinstance(message, (list, tuple)) and len(message) == 2 and message[0] == "execution_error":
            details = message[1] if isinstance(message[1], dict) else {}
            text = details.get("exception_message") or details.get("exception_type") or "Unknown error"
            return str(text).strip(), details.get("node_type")
    return "Job failed on the backend without an error message", None


def is_out_of_memory(message: str) -> bool:
    return any(pattern.search(message) for pattern in _OOM_PATTERNS)


def classify_error(history: dict) -> BackendExecutionError | None:
    """Return the backend execution error recorded in a history entry.

    Out-of-memory failures are rewritten into a remediation message; every
    other error keeps the backend's own text.
    """
    found = _execution_error(history)
    if found is None:
        return None
    raw, node_type = found
    if is_out_of_memory(raw):
        return BackendExecutionError(OOM_REMEDIATION, raw_message=raw, node_type=node_type)
    prefix = f"{node_type}: " if node_type else ""
    return BackendExecutionError(f"{prefix}{raw}", raw_message=raw, node_type=node_type)
