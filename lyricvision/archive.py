"""Bundle independently retrieved artifacts into one zip archive."""

from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Sequence

import httpx

from lyricvision.errors import ArchiveError, EmptyInputError

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = 15.0
VIDEO_MODEL_MARKERS = ("seedance", "bytedance", "video", "wan", "kling")


@dataclass(frozen=True)
class RetrievedArtifact:
    """One finished job output to archive.

    Attributes:
        job_id: Id of the job that produced it.
        created_at: ISO 8601 creation time of the job.
        url: Where the output can be downloaded.
        model: Model that produced it; used to tell videos from images.
    """
    job_id: str
    created_at: str
    url: str
    model: str = ""

    @property
    def is_video(self) -> bool:
        model = self.model.lower()
        return any(marker in model for marker in VIDEO_MODEL_MARKERS)

    @property
    def extension(self) -> str:
        if self.is_video:
            return "mp4"
        return "png" if ".png" in self.url else "webp"

    @property
    def archive_name(self) -> str:
        day = datetime.fromisoformat(self.created_at.replace("Z", "+00:00")).date().isoformat()
        return f"{day}_{self.job_id}.{self.extension}"


@dataclass
class ArchiveResult:
    data: bytes = field(repr=False)
    filename: str
    downloaded: int
    failed: list[str] = field(default_factory=list)


def archive_filename(today: date | None = None) -> str:
    return f"lyricvision_outputs_{(today or date.today()).isoformat()}.zip"


async def bundle_artifacts(
    items: Sequence[RetrievedArtifact],
    client: httpx.AsyncClient | None = None,
    timeout: float = FETCH_TIMEOUT,
) -> ArchiveResult:
    """Download each artifact and zip them as ``{date}_{job_id}.{ext}``.

    Items that cannot be downloaded are skipped and reported in ``failed``.

    Raises:
        EmptyInputError: If no items are given.
        ArchiveError: If none of the items could be downloaded.
    """
    if not items:
        raise EmptyInputError("No items selected")

    own_client = client is None
    client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
    buffer = io.BytesIO()
    downloaded = 0
    failed: list[str] = []
    try:
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for item in items:
                try:
                    name = item.archive_name
                except ValueError as exc:
                    logger.warning("Skipping %s: bad creation time %r (%s)", item.job_id, item.created_at, exc)
                    failed.append(item.job_id)
                    continue
                try:
                    response = await client.get(item.url, timeout=timeout)
                    response.raise_for_status()
                except httpx.HTTPError as exc:
                    logger.warning("Failed to fetch %s: %s", item.job_id, exc)
                    failed.append(item.job_id)
                    continue
                archive.writestr(name, response.content)
                downloaded += 1
                logger.debug("Archived %s (%.1f KB)", name, len(response.content) / 1024)
    finally:
        if own_client:
            await client.aclose()

    if downloaded == 0:
        raise ArchiveError("No items could be downloaded; URLs may have expired")
    logger.info("Archived %d item(s), %d failed", downloaded, len(failed))
    return ArchiveResult(buffer.getvalue(), archive_filename(), downloaded, failed)
