"""Concatenate an ordered list of clips into one video with ffmpeg.

Clips are stream-copied through the concat demuxer, so stitching is fast and
lossless as long as every clip shares the same codec parameters. Clips that
do not are rejected up front rather than producing a corrupt file.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import httpx

from lyricvision.errors import IncompatibleClipsError, MediaError, StitchError
from lyricvision.ffmpeg import FFmpegEngine
from lyricvision.media import fetch_media, guess_content_type
from lyricvision.models import MediaBlob, StitchJob

logger = logging.getLogger(__name__)

_COMPARED_FIELDS = ("codec_name", "width", "height", "pix_fmt")


@dataclass(frozen=True)
class StitchProgress:
    """Coarse progress of the running stitch.

    Attributes:
        stage: "idle", "loading", "downloading", "stitching" or "complete".
        percent: Percentage of the whole operation.
        message: Human-readable description of the stage.
    """
    stage: str = "idle"
    percent: float = 0.0
    message: str = ""


class ClipStitcher:
    """Stitches clips into a single deliverable.

    Stitch calls on one instance run one at a time; the ffmpeg engine is
    shared between them.
    """

    def __init__(
        self,
        engine: FFmpegEngine | None = None,
        http_client: httpx.AsyncClient | None = None,
        work_root: str | Path | None = None,
    ) -> None:
        self.engine = engine or FFmpegEngine()
        self._http = http_client
        self._work_root = str(work_root) if work_root else None
        self._lock = asyncio.Lock()
        self._progress = StitchProgress()

    def current_progress(self) -> StitchProgress:
        return self._progress

    def _report(self, stage: str, percent: float, message: str) -> None:
        self._progress = StitchProgress(stage, percent, message)
        logger.debug("Stitch %s (%.0f%%): %s", stage, percent, message)

    def _check_compatible(self, paths: list[Path]) -> None:
        reference = None
        for path in paths:
            params = self.engine.probe_video_stream(path)
            if params is None:
                return
            if not params:
                raise IncompatibleClipsError(f"{path.name} has no video stream")
            key = tuple(params.get(name) for name in _COMPARED_FIELDS)
            if reference is None:
                reference = (path.name, key)
            elif key != reference[1]:
                raise IncompatibleClipsError(
                    f"{path.name} ({', '.join(map(str, key))}) does not match "
                    f"{reference[0]} ({', '.join(map(str, reference[1]))}); "
                    "clips must share codec, size and pixel format to be joined without re-encoding"
                )

    def _concat(self, paths: list[Path], workdir: Path, output_name: str) -> bytes:
        self._check_compatible(paths)
        manifest = workdir / "concat.txt"
        with open(manifest, "w", encoding="utf-8") as f:
            for path in paths:
                f.write(f"file '{path.name}'\n")
        target = workdir / Path(output_name).name
        self.engine.run([
            "-f", "concat",
            "-safe", "0",
            "-i", str(manifest),
            "-c", "copy",
            "-movflags", "+faststart",
            str(target),
        ])
        return target.read_bytes()

    async def stitch(self, ordered_clip_refs: Sequence[str], output_name: str = "music_video.mp4") -> MediaBlob:
        """Join clips in order into one file.

        Args:
            ordered_clip_refs: Clip references (data URLs, URLs or paths) in
                playback order.
            output_name: File name of the result.

        Returns:
            The stitched video.

        Raises:
            EmptyInputError: If no clips are given.
            IncompatibleClipsError: If clips differ in codec parameters.
            StitchError: If downloading or ffmpeg fails.
        """
        job = StitchJob(tuple(ordered_clip_refs), output_name)
        content_type = guess_content_type(job.output_name, "video/mp4")

        async with self._lock:
            total = len(job.clip_refs)
            if total == 1:
                self._report("downloading", 50.0, "Fetching the only clip")
                data = await self._fetch(job.clip_refs[0], 1)
                self._report("complete", 100.0, "Single clip, nothing to join")
                return MediaBlob(data, content_type, job.output_name)

            self._report("loading", 0.0, "Loading ffmpeg")
            try:
                await asyncio.to_thread(self.engine.load)
            except MediaError as exc:
                raise StitchError(str(exc)) from exc

            with tempfile.TemporaryDirectory(prefix="lv_stitch_", dir=self._work_root) as tmp:
                workdir = Path(tmp)
                paths = []
                for index, ref in enumerate(job.clip_refs):
                    self._report(
                        "downloading",
                        10.0 + (index + 1) / total * 40.0,
                        f"Downloading clip {index + 1}/{total}",
                    )
                    path = workdir / f"input_{index:03d}.mp4"
                    path.write_bytes(await self._fetch(ref, index + 1))
                    paths.append(path)

                self._report("stitching", 60.0, f"Joining {total} clips")
                try:
                    data = await asyncio.to_thread(self._concat, paths, workdir, job.output_name)
                except StitchError:
                    raise
                except MediaError as exc:
                    raise StitchError(f"Stitching failed: {exc}") from exc

            self._report("complete", 100.0, f"Stitched {total} clips")
            logger.info("Stitched %d clips into %s (%.1f KB)", total, job.output_name, len(data) / 1024)
            return MediaBlob(data, content_type, job.output_name)

    async def _fetch(self, ref: str, position: int) -> bytes:
        try:
            return await fetch_media(ref, self._http)
        except (httpx.HTTPError, OSError, ValueError) as exc:
            raise StitchError(f"Could not fetch clip {position}: {exc}") from exc
