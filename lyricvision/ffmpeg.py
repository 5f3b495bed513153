"""Thin wrapper around the ffmpeg and ffprobe binaries.

One ``FFmpegEngine`` is created per session. It locates the binaries the
first time it is used and is then reused for every call.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path

from lyricvision.errors import MediaError

logger = logging.getLogger(__name__)

# Seek offset from the end when grabbing the last frame, in seconds
LAST_FRAME_OFFSET = 0.1


class FFmpegEngine:
    """Runs ffmpeg/ffprobe as subprocesses."""

    def __init__(self, ffmpeg: str = "ffmpeg", ffprobe: str = "ffprobe") -> None:
        self._ffmpeg_name = ffmpeg
        self._ffprobe_name = ffprobe
        self.ffmpeg_path: str | None = None
        self.ffprobe_path: str | None = None
        self.version: str | None = None

    @property
    def loaded(self) -> bool:
        return self.ffmpeg_path is not None

    def load(self) -> None:
        """Locate the binaries. Does nothing once loaded."""
        if self.loaded:
            return
        path = shutil.which(self._ffmpeg_name)
        if path is None:
            raise MediaError(
                "ffmpeg not found on PATH. Install it (e.g. `apt install ffmpeg`) and retry."
            )
        result = subprocess.run([path, "-version"], capture_output=True, text=True)
        if result.returncode != 0:
            raise MediaError(f"ffmpeg at {path} is not runnable:\n{result.stderr}")
        self.version = (result.stdout.splitlines() or ["ffmpeg"])[0]
        self.ffprobe_path = shutil.which(self._ffprobe_name)
        if self.ffprobe_path is None:
            logger.warning("ffprobe not found on PATH; clip compatibility will not be checked")
        self.ffmpeg_path = path
        logger.info("Loaded %s", self.version)

    def run(self, args: list[str]) -> None:
        """Run ffmpeg with the given arguments, raising on a non-zero exit."""
        self.load()
        cmd = [self.ffmpeg_path, "-y", "-hide_banner", "-loglevel", "error", *args]
        logger.debug("Running: %s", " ".join(cmd))
        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode != 0:
            raise MediaError(f"ffmpeg failed (exit {result.returncode}):\n{result.stderr}")

    def probe_video_stream(self, path: str | Path) -> dict | None:
        """Return codec parameters of the first video stream, or None without ffprobe."""
        self.load()
        if self.ffprobe_path is None:
            return None
        cmd = [
            self.ffprobe_path, "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=codec_name,width,height,pix_fmt",
            "-of", "json",
            str(path),
        ]
        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode != 0:
            raise MediaError(f"ffprobe failed for {Path(path).name}:\n{result.stderr}")
        streams = json.loads(result.stdout or "{}").get("streams") or []
        return streams[0] if streams else {}

    def extract_last_frame(self, video_bytes: bytes) -> bytes:
        """Return the last decodable frame of a video as PNG bytes."""
        with tempfile.TemporaryDirectory(prefix="lv_frame_") as tmp:
            source = Path(tmp) / "clip.mp4"
            target = Path(tmp) / "last.png"
            source.write_bytes(video_bytes)
            self.run([
                "-sseof", f"-{LAST_FRAME_OFFSET}",
                "-i", str(source),
                "-frames:v", "1",
                "-q:v", "2",
                str(target),
            ])
            if not target.exists():
                raise MediaError("ffmpeg produced no frame; the clip may be empty")
            return target.read_bytes()

    def encode_frames(self, frames: list[bytes], frame_rate: int, crf: int = 19) -> bytes:
        """Encode a sequence of still images into an H.264 MP4."""
        if not frames:
            raise MediaError("No frames to encode")
        with tempfile.TemporaryDirectory(prefix="lv_frames_") as tmp:
            for index, frame in enumerate(frames):
                (Path(tmp) / f"frame_{index:05d}.png").write_bytes(frame)
            target = Path(tmp) / "frames.mp4"
            self.run([
                "-framerate", str(frame_rate),
                "-i", str(Path(tmp) / "frame_%05d.png"),
                "-c:v", "libx264",
                "-pix_fmt", "yuv420p",
                "-crf", str(crf),
                "-movflags", "+faststart",
                str(target),
            ])
            return target.read_bytes()
