"""Clip and image generation against the remote job server.

``ClipGenerator`` ties the pieces together for one clip: upload the seed
image, build the graph for the configured engine, poll it to completion and
hand back the result as a data URL.
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass

import httpx

from lyricvision.errors import CapabilityMissingError, MediaError, NoArtifactError
from lyricvision.ffmpeg import FFmpegEngine
from lyricvision.media import (
    fetch_media,
    guess_content_type,
    is_data_url,
    parse_data_url,
    to_data_url,
)
from lyricvision.models import FrameSequenceArtifact, JobKind
from lyricvision.poller import JobPoller
from lyricvision.settings import GenerationSettings
from lyricvision.transport import Action, JobTransport
from lyricvision.workflows import (
    VIDEO_COMBINE_NODE,
    WAN_FRAME_RATE,
    build_image_graph,
    build_image_to_video_graph,
    build_large_video_model_graph,
    select_sd15_checkpoint,
)

logger = logging.getLogger(__name__)

ENGINES = ("animatediff", "wan")
MAX_SEED = 2147483647


def random_seed() -> int:
    return random.randint(0, MAX_SEED - 1)


@dataclass(frozen=True)
class BackendCapabilities:
    """What the job server can run.

    Attributes:
        checkpoints: Checkpoint files offered by the server.
        has_video_combine: Whether the VideoHelperSuite combine node is installed.
    """
    checkpoints: tuple[str, ...] = ()
    has_video_combine: bool = False


async def probe_capabilities(transport: JobTransport, address: str) -> BackendCapabilities:
    models = await transport.submit(Action.GET_MODELS, address)
    node = await transport.submit(Action.OBJECT_INFO, address, {"node_class": VIDEO_COMBINE_NODE})
    caps = BackendCapabilities(
        checkpoints=tuple(models.get("checkpoints", [])),
        has_video_combine=bool(node.get("available")),
    )
    logger.info(
        "Backend offers %d checkpoint(s); video combine node %s",
        len(caps.checkpoints), "available" if caps.has_video_combine else "missing",
    )
    return caps


class ClipGenerator:
    """Generates single clips and images on the job server."""

    def __init__(
        self,
        transport: JobTransport,
        poller: JobPoller,
        capabilities: BackendCapabilities,
        *,
        engine: str = "animatediff",
        checkpoint: str | None = None,
        image_checkpoint: str | None = None,
        ffmpeg: FFmpegEngine | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if engine not in ENGINES:
            raise ValueError(f"Unknown video engine {engine!r}; expected one of {', '.join(ENGINES)}")
        self.transport = transport
        self.poller = poller
        self.capabilities = capabilities
        self.engine = engine
        self.checkpoint = checkpoint
        self.image_checkpoint = image_checkpoint
        self.ffmpeg = ffmpeg or FFmpegEngine()
        self._http = http_client

    @property
    def address(self) -> str:
        return self.poller.address

    def _checkpoint_choice(self) -> str | tuple[str, ...]:
        if self.checkpoint:
            return self.checkpoint
        return self.capabilities.checkpoints

    async def _upload(self, image_ref: str) -> str:
        try:
            if is_data_url(image_ref):
                parse_data_url(image_ref)
            else:
                data = await fetch_media(image_ref, self._http)
                image_ref = to_data_url(data, guess_content_type(image_ref, "image/png"))
        except (httpx.HTTPError, OSError, ValueError) as exc:
            raise MediaError(f"Could not read source image {image_ref[:60]}: {exc}") from exc
        filename = f"lv_input_{uuid.uuid4().hex[:12]}.png"
        return await self.transport.upload_image(self.address, image_ref, filename)

    async def generate_image(self, prompt: str, seed: int | None, width: int, height: int) -> str:
        """Generate a still image and return it as a data URL."""
        seed = random_seed() if seed is None else seed
        graph = build_image_graph(prompt, seed, width, height, self.image_checkpoint)
        artifact = await self.poller.run(graph, JobKind.IMAGE)
        urls = await self.poller.fetch(artifact)
        return urls[0]

    async def generate_video(
        self, image_ref: str, prompt: str, seed: int, settings: GenerationSettings
    ) -> str:
        """Generate one clip from a seed image.

        Returns:
            The clip as an MP4 (or the configured container) data URL.

        Raises:
            CapabilityMissingError: If the engine needs something the backend lacks.
            GenerationError: If the job fails.
            TransportError: If the backend is unreachable.
        """
        if self.engine == "wan":
            if not self.capabilities.has_video_combine:
                raise CapabilityMissingError(
                    "The Wan engine needs the VideoHelperSuite video combine node on the backend"
                )
        else:
            # Fail on a missing checkpoint before uploading anything
            select_sd15_checkpoint(self._checkpoint_choice())

        uploaded = await self._upload(image_ref)
        if self.engine == "wan":
            graph = build_large_video_model_graph(
                uploaded, prompt, seed, settings.width, settings.height,
                frame_count=max(1, round(settings.duration * WAN_FRAME_RATE)),
                steps=settings.steps, guidance=settings.cfg,
            )
        else:
            graph = build_image_to_video_graph(
                uploaded, prompt, seed, settings, self._checkpoint_choice(),
                self.capabilities.has_video_combine,
            )

        artifact = await self.poller.run(graph, JobKind.VIDEO)
        urls = await self.poller.fetch(artifact)
        if not isinstance(artifact, FrameSequenceArtifact):
            return urls[0]

        logger.info("Backend returned %d still frames; encoding them locally", len(urls))
        frames = [parse_data_url(url)[0] for url in urls]
        if not frames:
            raise NoArtifactError("Frame sequence output was empty")
        if settings.pingpong:
            # Play back down to the second frame so the loop point is not doubled
            frames = frames + frames[-2:0:-1]
        video = await asyncio.to_thread(
            self.ffmpeg.encode_frames, frames, settings.frame_rate, settings.quality
        )
        return to_data_url(video, "video/mp4")
