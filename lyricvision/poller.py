"""Job submission and polling until a terminal state.

Each submitted job is tracked by a ``JobMonitor`` state machine::

    queued -> running -> succeeded | failed
                      -> ambiguous -> succeeded | failed

When a job disappears from both queue lists its history is re-read for a
bounded grace window, because the server can drop a job from the queue
before its output files are written. Sleeping and time are injected so the
machine can be driven without real timers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from lyricvision.artifacts import classify_error, extract_artifact, history_completed
from lyricvision.errors import GenerationTimeoutError, NoArtifactError, TransportError
from lyricvision.models import (
    ArtifactResult,
    FrameSequenceArtifact,
    JobHandle,
    JobKind,
    JobState,
    JobStatus,
    ProgressSnapshot,
)
from lyricvision.transport import Action, JobTransport

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]

# Heuristic length of a video job; only drives the progress estimate.
EXPECTED_VIDEO_SECONDS = 180.0

IMAGE_POLL_INTERVAL = 1.0
VIDEO_POLL_INTERVAL = 2.0
IMAGE_MAX_ATTEMPTS = 120
GRACE_ATTEMPTS = 5
GRACE_DELAY = 1.5
MAX_POLL_ERRORS = 3


class ProgressTracker:
    """Best-effort progress of the job currently being polled."""

    def __init__(self, clock: Clock, expected_video_seconds: float = EXPECTED_VIDEO_SECONDS) -> None:
        self._clock = clock
        self.expected_video_seconds = expected_video_seconds
        self._started: float | None = None
        self._snapshot = ProgressSnapshot()

    def _elapsed(self) -> float:
        return 0.0 if self._started is None else max(0.0, self._clock() - self._started)

    def start(self, message: str) -> None:
        self._started = self._clock()
        self._snapshot = ProgressSnapshot(percent=0.0, message=message)

    def update_video(self, message: str) -> None:
        elapsed = self._elapsed()
        percent = min(95.0, elapsed / self.expected_video_seconds * 100.0)
        remaining = None
        if 5.0 < percent < 95.0:
            remaining = elapsed / percent * 100.0 - elapsed
        self._snapshot = ProgressSnapshot(percent, message, elapsed, remaining)

    def update_attempts(self, attempt: int, max_attempts: int, message: str) -> None:
        percent = min(95.0, attempt / max_attempts * 100.0)
        self._snapshot = ProgressSnapshot(percent, message, self._elapsed(), None)

    def complete(self, message: str = "Complete") -> None:
        self._snapshot = ProgressSnapshot(100.0, message, self._elapsed(), 0.0)

    def snapshot(self) -> ProgressSnapshot:
        return self._snapshot


class JobMonitor:
    """Tracks one submitted job until it reaches a terminal state.

    Once terminal, ``poll`` returns the cached state without touching the
    backend again.
    """

    def __init__(self, poller: JobPoller, handle: JobHandle, kind: JobKind) -> None:
        self._poller = poller
        self.handle = handle
        self.kind = kind
        self.state = JobState.queued()
        self.grace_windows = 0

    async def poll(self) -> JobState:
        """Run one poll cycle and return the new state."""
        if self.state.is_terminal:
            return self.state

        poller = self._poller
        queue = await poller.transport.submit(Action.GET_QUEUE, poller.address)
        job_id = self.handle.job_id
        if job_id in queue.get("running", []):
            self.state = JobState.running()
        elif job_id in queue.get("pending", []):
            self.state = JobState.queued()
        else:
            self.state = await self._resolve_from_history()
        return self.state

    async def _resolve_from_history(self) -> JobState:
        poller = self._poller
        job_id = self.handle.job_id
        self.grace_windows += 1
        history: dict = {}

        for attempt in range(1, poller.grace_attempts + 1):
            history = await poller.transport.submit(
                Action.GET_HISTORY, poller.address, {"job_id": job_id}
            )
            error = classify_error(history)
            if error is not None:
                logger.warning("Job %s failed: %s", job_id, error.raw_message)
                return JobState.failed(error)

            artifact = extract_artifact(history, self.kind)
            if artifact is not None:
                logger.debug("Job %s produced %s", job_id, artifact)
                return JobState.succeeded(artifact)

            self.state = JobState.ambiguous(history)
            logger.debug(
                "Job %s left the queue without output (grace attempt %d/%d)",
                job_id, attempt, poller.grace_attempts,
            )
            if attempt < poller.grace_attempts:
                await poller.sleep(poller.grace_delay)

        if history and history_completed(history):
            hint = (
                "The job finished but produced no usable output. "
                "Check that the video combine node (VideoHelperSuite) is installed."
                if self.kind is JobKind.VIDEO
                else "The job finished but produced no image. Check the SaveImage node."
            )
            return JobState.failed(NoArtifactError(hint))
        return JobState.failed(NoArtifactError("No output produced"))


class JobPoller:
    """Submits job graphs and polls them to completion.

    Usage::

        poller = JobPoller(transport, "https://my-tunnel.example")
        artifact = await poller.run(graph, JobKind.VIDEO)
        refs = await poller.fetch(artifact)
    """

    def __init__(
        self,
        transport: JobTransport,
        address: str,
        *,
        image_poll_interval: float = IMAGE_POLL_INTERVAL,
        video_poll_interval: float = VIDEO_POLL_INTERVAL,
        image_max_attempts: int = IMAGE_MAX_ATTEMPTS,
        grace_attempts: int = GRACE_ATTEMPTS,
        grace_delay: float = GRACE_DELAY,
        expected_video_seconds: float = EXPECTED_VIDEO_SECONDS,
        max_poll_errors: int = MAX_POLL_ERRORS,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        if grace_attempts < 1:
            raise ValueError("grace_attempts must be >= 1")
        self.transport = transport
        self.address = address
        self.image_poll_interval = image_poll_interval
        self.video_poll_interval = video_poll_interval
        self.image_max_attempts = image_max_attempts
        self.grace_attempts = grace_attempts
        self.grace_delay = grace_delay
        self.max_poll_errors = max_poll_errors
        self.sleep = sleep
        self.clock = clock
        self.progress = ProgressTracker(clock, expected_video_seconds)

    def current_progress(self) -> ProgressSnapshot:
        return self.progress.snapshot()

    async def submit(self, graph: dict) -> JobHandle:
        """Enqueue a graph and return its handle."""
        result = await self.transport.submit(Action.QUEUE_PROMPT, self.address, {"prompt": graph})
        handle = JobHandle(job_id=result["job_id"], submitted_at=self.clock(), graph=graph)
        logger.info("Queued job %s", handle.job_id)
        return handle

    def monitor(self, handle: JobHandle, kind: JobKind) -> JobMonitor:
        return JobMonitor(self, handle, kind)

    @staticmethod
    def _is_transient(exc: TransportError) -> bool:
        return exc.status_code is None or exc.status_code >= 500

    async def wait(self, handle: JobHandle, kind: JobKind) -> ArtifactResult:
        """Poll a job until it succeeds or fails.

        Image jobs give up after ``image_max_attempts`` polls; video jobs
        are polled for as long as they take.

        Returns:
            The extracted artifact.

        Raises:
            BackendExecutionError: If the job failed on the backend.
            NoArtifactError: If the job finished without usable output.
            GenerationTimeoutError: If an image job ran out of attempts.
            TransportError: If the backend stayed unreachable.
        """
        monitor = self.monitor(handle, kind)
        interval = self.image_poll_interval if kind is JobKind.IMAGE else self.video_poll_interval
        self.progress.start("Queued")
        attempts = 0
        errors = 0

        while True:
            attempts += 1
            try:
                state = await monitor.poll()
                errors = 0
            except TransportError as exc:
                errors += 1
                if not self._is_transient(exc) or errors >= self.max_poll_errors:
                    raise
                logger.warning("Poll of job %s failed (%d/%d): %s", handle.job_id, errors, self.max_poll_errors, exc)
                state = monitor.state

            if state.status is JobStatus.SUCCEEDED:
                self.progress.complete()
                return state.artifact
            if state.status is JobStatus.FAILED:
                raise state.error

            message = "Generating" if state.status is JobStatus.RUNNING else "Waiting in queue"
            if kind is JobKind.IMAGE:
                self.progress.update_attempts(attempts, self.image_max_attempts, message)
                if attempts >= self.image_max_attempts:
                    raise GenerationTimeoutError("Generation timed out")
            else:
                self.progress.update_video(message)
            await self.sleep(interval)

    async def run(self, graph: dict, kind: JobKind) -> ArtifactResult:
        """Submit a graph and wait for its artifact."""
        handle = await self.submit(graph)
        return await self.wait(handle, kind)

    async def fetch(self, artifact: ArtifactResult) -> list[str]:
        """Download an artifact and return its files as data URLs, in order."""
        if isinstance(artifact, FrameSequenceArtifact):
            refs = artifact.refs
        else:
            refs = (artifact.ref,)
        urls = []
        for ref in refs:
            urls.append(
                await self.transport.fetch_data_url(self.address, ref.filename, ref.subfolder, ref.kind)
            )
        return urls
