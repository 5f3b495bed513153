from pathlib import Path

import pytest

from lyricvision.media import guess_content_type, to_data_url
from lyricvision.transport import Action


async def _no_sleep(_seconds):
    return None


class FakeJobServer:
    """In-memory stand-in for JobTransport.

    Every queued job is reported as running for ``running_polls`` queue
    polls, then its history shows the output of whichever save node the
    graph ends in. Jobs listed in ``failures`` report the given error text.
    """

    def __init__(self, running_polls=1, failures=None):
        self.running_polls = running_polls
        self.failures = dict(failures or {})
        self.graphs = []
        self.polls = {}
        self.uploads = []
        self.calls = []

    async def submit(self, action, address, payload=None):
        payload = payload or {}
        self.calls.append(action)
        if action == Action.QUEUE_PROMPT:
            self.graphs.append(payload["prompt"])
            job_id = f"job-{len(self.graphs)}"
            self.polls[job_id] = 0
            return {"job_id": job_id, "number": len(self.graphs)}
        if action == Action.GET_QUEUE:
            running = [job_id for job_id, seen in self.polls.items() if seen < self.running_polls]
            for job_id in running:
                self.polls[job_id] += 1
            return {"running": running, "pending": []}
        if action == Action.GET_HISTORY:
            return self.history(payload["job_id"])
        raise AssertionError(f"unexpected action {action}")

    def history(self, job_id):
        if job_id in self.failures:
            return {
                "outputs": {},
                "status": {
                    "status_str": "error",
                    "completed": False,
                    "messages": [
                        ["execution_start", {"prompt_id": job_id}],
                        ["execution_error", {"exception_message": self.failures[job_id], "node_type": "KSampler"}],
                    ],
                },
            }
        graph = self.graphs[int(job_id.split("-")[1]) - 1]
        classes = {node["class_type"] for node in graph.values()}
        if "VHS_VideoCombine" in classes:
            outputs = {"14": {"gifs": [{"filename": f"{job_id}.mp4", "subfolder": "", "type": "output"}]}}
        else:
            outputs = {"9": {"images": [{"filename": f"{job_id}.png", "subfolder": "", "type": "output"}]}}
        return {"outputs": outputs, "status": {"status_str": "success", "completed": True, "messages": []}}

    async def fetch_data_url(self, address, filename, subfolder="", kind="output"):
        return to_data_url(filename.encode(), guess_content_type(filename))

    async def upload_image(self, address, image_ref, filename):
        self.uploads.append((filename, image_ref))
        return filename


class FakeEngine:
    """FFmpegEngine double: concat joins the input files with ``|``."""

    def __init__(self, streams=None):
        self.streams = streams or {}
        self.loaded = False
        self.commands = []
        self.frames_from = []

    def load(self):
        self.loaded = True

    def run(self, args):
        self.commands.append(list(args))
        manifest = Path(args[args.index("-i") + 1])
        names = [line.split("'")[1] for line in manifest.read_text().splitlines() if line]
        Path(args[-1]).write_bytes(b"|".join((manifest.parent / name).read_bytes() for name in names))

    def probe_video_stream(self, path):
        return self.streams.get(Path(path).name, {"codec_name": "h264", "width": 512, "height": 512, "pix_fmt": "yuv420p"})

    def extract_last_frame(self, video_bytes):
        self.frames_from.append(video_bytes)
        return b"last-frame-of:" + video_bytes

    def encode_frames(self, frames, frame_rate, crf=19):
        return b"encoded:" + b",".join(frames)


@pytest.fixture
def fake_server():
    return FakeJobServer()


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def no_sleep():
    return _no_sleep
