import asyncio

import pytest

from lyricvision.errors import ClipSequenceError, EmptyInputError, GenerationError
from lyricvision.media import parse_data_url, to_data_url
from lyricvision.settings import GenerationSettings
from lyricvision.splitter import LongClipSplitter, plan_clips

SETTINGS = GenerationSettings(frame_count=16, frame_rate=8)


class RecordingSource:
    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    async def generate_video(self, image_ref, prompt, seed, settings):
        self.calls.append((image_ref, seed, settings.frame_count))
        if len(self.calls) == self.fail_on:
            raise GenerationError("backend exploded")
        return to_data_url(f"clip-{len(self.calls)}".encode(), "video/mp4")


def test_twelve_seconds_at_two_seconds_per_clip_is_six_clips():
    plan = plan_clips(12.0, SETTINGS)

    assert plan.clip_count == 6
    assert plan.per_clip_duration == pytest.approx(2.0)
    assert plan.adjusted_frame_count == 16


def test_uneven_duration_is_split_into_equal_clips():
    plan = plan_clips(5.0, SETTINGS)

    assert plan.clip_count == 3
    assert plan.per_clip_duration == pytest.approx(5.0 / 3)
    assert plan.adjusted_frame_count == 13


def test_short_request_is_one_clip():
    plan = plan_clips(1.5, SETTINGS)

    assert (plan.clip_count, plan.adjusted_frame_count) == (1, 12)


def test_non_positive_duration_is_rejected():
    with pytest.raises(EmptyInputError):
        plan_clips(0, SETTINGS)


def test_each_clip_is_seeded_by_the_previous_last_frame(fake_engine):
    source = RecordingSource()
    splitter = LongClipSplitter(source, fake_engine)

    clips = asyncio.run(splitter.generate("data:image/png;base64,AAAA", "drift", 6.0, SETTINGS, seed=10, scene_index=2))

    assert [parse_data_url(clip.ref)[0] for clip in clips] == [b"clip-1", b"clip-2", b"clip-3"]
    assert all(clip.scene_index == 2 for clip in clips)
    assert [seed for _, seed, _ in source.calls] == [10, 11, 12]
    assert [frames for _, _, frames in source.calls] == [16, 16, 16]
    assert source.calls[0][0] == "data:image/png;base64,AAAA"
    assert parse_data_url(source.calls[1][0]) == (b"last-frame-of:clip-1", "image/png")
    assert parse_data_url(source.calls[2][0]) == (b"last-frame-of:clip-2", "image/png")
    # No frame is needed after the final clip
    assert fake_engine.frames_from == [b"clip-1", b"clip-2"]


def test_failure_reports_clip_index_and_completed_clips(fake_engine):
    splitter = LongClipSplitter(RecordingSource(fail_on=3), fake_engine)

    with pytest.raises(ClipSequenceError) as excinfo:
        asyncio.run(splitter.generate("data:image/png;base64,AAAA", "drift", 8.0, SETTINGS, seed=0))

    assert excinfo.value.clip_index == 3
    assert len(excinfo.value.completed) == 2
    assert str(excinfo.value).startswith("Clip 3/4 failed")
