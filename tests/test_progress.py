import json

import pytest

from vidgen.schemas.progress import EventType, ProgressEvent
from vidgen.services.inference_client import remap_step
from vidgen.services.progress import ProgressReporter, channel_name, parse_event, remap, stage_bands


@pytest.fixture
def processing_job(store, project):
    job_id = store.create_job(project.id, "merge")
    store.mark_processing(job_id)
    return job_id


def test_channel_name():
    assert channel_name("abc") == "job:abc:progress"


@pytest.mark.parametrize(
    "stages,expected",
    [
        (["encode"], [("encode", 10, 90)]),
        (["merge", "encode"], [("merge", 10, 50), ("encode", 50, 90)]),
        (
            ["merge", "upscale", "interpolate", "encode"],
            [("merge", 10, 30), ("upscale", 30, 50), ("interpolate", 50, 70), ("encode", 70, 90)],
        ),
    ],
)
def test_stage_bands_split_evenly(stages, expected):
    assert stage_bands(stages) == expected


def test_stage_bands_are_contiguous_for_three_stages():
    bands = stage_bands(["merge", "upscale", "encode"])
    assert bands[0][1] == 10 and bands[-1][2] == 90
    for (_, _, high), (_, low, _) in zip(bands, bands[1:]):
        assert high == low


def test_remap():
    assert remap(0, 30, 90) == 30
    assert remap(50, 30, 90) == 60
    assert remap(150, 30, 90) == 90


def test_remap_step():
    assert remap_step(0, 20) == 15
    assert remap_step(10, 20) == 50
    assert remap_step(20, 20) == 85
    assert remap_step(3, 0) == 15


async def test_percent_never_decreases(store, channel, processing_job):
    reporter = ProgressReporter(processing_job, store, channel)
    await reporter.report(40, "forty")
    await reporter.report(20, "twenty")
    await reporter.report(120, "too much")

    percents = [event.percent for event in channel.for_job(processing_job)]
    assert percents == [40, 40, 99]
    assert store.get_job(processing_job).progress_percent == 99


async def test_exactly_one_terminal_event(store, channel, processing_job):
    reporter = ProgressReporter(processing_job, store, channel)
    await reporter.report(50)
    await reporter.complete("done", data={"output_path": "/tmp/x.mp4"})
    await reporter.fail("late failure")
    await reporter.complete("again")

    events = channel.for_job(processing_job)
    terminal = [event for event in events if event.is_terminal]
    assert len(terminal) == 1
    assert terminal[0].type == EventType.COMPLETED
    assert terminal[0].percent == 100
    assert terminal[0].data == {"output_path": "/tmp/x.mp4"}


async def test_message_keeps_percent(store, channel, processing_job):
    reporter = ProgressReporter(processing_job, store, channel)
    await reporter.report(30)
    await reporter.message("Executing node: 4", step="4")
    event = channel.for_job(processing_job)[-1]
    assert (event.percent, event.step) == (30, "4")


async def test_band_callback(store, channel, processing_job):
    reporter = ProgressReporter(processing_job, store, channel)
    on_progress = reporter.band(30, 90, stage="merge")
    await on_progress(50, "halfway")
    event = channel.for_job(processing_job)[-1]
    assert (event.percent, event.stage, event.message) == (60, "merge", "halfway")


def test_event_json_drops_empty_fields():
    payload = json.loads(ProgressEvent(type="progress", percent=5, segment=2, total_segments=18).to_json())
    assert payload["segment"] == 2
    assert "stage" not in payload and "message" not in payload
    assert "timestamp" in payload


def test_parse_event():
    event = parse_event('{"type": "error", "message": "boom"}')
    assert event.is_terminal
    assert parse_event("not json") is None
