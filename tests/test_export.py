import pytest

from vidgen.core.exceptions import ExecutionError, ValidationError
from vidgen.models import JobStatus, JobType
from vidgen.schemas.progress import EventType
from vidgen.workers.export import ExportWorker, output_extension, plan_stages


@pytest.mark.parametrize(
    "options,clip_count,expected",
    [
        ({}, 1, ["encode"]),
        ({"merge": {"enabled": True}}, 1, ["encode"]),
        ({"merge": {"enabled": True}}, 3, ["merge", "encode"]),
        (
            {"merge": {"enabled": True}, "upscale": {"enabled": True}, "interpolate": {"enabled": True}},
            2,
            ["merge", "upscale", "interpolate", "encode"],
        ),
        ({"interpolate": {"enabled": True}, "upscale": {"enabled": False}}, 1, ["interpolate", "encode"]),
    ],
)
def test_plan_stages(options, clip_count, expected):
    assert plan_stages(options, clip_count) == expected


def test_output_extension():
    assert output_extension({"codec": "vp9", "format": "mp4"}) == "webm"
    assert output_extension({"codec": "h264", "format": "mov"}) == "mov"
    assert output_extension({}) == "mp4"


def export_job(store, project, clips, **options):
    return store.create_job(project.id, JobType.EXPORT, settings=options, input_clip_ids=[c.id for c in clips])


async def test_full_export(context, store, channel, media, storage, project, make_clip):
    clips = [make_clip(order_index=i) for i in (1, 2)]
    job_id = export_job(
        store,
        project,
        clips,
        merge={"enabled": True, "transition": "fade", "transition_duration": 0.5},
        upscale={"enabled": True, "scale": 2},
        encode={"codec": "vp9", "quality": "high"},
    )

    await ExportWorker(context).run(job_id)

    assert [n for n in media.names() if n in ("concat", "merge", "scale", "interpolate", "encode")] == [
        "merge",
        "scale",
        "encode",
    ]
    job = store.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.output_file_name.startswith("testProject_export_")
    assert job.output_file_name.endswith(".webm")
    assert job.settings["stages"] == ["merge", "upscale", "encode"]
    assert job.settings["thumbnail_path"].endswith("_thumb.jpg")
    assert list((storage.base_path / "temp").iterdir()) == []

    events = channel.for_job(job_id)
    stages_seen = [event.stage for event in events if event.stage]
    assert stages_seen[0] == "merge"
    assert "upscale" in stages_seen and "encode" in stages_seen
    assert events[-1].type == EventType.COMPLETED and events[-1].stage == "done"
    percents = [event.percent for event in events]
    assert percents == sorted(percents)


async def test_concat_when_merge_disabled(context, store, media, project, make_clip):
    clips = [make_clip(order_index=i) for i in (1, 2, 3)]
    job_id = export_job(store, project, clips, encode={"codec": "h264", "quality": "draft"})

    await ExportWorker(context).run(job_id)

    concat = next(call for call in media.calls if call[0] == "concat")
    assert concat[1][0] == [c.file_path for c in clips]
    encode = next(call for call in media.calls if call[0] == "encode")
    assert encode[1][0] == concat[1][1]
    assert encode[2] == {"codec": "h264", "quality": "draft"}
    assert store.get_job(job_id).output_file_name.endswith(".mp4")


async def test_failed_stage_cleans_scratch(context, store, channel, media, storage, project, make_clip):
    clips = [make_clip(order_index=1)]
    media.fail_on.add("encode")
    job_id = export_job(store, project, clips, encode={"codec": "h265"})

    with pytest.raises(ExecutionError):
        await ExportWorker(context).run(job_id)

    assert store.get_status(job_id) == JobStatus.FAILED
    assert list((storage.base_path / "temp").iterdir()) == []
    assert channel.for_job(job_id)[-1].type == EventType.ERROR


async def test_thumbnail_failure_is_not_fatal(context, store, media, project, make_clip):
    clips = [make_clip(order_index=1)]
    media.fail_on.add("extract_thumbnail")
    job_id = export_job(store, project, clips)

    await ExportWorker(context).run(job_id)

    job = store.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.settings["thumbnail_path"] is None


async def test_unknown_codec(context, store, media, project, make_clip):
    job_id = export_job(store, project, [make_clip(order_index=1)], encode={"codec": "av1"})

    with pytest.raises(ValidationError):
        await ExportWorker(context).run(job_id)
    assert media.calls == []
