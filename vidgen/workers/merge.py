"""
Merge Worker
Joins completed clips in order, with an optional crossfade.
"""

from typing import List

from vidgen.core.exceptions import FileSystemError, ValidationError
from vidgen.models import Clip, Job
from vidgen.services.storage import FileType
from vidgen.workers.base import BaseWorker, JobResult


def clip_paths(clips: List[Clip]) -> List[str]:
    paths = []
    for clip in clips:
        if not clip.file_path:
            raise FileSystemError(f"Clip {clip.id} has no file path")
        paths.append(clip.file_path)
    return paths


class MergeWorker(BaseWorker):
    TASK_NAME = "merge"

    async def execute(self, job: Job) -> JobResult:
        options = job.settings or {}
        transition = options.get("transition", "none")
        transition_duration = options.get("transition_duration", 0.5)
        clip_ids = job.input_clip_ids or []

        self.log(f"Started merge job with {len(clip_ids)} clips")
        await self.reporter.report(5, "Starting merge...")
        project = self.store.get_project(job.project_id)

        clips = self.store.get_clips(clip_ids)
        if not clips:
            raise ValidationError("No completed clips found to merge")
        if len(clips) != len(clip_ids):
            self.log(f"Some clips were not found or not completed. Found {len(clips)}/{len(clip_ids)}", "warn")

        await self.reporter.report(10, "Validating clips...")
        inputs = clip_paths(clips)

        await self.reporter.report(20, "Preparing output...")
        storage = self.ctx.storage
        output_name = storage.file_name(project.project_name, FileType.MERGED, 1, job_id=self.job_id)
        output_path = storage.path_by_id(job.project_id, "merged") / output_name
        self.log(f"Output path: {output_path}")
        self.checkpoint()

        await self.reporter.report(30, "Merging videos...")
        await self.ctx.media.merge(
            inputs,
            output_path,
            transition=transition,
            transition_duration=transition_duration,
            on_progress=self.reporter.band(30, 90),
        )
        self.log("Videos merged successfully")

        await self.reporter.report(90, "Getting video info...")
        info = await self.ctx.media.probe(output_path)
        await self.reporter.report(95, "Updating database...")

        return JobResult(
            output_path=str(output_path),
            output_file_name=output_name,
            settings_update={
                "output_path": str(output_path),
                "duration": info.duration,
                "frame_count": info.frame_count,
            },
            message=f"Merge completed. Duration: {info.duration:.2f}s, Frames: {info.frame_count}",
            data={"output_path": str(output_path), "duration": info.duration, "frame_count": info.frame_count},
        )
