from __future__ import annotations

from content_hub.core.jobs import JobType

from .audio import AudioPipeline
from .base import Pipeline
from .document import DocumentPipeline
from .image import ImagePipeline
from .video import VideoPipeline

PIPELINES: dict[JobType, type[Pipeline]] = {
    JobType.PROCESS_IMAGE: ImagePipeline,
    JobType.PROCESS_VIDEO: VideoPipeline,
    JobType.PROCESS_AUDIO: AudioPipeline,
    JobType.PROCESS_DOCUMENT: DocumentPipeline,
}


def pipeline_for(job_type: JobType) -> type[Pipeline]:
    return PIPELINES[job_type]


__all__ = [
    "PIPELINES",
    "Pipeline",
    "ImagePipeline",
    "VideoPipeline",
    "AudioPipeline",
    "DocumentPipeline",
    "pipeline_for",
]
