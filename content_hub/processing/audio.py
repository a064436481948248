from __future__ import annotations

from pathlib import Path

from content_hub.core.errors import InputError
from content_hub.core.jobs import JobType, ProcessingPayload
from content_hub.core.storage import derive_variant_keys
from content_hub.db.models import VariantType
from content_hub.media import ffmpeg
from content_hub.media.probe import parse_probe, run_ffprobe

from .base import Pipeline, StepResult
from .context import PipelineOutcome
from .results import Err
from .scratch import job_scratch_dir


class AudioPipeline(Pipeline):
    """Short AAC preview for audio assets. Audio has no thumbnail."""

    job_type = JobType.PROCESS_AUDIO

    async def process(self, payload: ProcessingPayload) -> StepResult[PipelineOutcome]:
        url = await self.retrieval_url(payload.file_key)
        if isinstance(url, Err):
            return url
        source = ffmpeg.media_source(url.value)

        raw = await self.call(run_ffprobe, source, timeout_s=self.settings.ffprobe_timeout_s)
        if isinstance(raw, Err):
            return raw
        probe = parse_probe(raw.value)
        if probe.audio_codec is None:
            return Err(InputError("No audio stream found in source"))
        if probe.duration_s <= 0:
            return Err(InputError("Unable to determine audio duration"))
        await self.record_media_facts(payload.asset_id, duration=probe.duration_s)

        profile = ffmpeg.AUDIO_PREVIEW
        duration = min(probe.duration_s, self.settings.preview_max_duration_s)
        key = derive_variant_keys(payload.file_key)[VariantType.PREVIEW]
        with job_scratch_dir(Path(self.settings.scratch_root), self.context.job_id) as scratch:
            output = await self.call(
                ffmpeg.transcode_preview,
                source,
                scratch / f"preview.{profile.format}",
                duration_s=duration,
                profile=profile,
                on_progress=self.context.report_progress,
                timeout_s=self.settings.ffmpeg_timeout_s,
            )
            if isinstance(output, Err):
                return output
            body = await self.call(output.value.read_bytes)
            if isinstance(body, Err):
                return body
            preview = await self.store_variant(
                payload.asset_id,
                VariantType.PREVIEW,
                key,
                body.value,
                content_type=profile.content_type,
                width=0,
                height=0,
                format=profile.format,
                duration=duration,
            )
            if isinstance(preview, Err):
                return preview

        await self.repository.create_metadata(
            payload.asset_id,
            bit_rate=probe.audio_bit_rate or probe.bit_rate,
            codec=probe.audio_codec,
            custom_fields={
                "container": probe.container,
                "sampleRate": probe.sample_rate_hz,
                "channels": probe.channels,
            },
        )
        return await self.finish(
            payload,
            [preview.value],
            thumbnail_key=None,
            preview_key=preview.value.file_key,
            duration=probe.duration_s,
        )


__all__ = ["AudioPipeline"]
