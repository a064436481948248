from __future__ import annotations

from pathlib import Path

from content_hub.core.errors import InputError
from content_hub.core.jobs import JobType, ProcessingPayload
from content_hub.core.storage import derive_variant_keys
from content_hub.db.models import VariantType
from content_hub.media import ffmpeg
from content_hub.media.probe import MediaProbe, parse_probe, run_ffprobe

from .base import Pipeline, StepResult
from .context import PipelineOutcome, VariantRecord
from .results import Err, Ok
from .scratch import job_scratch_dir

THUMBNAIL_SIZE = 300
THUMBNAIL_QUALITY = 80


class VideoPipeline(Pipeline):
    """Probe over the retrieval URL, then grab a thumbnail frame and cut a short preview.

    Intermediate files live in a per-job scratch directory that is removed on every
    exit path.
    """

    job_type = JobType.PROCESS_VIDEO

    async def probe(self, source: str) -> StepResult[MediaProbe]:
        raw = await self.call(run_ffprobe, source, timeout_s=self.settings.ffprobe_timeout_s)
        if isinstance(raw, Err):
            return raw
        probe = parse_probe(raw.value)
        if not probe.has_video:
            return Err(InputError("No video stream found in source"))
        if probe.duration_s <= 0:
            return Err(InputError("Unable to determine video duration"))
        return Ok(probe)

    async def process(self, payload: ProcessingPayload) -> StepResult[PipelineOutcome]:
        url = await self.retrieval_url(payload.file_key)
        if isinstance(url, Err):
            return url
        source = ffmpeg.media_source(url.value)

        probed = await self.probe(source)
        if isinstance(probed, Err):
            return probed
        probe = probed.value
        await self.record_media_facts(
            payload.asset_id, width=probe.width, height=probe.height, duration=probe.duration_s
        )

        keys = derive_variant_keys(payload.file_key)
        with job_scratch_dir(Path(self.settings.scratch_root), self.context.job_id) as scratch:
            thumbnail = await self._thumbnail(payload, source, probe, scratch, keys[VariantType.THUMBNAIL])
            if isinstance(thumbnail, Err):
                return thumbnail
            preview = await self._preview(payload, source, probe, scratch, keys[VariantType.PREVIEW])
            if isinstance(preview, Err):
                return preview

        await self.repository.create_metadata(
            payload.asset_id,
            frame_rate=probe.frame_rate,
            bit_rate=probe.bit_rate,
            codec=probe.codec,
            custom_fields={
                "container": probe.container,
                "audioCodec": probe.audio_codec,
                "resolution": probe.resolution,
            },
        )
        return await self.finish(
            payload,
            [thumbnail.value, preview.value],
            thumbnail_key=thumbnail.value.file_key,
            preview_key=preview.value.file_key,
            width=probe.width,
            height=probe.height,
            duration=probe.duration_s,
        )

    async def _thumbnail(
        self,
        payload: ProcessingPayload,
        source: str,
        probe: MediaProbe,
        scratch: Path,
        key: str,
    ) -> StepResult[VariantRecord]:
        # 10% in skips black intro frames while staying near the start.
        timestamp = probe.duration_s * self.settings.video_thumbnail_position
        frame = await self.call(
            ffmpeg.extract_frame,
            source,
            timestamp,
            scratch / "frame.jpg",
            timeout_s=self.settings.ffmpeg_timeout_s,
        )
        if isinstance(frame, Err):
            return frame
        encoded = await self.call(ffmpeg.square_thumbnail, frame.value, size=THUMBNAIL_SIZE, quality=THUMBNAIL_QUALITY)
        if isinstance(encoded, Err):
            return encoded
        body, width, height = encoded.value
        return await self.store_variant(
            payload.asset_id,
            VariantType.THUMBNAIL,
            key,
            body,
            content_type="image/jpeg",
            width=width,
            height=height,
            format="jpeg",
            quality=THUMBNAIL_QUALITY,
        )

    async def _preview(
        self,
        payload: ProcessingPayload,
        source: str,
        probe: MediaProbe,
        scratch: Path,
        key: str,
    ) -> StepResult[VariantRecord]:
        profile = ffmpeg.VIDEO_PREVIEW
        duration = min(probe.duration_s, self.settings.preview_max_duration_s)
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
        return await self.store_variant(
            payload.asset_id,
            VariantType.PREVIEW,
            key,
            body.value,
            content_type=profile.content_type,
            width=profile.width,
            height=profile.height,
            format=profile.format,
            duration=duration,
        )


__all__ = ["VideoPipeline", "THUMBNAIL_SIZE"]
