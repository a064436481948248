from __future__ import annotations

from content_hub.core.jobs import JobType, ProcessingPayload
from content_hub.core.storage import derive_variant_keys
from content_hub.db.models import VariantType
from content_hub.media.raster import (
    IMAGE_VARIANTS,
    configure_decoder,
    decode_image,
    extract_image_metadata,
    prepare_source,
    render_variant,
)

from .base import Pipeline, StepResult
from .context import PipelineOutcome, VariantRecord
from .results import Err


class ImagePipeline(Pipeline):
    """Decode the original once and derive the four 16:9 renditions from it.

    Dimensions are saved as soon as the image decodes. A failing variant stops the
    run; variants stored before it stay in place until the asset is reprocessed.
    """

    job_type = JobType.PROCESS_IMAGE

    async def process(self, payload: ProcessingPayload) -> StepResult[PipelineOutcome]:
        configure_decoder(self.settings.image_max_pixels)
        original = await self.fetch_original(payload.file_key)
        if isinstance(original, Err):
            return original

        decoded = await self.call(decode_image, original.value)
        if isinstance(decoded, Err):
            return decoded
        image = decoded.value
        try:
            metadata = extract_image_metadata(image)
            await self.record_media_facts(payload.asset_id, width=metadata.width, height=metadata.height)

            source = await self.call(prepare_source, image)
            if isinstance(source, Err):
                return source

            keys = derive_variant_keys(payload.file_key)
            variants: list[VariantRecord] = []
            for spec in IMAGE_VARIANTS:
                rendered = await self.call(render_variant, source.value, spec)
                if isinstance(rendered, Err):
                    return rendered
                stored = await self.store_variant(
                    payload.asset_id,
                    spec.variant_type,
                    keys[spec.variant_type],
                    rendered.value.body,
                    content_type=spec.content_type,
                    width=rendered.value.width,
                    height=rendered.value.height,
                    format=spec.format,
                    quality=spec.quality,
                )
                if isinstance(stored, Err):
                    return stored
                variants.append(stored.value)
        finally:
            image.close()

        await self.repository.create_metadata(
            payload.asset_id,
            color_space=metadata.color_space,
            dpi=metadata.dpi,
            bit_depth=metadata.bit_depth,
            custom_fields=metadata.custom_fields(),
        )
        return await self.finish(
            payload,
            variants,
            thumbnail_key=keys[VariantType.THUMBNAIL],
            preview_key=keys[VariantType.PREVIEW],
            width=metadata.width,
            height=metadata.height,
        )


__all__ = ["ImagePipeline"]
