from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, Literal, Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from content_hub.core.errors import InputError
from content_hub.db.models import VariantType

Fit = Literal["cover", "inside"]

CONTENT_TYPES = {"jpeg": "image/jpeg", "webp": "image/webp"}

# Pillow modes mapped onto the colour-space names the asset viewer displays.
COLOR_SPACES = {
    "1": "b-w",
    "L": "b-w",
    "LA": "b-w",
    "I;16": "grey16",
    "I": "grey16",
    "P": "srgb",
    "RGB": "srgb",
    "RGBA": "srgb",
    "CMYK": "cmyk",
    "YCbCr": "srgb",
    "LAB": "lab",
    "HSV": "hsv",
}
BIT_DEPTHS = {"1": 1, "L": 8, "LA": 8, "P": 8, "RGB": 8, "RGBA": 8, "CMYK": 8, "YCbCr": 8, "I;16": 16, "I": 32, "F": 32}


@dataclass(frozen=True, slots=True)
class VariantSpec:
    variant_type: VariantType
    width: int
    height: int
    fit: Fit
    quality: int
    format: str = "jpeg"

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES[self.format]


# Every box is 16:9 to match the card and viewer layout of the asset browser.
IMAGE_VARIANTS: Tuple[VariantSpec, ...] = (
    VariantSpec(VariantType.THUMBNAIL, 400, 225, "cover", 80),
    VariantSpec(VariantType.PREVIEW, 1200, 675, "inside", 85),
    VariantSpec(VariantType.WEB_OPTIMIZED, 1920, 1080, "inside", 85, format="webp"),
    VariantSpec(VariantType.MOBILE, 800, 450, "cover", 80),
)


@dataclass(slots=True)
class RenderedVariant:
    spec: VariantSpec
    body: bytes
    width: int
    height: int

    @property
    def format(self) -> str:
        return self.spec.format

    @property
    def file_size(self) -> int:
        return len(self.body)


@dataclass(slots=True)
class ImageMetadata:
    width: int
    height: int
    format: Optional[str]
    color_space: Optional[str]
    dpi: Optional[int]
    bit_depth: Optional[int]
    channels: int
    has_alpha: bool
    orientation: Optional[int]

    def custom_fields(self) -> Dict[str, Any]:
        return {
            "format": self.format,
            "channels": self.channels,
            "hasAlpha": self.has_alpha,
            "orientation": self.orientation,
        }


def configure_decoder(max_pixels: int) -> None:
    Image.MAX_IMAGE_PIXELS = max_pixels


def decode_image(data: bytes) -> Image.Image:
    if not data:
        raise InputError("Unable to decode image: empty file")
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except Image.DecompressionBombError as exc:
        raise InputError(f"Image exceeds the decoder pixel limit: {exc}") from exc
    except (UnidentifiedImageError, OSError, EOFError, ValueError, SyntaxError) as exc:
        raise InputError(f"Unable to decode image: {exc}") from exc
    return image


def extract_image_metadata(image: Image.Image) -> ImageMetadata:
    bands = image.getbands()
    dpi = image.info.get("dpi")
    orientation = image.getexif().get(0x0112)
    return ImageMetadata(
        width=image.width,
        height=image.height,
        format=image.format.lower() if image.format else None,
        color_space=COLOR_SPACES.get(image.mode, image.mode.lower()),
        dpi=int(round(float(dpi[0]))) if dpi else None,
        bit_depth=BIT_DEPTHS.get(image.mode),
        channels=len(bands),
        has_alpha="A" in bands or "transparency" in image.info,
        orientation=int(orientation) if orientation else None,
    )


def inside_size(width: int, height: int, box_width: int, box_height: int) -> Tuple[int, int]:
    """Largest size within the box that keeps the aspect ratio; never upscales."""
    scale = min(box_width / width, box_height / height, 1.0)
    return (
        max(1, min(box_width, int(round(width * scale)))),
        max(1, min(box_height, int(round(height * scale)))),
    )


def prepare_source(image: Image.Image) -> Image.Image:
    """Apply EXIF orientation and bring the pixels into a mode that resamples well."""
    try:
        oriented = ImageOps.exif_transpose(image)
        if oriented.mode in ("RGB", "RGBA", "L"):
            return oriented
        if oriented.mode in ("LA", "PA") or "transparency" in oriented.info:
            return oriented.convert("RGBA")
        return oriented.convert("RGB")
    except (OSError, ValueError) as exc:
        raise InputError(f"Unsupported pixel format {image.mode}: {exc}") from exc


def render_variant(source: Image.Image, spec: VariantSpec) -> RenderedVariant:
    """Resize ``source`` according to ``spec`` and encode it.

    ``cover`` crops around the centre to fill the box exactly; ``inside`` scales down
    to fit the box, keeping the aspect ratio.
    """
    if spec.fit == "cover":
        resized = ImageOps.fit(source, (spec.width, spec.height), method=Image.Resampling.LANCZOS)
    else:
        size = inside_size(source.width, source.height, spec.width, spec.height)
        resized = source.resize(size, Image.Resampling.LANCZOS) if size != source.size else source.copy()

    encoded = _encodable(resized, spec.format)
    buffer = BytesIO()
    try:
        if spec.format == "webp":
            encoded.save(buffer, format="WEBP", quality=spec.quality, method=4)
        else:
            encoded.save(buffer, format="JPEG", quality=spec.quality, optimize=True, progressive=True)
    except (OSError, ValueError) as exc:
        raise InputError(f"Failed to encode {spec.variant_type.value} variant: {exc}") from exc
    return RenderedVariant(spec=spec, body=buffer.getvalue(), width=encoded.width, height=encoded.height)


def _encodable(image: Image.Image, fmt: str) -> Image.Image:
    if fmt == "webp":
        return image if image.mode in ("RGB", "RGBA") else image.convert("RGB")
    if image.mode == "RGBA":
        background = Image.new("RGB", image.size, (255, 255, 255))
        background.paste(image, mask=image.getchannel("A"))
        return background
    return image if image.mode in ("RGB", "L") else image.convert("RGB")


__all__ = [
    "VariantSpec",
    "IMAGE_VARIANTS",
    "RenderedVariant",
    "ImageMetadata",
    "configure_decoder",
    "decode_image",
    "extract_image_metadata",
    "inside_size",
    "prepare_source",
    "render_variant",
]
