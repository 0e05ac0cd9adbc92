"""WebP conversion with Pillow."""

import io
from dataclasses import dataclass
from typing import Any, Literal

from PIL import Image, ImageOps, UnidentifiedImageError

from ..exceptions import ValidationError

Preset = Literal["low", "medium", "high"]
UseCase = Literal["thumbnail", "preview", "full", "high-quality"]


@dataclass(frozen=True)
class WebPOptions:
    quality: int = 80
    lossless: bool = False
    method: int = 6


WEBP_PRESETS: dict[str, WebPOptions] = {
    "low": WebPOptions(quality=60),
    "medium": WebPOptions(quality=80),
    "high": WebPOptions(quality=95),
}

CONVERTIBLE_FORMATS = frozenset({"PNG", "JPEG", "WEBP", "GIF", "BMP", "TIFF"})


@dataclass
class ConversionResult:
    data: bytes
    original_size: int
    webp_size: int
    width: int
    height: int

    @property
    def compression_ratio(self) -> float:
        return calculate_compression_ratio(self.original_size, self.webp_size)


def calculate_compression_ratio(original_size: int, webp_size: int) -> float:
    """Percentage saved; negative when the output grew."""
    if original_size <= 0:
        return 0.0
    return round((original_size - webp_size) / original_size * 100, 2)


def _open(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError(f"Unreadable image data: {e}") from e
    return image


def _has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info)


def _prepare(image: Image.Image) -> Image.Image:
    if image.mode in ("RGB", "RGBA"):
        return image
    return image.convert("RGBA" if _has_alpha(image) else "RGB")


def convert_to_webp(data: bytes, options: WebPOptions | None = None) -> ConversionResult:
    """Re-encode an image as WebP."""
    options = options or WEBP_PRESETS["medium"]
    with _open(data) as image:
        prepared = _prepare(image)
        output = io.BytesIO()
        prepared.save(
            output,
            format="WEBP",
            quality=options.quality,
            lossless=options.lossless,
            method=options.method,
        )
        width, height = prepared.size

    webp = output.getvalue()
    return ConversionResult(
        data=webp,
        original_size=len(data),
        webp_size=len(webp),
        width=width,
        height=height,
    )


def convert_with_preset(data: bytes, preset: Preset = "medium") -> ConversionResult:
    return convert_to_webp(data, WEBP_PRESETS[preset])


def create_webp_thumbnail(data: bytes, size: int = 300, preset: Preset = "low") -> bytes:
    """Square cover-cropped thumbnail."""
    with _open(data) as image:
        thumbnail = ImageOps.fit(_prepare(image), (size, size), Image.Resampling.LANCZOS)
        output = io.BytesIO()
        options = WEBP_PRESETS[preset]
        thumbnail.save(output, format="WEBP", quality=options.quality, method=options.method)
    return output.getvalue()


def get_image_metadata(data: bytes) -> dict[str, Any]:
    with _open(data) as image:
        return {
            "format": (image.format or "").lower(),
            "width": image.width,
            "height": image.height,
            "mode": image.mode,
            "has_alpha": _has_alpha(image),
            "size": len(data),
        }


def can_convert_to_webp(data: bytes) -> bool:
    try:
        with _open(data) as image:
            return (image.format or "").upper() in CONVERTIBLE_FORMATS
    except ValidationError:
        return False


def should_convert_to_webp(content_type: str) -> bool:
    """Animated GIFs and images that are already WebP stay as they are."""
    content_type = content_type.lower()
    return content_type.startswith("image/") and content_type not in ("image/webp", "image/gif")


def get_optimal_preset(use_case: UseCase) -> Preset:
    match use_case:
        case "thumbnail":
            return "low"
        case "high-quality":
            return "high"
    return "medium"


def analyze_webp_benefits(data: bytes) -> dict[str, Any]:
    """Estimate compression gains and suggest a preset without converting."""
    if not can_convert_to_webp(data):
        return {
            "can_convert": False,
            "estimated_compression_ratio": 0,
            "recommended_preset": "medium",
            "benefits": [],
            "warnings": ["Image format not suitable for WebP conversion"],
        }

    metadata = get_image_metadata(data)
    benefits: list[str] = []
    warnings: list[str] = []
    estimate = 25

    if metadata["format"] == "png" and metadata["has_alpha"]:
        estimate = 30
        benefits.append("PNG with transparency will benefit from WebP compression")
    elif metadata["format"] == "jpeg":
        estimate = 20
        warnings.append("JPEG images may see smaller compression benefits")
    elif metadata["format"] == "png":
        estimate = 35
        benefits.append("PNG images typically see excellent WebP compression")

    if metadata["size"] > 1024 * 1024:
        estimate += 5
        benefits.append("Large image will benefit significantly from WebP compression")

    preset: Preset = "medium"
    megapixels = metadata["width"] * metadata["height"] / 1_000_000
    if megapixels > 10:
        preset = "high"
        benefits.append("High-resolution image recommended for high-quality preset")
    elif megapixels < 1:
        preset = "low"
        benefits.append("Small image suitable for low-quality preset")

    return {
        "can_convert": True,
        "estimated_compression_ratio": estimate,
        "recommended_preset": preset,
        "benefits": benefits,
        "warnings": warnings,
    }
