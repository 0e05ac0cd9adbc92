"""Server-side text watermarking with Pillow."""

import io
from dataclasses import dataclass, replace
from typing import Literal

from loguru import logger
from PIL import Image, ImageColor, ImageDraw, ImageFilter, ImageFont

Position = Literal["bottom-right", "bottom-left", "top-right", "top-left", "center"]

MIN_FONT_SIZE = 12
MAX_FONT_SIZE = 32
REFERENCE_SIZE = 800


@dataclass(frozen=True)
class WatermarkOptions:
    text: str = "Made using EventCraftAI.com"
    font_size: int = 16
    color: str = "#ffffff"
    opacity: float = 0.7
    position: Position = "bottom-right"
    padding: int = 20


DEFAULT_WATERMARK = WatermarkOptions()


def scaled_font_size(width: int, height: int, base_size: int = 16) -> int:
    """Font grows with the shorter side, relative to an 800px image."""
    size = round(base_size * min(width, height) / REFERENCE_SIZE)
    return max(MIN_FONT_SIZE, min(MAX_FONT_SIZE, size))


def get_watermark_config(width: int, height: int, text: str | None = None) -> WatermarkOptions:
    """Watermark options for a given image size with the font kept between 12 and 24."""
    scale = min(width, height) / REFERENCE_SIZE
    font_size = round(max(12, min(24, DEFAULT_WATERMARK.font_size * scale)))
    return replace(DEFAULT_WATERMARK, text=text or DEFAULT_WATERMARK.text, font_size=font_size)


def text_position(
    image_size: tuple[int, int],
    text_size: tuple[int, int],
    position: Position,
    padding: int,
) -> tuple[int, int]:
    """Top-left corner of the text box."""
    width, height = image_size
    text_width, text_height = text_size
    match position:
        case "bottom-left":
            return padding, height - text_height - padding
        case "top-right":
            return width - text_width - padding, padding
        case "top-left":
            return padding, padding
        case "center":
            return (width - text_width) // 2, (height - text_height) // 2
    return width - text_width - padding, height - text_height - padding


def _load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    try:
        return ImageFont.truetype("DejaVuSans.ttf", size)
    except OSError:
        return ImageFont.load_default(size=size)


def add_watermark(data: bytes, options: WatermarkOptions | None = None) -> bytes:
    """Embed the watermark text and return PNG bytes.

    The original bytes come back unchanged when the image cannot be processed.
    """
    options = options or DEFAULT_WATERMARK
    try:
        with Image.open(io.BytesIO(data)) as source:
            image = source.convert("RGBA")

        font_size = scaled_font_size(image.width, image.height, options.font_size)
        font = _load_font(font_size)

        overlay = Image.new("RGBA", image.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)
        left, top, right, bottom = draw.textbbox((0, 0), options.text, font=font)
        x, y = text_position(
            image.size, (right - left, bottom - top), options.position, options.padding
        )
        x, y = x - left, y - top

        alpha = round(255 * max(0.0, min(1.0, options.opacity)))

        shadow = Image.new("RGBA", image.size, (0, 0, 0, 0))
        ImageDraw.Draw(shadow).text((x + 1, y + 1), options.text, font=font, fill=(0, 0, 0, alpha // 2))
        shadow = shadow.filter(ImageFilter.GaussianBlur(1))

        red, green, blue = ImageColor.getrgb(options.color)[:3]
        draw.text((x, y), options.text, font=font, fill=(red, green, blue, alpha))

        composed = Image.alpha_composite(Image.alpha_composite(image, shadow), overlay)
        output = io.BytesIO()
        composed.save(output, format="PNG")
    except Exception as e:  # noqa: BLE001
        logger.warning(f"Watermarking failed, keeping original image: {e}")
        return data

    return output.getvalue()
