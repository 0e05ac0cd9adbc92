"""Image processing: WebP conversion, validation, watermarking, naming and slicing."""

from .naming import (
    ImageKeyMetadata,
    generate_enhanced_image_key,
    generate_prompt_hash,
    get_file_extension,
    parse_enhanced_image_key,
)
from .slicer import calculate_slice_data, slice_long_image
from .validation import WebPQualityCriteria, WebPValidationResult, validate_webp_conversion
from .watermark import WatermarkOptions, add_watermark
from .webp import WEBP_PRESETS, WebPOptions, convert_to_webp, should_convert_to_webp

__all__ = [
    "ImageKeyMetadata",
    "WEBP_PRESETS",
    "WatermarkOptions",
    "WebPOptions",
    "WebPQualityCriteria",
    "WebPValidationResult",
    "add_watermark",
    "calculate_slice_data",
    "convert_to_webp",
    "generate_enhanced_image_key",
    "generate_prompt_hash",
    "get_file_extension",
    "parse_enhanced_image_key",
    "should_convert_to_webp",
    "slice_long_image",
    "validate_webp_conversion",
]
