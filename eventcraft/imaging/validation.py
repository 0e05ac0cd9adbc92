"""Quality checks for WebP conversions."""

from dataclasses import dataclass, field
from typing import Any

from PIL import features

from ..exceptions import ValidationError
from .webp import calculate_compression_ratio, can_convert_to_webp, get_image_metadata


@dataclass(frozen=True)
class WebPQualityCriteria:
    min_compression_ratio: float = 10.0
    max_quality_loss: float = 5.0
    min_file_size: int = 100
    max_file_size: int = 10 * 1024 * 1024


DEFAULT_CRITERIA = WebPQualityCriteria()


@dataclass
class WebPValidationResult:
    is_valid: bool
    original_format: str
    original_size: int
    webp_size: int
    compression_ratio: float = 0.0
    quality_score: float = 0.0
    width: int = 0
    height: int = 0
    has_alpha: bool = False
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "original_format": self.original_format,
            "original_size": self.original_size,
            "webp_size": self.webp_size,
            "compression_ratio": self.compression_ratio,
            "quality_score": self.quality_score,
            "metadata": {"width": self.width, "height": self.height, "has_alpha": self.has_alpha},
            "warnings": list(self.warnings),
            "errors": list(self.errors),
        }


def calculate_quality_score(
    compression_ratio: float, webp_size: int, criteria: WebPQualityCriteria = DEFAULT_CRITERIA
) -> float:
    score = 100.0
    if compression_ratio < criteria.min_compression_ratio:
        score -= min((criteria.min_compression_ratio - compression_ratio) * 2, 30)
    if webp_size < criteria.min_file_size:
        score -= 20
    if webp_size > criteria.max_file_size:
        score -= 20
    if compression_ratio > 50:
        score += 10
    if compression_ratio > 70:
        score += 10
    return max(0.0, min(100.0, score))


def validate_webp_conversion(
    original: bytes,
    webp: bytes,
    criteria: WebPQualityCriteria = DEFAULT_CRITERIA,
) -> WebPValidationResult:
    """Check a conversion against size and compression criteria."""
    result = WebPValidationResult(
        is_valid=True,
        original_format="unknown",
        original_size=len(original),
        webp_size=len(webp),
    )

    if not original:
        result.errors.append("Original file size is zero")
        result.is_valid = False
        return result

    try:
        metadata = get_image_metadata(original)
    except ValidationError as e:
        result.warnings.append(f"Could not read original metadata: {e}")
    else:
        result.original_format = metadata["format"] or "unknown"
        result.width = metadata["width"]
        result.height = metadata["height"]
        result.has_alpha = metadata["has_alpha"]

    result.compression_ratio = calculate_compression_ratio(len(original), len(webp))

    if len(webp) < criteria.min_file_size:
        result.errors.append(
            f"WebP file too small: {len(webp)} bytes (minimum: {criteria.min_file_size})"
        )
        result.is_valid = False

    if len(webp) > criteria.max_file_size:
        result.errors.append(
            f"WebP file too large: {len(webp)} bytes (maximum: {criteria.max_file_size})"
        )
        result.is_valid = False

    if result.compression_ratio < criteria.min_compression_ratio:
        result.warnings.append(
            f"Low compression ratio: {result.compression_ratio:.2f}% "
            f"(minimum: {criteria.min_compression_ratio}%)"
        )

    if not can_convert_to_webp(original):
        result.warnings.append("Original image format may not be optimal for WebP conversion")

    result.quality_score = calculate_quality_score(result.compression_ratio, len(webp), criteria)

    if result.compression_ratio < 0:
        result.errors.append("WebP file is larger than original (negative compression)")
        result.is_valid = False

    return result


def validate_batch(
    conversions: list[tuple[str, bytes, bytes]],
    criteria: WebPQualityCriteria = DEFAULT_CRITERIA,
) -> list[tuple[str, WebPValidationResult]]:
    """Validate ``(id, original, webp)`` triples."""
    return [
        (conversion_id, validate_webp_conversion(original, webp, criteria))
        for conversion_id, original, webp in conversions
    ]


def generate_validation_report(results: list[tuple[str, WebPValidationResult]]) -> dict[str, Any]:
    """Summarize a batch; averages cover only the valid conversions."""
    valid = [r for _, r in results if r.is_valid]
    count = len(valid)
    return {
        "summary": {
            "total": len(results),
            "valid": count,
            "invalid": len(results) - count,
            "average_compression_ratio": sum(r.compression_ratio for r in valid) / count if count else 0,
            "average_quality_score": sum(r.quality_score for r in valid) / count if count else 0,
        },
        "errors": [f"{conversion_id}: {e}" for conversion_id, r in results for e in r.errors],
        "warnings": [f"{conversion_id}: {w}" for conversion_id, r in results for w in r.warnings],
        "details": [{"id": conversion_id, **r.to_dict()} for conversion_id, r in results],
    }


def check_webp_support() -> bool:
    """Whether the installed Pillow can encode WebP."""
    return bool(features.check("webp"))
