"""Object key and filename conventions for stored images.

Enhanced keys pack searchable metadata into the filename::

    users/{user}/images/{id}_{date}_{event}_{ratio}_{style}_{watermark}_{hash}_{model}[_{tags}].{ext}

Components never contain ``_`` themselves, so a key can be parsed back.
"""

import re
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}

BASE36 = string.digits + string.ascii_lowercase


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36[remainder])
    return "".join(reversed(digits))


def java_string_hash(value: str) -> int:
    """Signed 32-bit ``s[0]*31^(n-1) + ... + s[n-1]`` over UTF-16 code units."""
    encoded = value.encode("utf-16-le")
    result = 0
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        result = (result * 31 + unit) & 0xFFFFFFFF
    return result - (1 << 32) if result & 0x80000000 else result


def generate_prompt_hash(prompt: str) -> str:
    return to_base36(abs(java_string_hash(prompt)))[:8]


def sanitize_filename(value: str) -> str:
    value = re.sub(r"[^a-zA-Z0-9\-_]", "_", value)
    value = re.sub(r"_+", "_", value)
    return value.strip("_").lower()[:50]


def key_component(value: str) -> str:
    return sanitize_filename(value).replace("_", "-")


def generate_image_id() -> str:
    suffix = "".join(secrets.choice(BASE36) for _ in range(9))
    return f"img-{int(time.time() * 1000)}-{suffix}"


@dataclass
class ImageKeyMetadata:
    user_id: str
    event_type: str | None = None
    aspect_ratio: str | None = None
    style_preset: str | None = None
    watermark_enabled: bool = False
    prompt_hash: str | None = None
    generation_model: str | None = None
    custom_tags: list[str] = field(default_factory=list)


@dataclass
class EnhancedImageKey:
    key: str
    filename: str
    image_id: str
    date: str
    metadata: ImageKeyMetadata


def generate_enhanced_image_key(
    metadata: ImageKeyMetadata,
    extension: str = "png",
    image_id: str | None = None,
    now: datetime | None = None,
) -> EnhancedImageKey:
    image_id = image_id or generate_image_id()
    date = (now or datetime.now(UTC)).strftime("%Y-%m-%d")

    components = [
        image_id,
        date,
        key_component(metadata.event_type) if metadata.event_type else "unknown",
        key_component(metadata.aspect_ratio) if metadata.aspect_ratio else "unknown",
        key_component(metadata.style_preset) if metadata.style_preset else "default",
        "watermarked" if metadata.watermark_enabled else "clean",
        metadata.prompt_hash or "unknown",
        key_component(metadata.generation_model) if metadata.generation_model else "ideogram",
    ]
    components.extend(key_component(tag) for tag in metadata.custom_tags if key_component(tag))

    filename = f"{'_'.join(components)}.{extension}"
    return EnhancedImageKey(
        key=f"users/{metadata.user_id}/images/{filename}",
        filename=filename,
        image_id=image_id,
        date=date,
        metadata=metadata,
    )


def _filename_parts(key: str) -> list[str]:
    filename = key.rsplit("/", 1)[-1]
    return filename.split(".", 1)[0].split("_")


def is_enhanced_image_key(key: str) -> bool:
    return len(_filename_parts(key)) >= 8


def parse_enhanced_image_key(key: str) -> dict[str, Any] | None:
    """Recover the metadata packed into an enhanced key, or None for other keys."""
    parts = _filename_parts(key)
    if len(parts) < 8:
        return None

    image_id, date, event_type, aspect_ratio, style, watermark, prompt_hash, model, *tags = parts
    return {
        "image_id": image_id,
        "date": date,
        "event_type": None if event_type == "unknown" else event_type,
        "aspect_ratio": None if aspect_ratio == "unknown" else aspect_ratio,
        "style_preset": None if style == "default" else style,
        "watermark_enabled": watermark == "watermarked",
        "prompt_hash": prompt_hash,
        "generation_model": None if model == "ideogram" else model,
        "custom_tags": tags or None,
    }


def generate_display_filename(
    metadata: ImageKeyMetadata, extension: str = "png", now: datetime | None = None
) -> str:
    """Short human readable download name: `{event}_{ratio}_{date}.{ext}`."""
    date = (now or datetime.now(UTC)).strftime("%Y-%m-%d")
    event_type = sanitize_filename(metadata.event_type) if metadata.event_type else "event"
    ratio = sanitize_filename(metadata.aspect_ratio) if metadata.aspect_ratio else "standard"
    return f"{event_type}_{ratio}_{date}.{extension}"


def generate_search_tags(metadata: ImageKeyMetadata) -> list[str]:
    tags = [
        value.lower()
        for value in (metadata.event_type, metadata.aspect_ratio, metadata.style_preset)
        if value
    ]
    if metadata.watermark_enabled:
        tags.append("watermarked")
    if metadata.generation_model:
        tags.append(metadata.generation_model.lower())
    tags.extend(tag.lower() for tag in metadata.custom_tags)
    return list(dict.fromkeys(tags))


def generate_image_key(user_id: str, image_id: str, extension: str = "png") -> str:
    return f"{user_id}/{image_id}.{extension}"


def get_file_extension(content_type: str) -> str:
    return EXTENSIONS.get(content_type.split(";")[0].strip().lower(), "png")


def generate_webp_key(key: str) -> str:
    stem, dot, _ = key.rpartition(".")
    return f"{stem}.webp" if dot else f"{key}.webp"


def is_webp_key(key: str) -> bool:
    return key.lower().endswith(".webp")


def get_original_key_from_webp(webp_key: str, original_extension: str = "png") -> str:
    if not is_webp_key(webp_key):
        return webp_key
    return f"{webp_key[: -len('.webp')]}.{original_extension}"
