"""Carousel slide copy: design templates with optional LLM-written text."""

import json
import re
from dataclasses import dataclass
from typing import Any, Literal

import litellm
from loguru import logger

from .exceptions import CopywriterError
from .retry import with_llm_retry

SlideType = Literal["intro", "content", "conclusion"]

FONT_FAMILY = "Inter"

CONTENT_TEMPLATES = [
    "ESSENTIAL STRATEGY FOR {title}",
    "PROVEN METHOD TO {title}",
    "KEY INSIGHT ABOUT {title}",
    "CRITICAL STEP IN {title}",
    "VITAL PRINCIPLE OF {title}",
    "CORE CONCEPT OF {title}",
    "FUNDAMENTAL APPROACH TO {title}",
    "BREAKTHROUGH IN {title}",
    "REVOLUTIONARY {title} TECHNIQUE",
    "EXPERT TIP FOR {title}",
]

CAPTION_TEMPLATES = [
    "Learn the most effective strategies that professionals use to master {title}.",
    "Discover proven techniques that will transform your approach to {title}.",
    "Unlock the secrets that successful people use to excel in {title}.",
    "Master the fundamentals that will set you apart in {title}.",
    "Explore innovative methods that revolutionize {title} practices.",
    "Understand the core principles that drive success in {title}.",
    "Implement strategies that guarantee results in {title}.",
    "Develop skills that will accelerate your progress in {title}.",
    "Build a solid foundation for excellence in {title}.",
    "Create a roadmap for achieving mastery in {title}.",
]

COPY_PROMPT = """You write short, punchy copy for slide {number} of {total} of an Instagram carousel titled "{title}".
The slide is the {slide_type} slide.
Reply with JSON only, using the keys "headline" (max 6 words, uppercase), "body" (max 12 words) and "caption" (one sentence)."""


def setup_litellm() -> None:
    """Setup litellm configuration."""
    litellm.set_verbose = False
    litellm.drop_params = True
    litellm.suppress_debug_info = True


@dataclass
class LLMConfig:
    """Configuration for the copy model."""

    model: str
    api_key: str | None = None
    timeout: int = 30
    temperature: float = 0.7


def content_text(title: str, index: int) -> str:
    return CONTENT_TEMPLATES[index % len(CONTENT_TEMPLATES)].format(title=title.upper())


def caption_text(title: str, index: int) -> str:
    return CAPTION_TEMPLATES[index % len(CAPTION_TEMPLATES)].format(title=title)


def slide_type_for(slide_index: int, total_slides: int) -> SlideType:
    if slide_index == 0:
        return "intro"
    if slide_index >= total_slides - 1:
        return "conclusion"
    return "content"


def _style(
    font_size: int,
    font_weight: str,
    color: str,
    text_align: str,
    line_height: float,
    letter_spacing: float,
    padding: tuple[int, int, int, int],
    border_radius: int = 0,
    background_color: str | None = None,
    shadow: bool = False,
) -> dict[str, Any]:
    top, right, bottom, left = padding
    style: dict[str, Any] = {
        "font_size": font_size,
        "font_weight": font_weight,
        "color": color,
        "font_family": FONT_FAMILY,
        "text_align": text_align,
        "line_height": line_height,
        "letter_spacing": letter_spacing,
        "padding": {"top": top, "right": right, "bottom": bottom, "left": left},
        "border_radius": border_radius,
    }
    if background_color:
        style["background_color"] = background_color
    if shadow:
        style["text_shadow"] = {"x": 2, "y": 2, "blur": 4, "color": "rgba(0,0,0,0.3)"}
    return style


def _element(kind: str, content: str, style: dict[str, Any], x: int, y: int) -> dict[str, Any]:
    return {"type": kind, "content": content, "style": style, "position": {"x": x, "y": y}}


def _slider_number(slide_index: int, size: int, pad: int) -> dict[str, Any]:
    return _element(
        "slider-number",
        str(slide_index + 1),
        _style(size, "900", "#ffffff", "center", 1, 0, (pad,) * 4, 50, "#000000"),
        85,
        15,
    )


def design_elements(title: str, slide_index: int, slide_type: SlideType) -> list[dict[str, Any]]:
    """Positioned text elements for one slide (positions are percentages)."""
    upper = title.upper()
    match slide_type:
        case "intro":
            return [
                _element(
                    "header",
                    upper,
                    _style(48, "900", "#ffffff", "center", 1.1, -1, (20,) * 4, shadow=True),
                    50,
                    35,
                ),
                _element(
                    "body",
                    f"DISCOVER THE ESSENTIALS OF {upper}",
                    _style(18, "600", "#f3f4f6", "center", 1.4, 0.5, (15,) * 4),
                    50,
                    55,
                ),
                _slider_number(slide_index, 24, 12),
            ]
        case "conclusion":
            return [
                _element(
                    "header",
                    "READY TO TAKE ACTION?",
                    _style(36, "900", "#ffffff", "center", 1.1, -0.5, (20,) * 4, shadow=True),
                    50,
                    30,
                ),
                _element(
                    "body",
                    f"MASTER {upper} TODAY",
                    _style(20, "600", "#f3f4f6", "center", 1.4, 0.5, (15,) * 4),
                    50,
                    50,
                ),
                _element(
                    "cta",
                    "GET STARTED NOW",
                    _style(18, "700", "#ffffff", "center", 1.3, 0.5, (12, 20, 12, 20), 8, "#000000"),
                    50,
                    70,
                ),
                _slider_number(slide_index, 24, 12),
            ]
        case _:
            return [
                _element(
                    "header",
                    f"STEP {slide_index + 1}",
                    _style(32, "800", "#1f2937", "left", 1.2, -0.5, (8, 12, 8, 12), 4, "#000000"),
                    15,
                    15,
                ),
                _element(
                    "body",
                    content_text(title, slide_index),
                    _style(24, "700", "#1f2937", "left", 1.3, -0.2, (20,) * 4),
                    15,
                    35,
                ),
                _element(
                    "caption",
                    caption_text(title, slide_index),
                    _style(16, "normal", "#6b7280", "left", 1.5, 0, (15,) * 4),
                    15,
                    65,
                ),
                _slider_number(slide_index, 20, 8),
            ]


def template_slide(
    title: str, slide_index: int, total_slides: int, slide_type: SlideType | None = None
) -> dict[str, Any]:
    slide_type = slide_type or slide_type_for(slide_index, total_slides)
    elements = design_elements(title, slide_index, slide_type)
    headline = elements[0]["content"] if elements else f"Slide {slide_index + 1}"
    return {
        "success": True,
        "slide_type": slide_type,
        "text": headline,
        "design_elements": elements,
        "suggestions": [
            headline,
            f"Alternative {slide_index + 1}: Different perspective on {title}",
            f"Pro tip {slide_index + 1}: Advanced insight about {title}",
        ],
        "source": "template",
    }


def parse_copy(text: str) -> dict[str, str]:
    """Pull the JSON object out of a model reply, tolerating code fences."""
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if not match:
        raise CopywriterError("No JSON object in model reply")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise CopywriterError(f"Invalid JSON in model reply: {e}") from e
    if not isinstance(data, dict):
        raise CopywriterError("Model reply is not a JSON object")
    return {key: str(data[key]).strip() for key in ("headline", "body", "caption") if data.get(key)}


class CarouselCopywriter:
    """Writes slide copy with an LLM, falling back to templates."""

    def __init__(self, config: LLMConfig | None = None) -> None:
        self.config = config if config and config.api_key else None
        if self.config:
            setup_litellm()

    @property
    def enabled(self) -> bool:
        return self.config is not None

    @with_llm_retry("Copywriter", max_retries=3)
    async def _complete(self, prompt: str) -> str:
        if self.config is None:
            raise CopywriterError("Copywriter LLM is not configured")
        response = await litellm.acompletion(
            model=self.config.model,
            messages=[{"role": "user", "content": prompt}],
            timeout=self.config.timeout,
            api_key=self.config.api_key,
            temperature=self.config.temperature,
        )
        return response.choices[0].message.content or ""

    async def generate(
        self,
        title: str,
        slide_index: int,
        total_slides: int,
        slide_type: SlideType | None = None,
    ) -> dict[str, Any]:
        """Copy and design elements for one slide."""
        slide = template_slide(title, slide_index, total_slides, slide_type)
        if not self.enabled:
            return slide

        prompt = COPY_PROMPT.format(
            number=slide_index + 1,
            total=total_slides,
            title=title,
            slide_type=slide["slide_type"],
        )
        try:
            copy = parse_copy(await self._complete(prompt))
        except (CopywriterError, TimeoutError, ConnectionError) as e:
            logger.warning(f"Copywriter fell back to templates: {e}")
            return slide

        for element in slide["design_elements"]:
            match element["type"]:
                case "header" if slide["slide_type"] != "content" and "headline" in copy:
                    element["content"] = copy["headline"]
                case "body" if "body" in copy:
                    element["content"] = copy["body"]
                case "caption" if "caption" in copy:
                    element["content"] = copy["caption"]

        slide["text"] = slide["design_elements"][0]["content"]
        if "headline" in copy:
            slide["suggestions"][0] = copy["headline"]
        slide["source"] = "llm"
        return slide

    async def generate_carousel(self, title: str, slide_count: int) -> list[dict[str, Any]]:
        return [await self.generate(title, index, slide_count) for index in range(slide_count)]

    async def health_check(self) -> bool:
        """Check if provider is configured."""
        return self.enabled
