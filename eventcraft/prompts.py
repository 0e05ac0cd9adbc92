"""Event prompt construction, event catalogue and holiday lookup."""

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from .imaging.naming import java_string_hash

EVENT_TYPES: dict[str, str] = {
    "BIRTHDAY_PARTY": "Birthday Party",
    "WEDDING": "Wedding",
    "CORPORATE_EVENT": "Corporate Event",
    "HOLIDAY_CELEBRATION": "Holiday Celebration",
    "CONCERT": "Concert",
    "SPORTS_EVENT": "Sports Event",
    "NIGHTLIFE": "Nightlife",
    "FAMILY_GATHERING": "Family Gathering",
    "BBQ": "BBQ",
    "PARK_GATHERING": "Park Gathering",
    "COMMUNITY_EVENT": "Community Event",
    "FUNDRAISER": "Fundraiser",
    "WORKSHOP": "Workshop",
    "MEETUP": "Meetup",
    "CELEBRATION": "Celebration",
    "REUNION": "Reunion",
    "POTLUCK": "Potluck",
    "GAME_NIGHT": "Game Night",
    "BOOK_CLUB": "Book Club",
    "ART_CLASS": "Art Class",
    "FITNESS_CLASS": "Fitness Class",
    "BREAKDANCING": "Breakdancing",
    "POTTERY": "Pottery",
}

# (detail key, label) pairs that must be filled in
REQUIRED_DETAILS: dict[str, list[tuple[str, str]]] = {
    "BIRTHDAY_PARTY": [("age", "Age of birthday person")],
    "WEDDING": [("style", "Wedding style")],
    "CORPORATE_EVENT": [("event_type", "Event type")],
    "HOLIDAY_CELEBRATION": [("holiday", "Specific holiday")],
    "CONCERT": [("genre", "Music genre")],
    "SPORTS_EVENT": [("sport", "Sport type")],
}

# Phrases that mark the start of the quality-control tail of a stored style prompt
QUALITY_CONTROL_PHRASES = (
    "no text unless otherwise specified",
    "no blur",
    "no distortion",
    "high quality",
    "no gibberish text",
    "no fake letters",
    "no strange characters",
    "only real readable words if text is included",
)

TEXT_QUALITY_PHRASES = QUALITY_CONTROL_PHRASES[4:]

NO_STYLE = "No Style"

CAROUSEL_BACKGROUND_TEMPLATE = (
    "Create a seamless horizontal background image with a continuous pattern. {prompt}. "
    "The background should be a unified design that flows smoothly from left to right "
    "across the entire width. Use simple, solid colors and subtle patterns that create "
    "visual interest without being distracting. The design should be cohesive and seamless, "
    "with no visible breaks, separations, or distinct sections. Choose colors that provide "
    "good contrast for white text overlay."
)


@dataclass(frozen=True)
class Holiday:
    date: str
    name: str
    type: str
    description: str
    region: list[str] = field(default_factory=list)


HOLIDAYS: list[Holiday] = [
    Holiday("2025-01-01", "New Year's Day", "Public Holiday",
            "Celebrates the first day of the year", ["Canada", "UK", "USA"]),
    Holiday("2025-01-14", "Lohri", "Religious (Sikh)",
            "Harvest festival celebrated in Punjab", ["India"]),
    Holiday("2025-01-26", "Republic Day", "Public Holiday",
            "Marks the adoption of India's Constitution", ["India"]),
    Holiday("2025-03-17", "St. Patrick's Day", "Cultural/Religious",
            "Celebrates Irish heritage and Saint Patrick", ["UK", "USA"]),
    Holiday("2025-03-29", "Ramadan Begins (estimate)", "Religious (Islam)",
            "Month of fasting for Muslims", ["Islamic"]),
    Holiday("2025-04-18", "Good Friday", "Religious (Christian)",
            "Commemorates the crucifixion of Jesus Christ", ["Canada", "UK"]),
    Holiday("2025-05-05", "Cinco de Mayo", "Cultural",
            "Celebrates the Mexican army's victory over France", ["USA"]),
    Holiday("2025-06-19", "Juneteenth", "Public Holiday",
            "Commemorates the emancipation of enslaved African Americans", ["USA"]),
    Holiday("2025-07-01", "Canada Day", "Public Holiday",
            "Celebrates Canadian Confederation", ["Canada"]),
    Holiday("2025-07-04", "Independence Day", "Public Holiday",
            "Celebrates American independence", ["USA"]),
    Holiday("2025-08-15", "Independence Day", "Public Holiday",
            "Marks India's independence from Britain", ["India"]),
    Holiday("2025-10-03", "Eid al-Adha (estimate)", "Religious (Islam)",
            "Festival of Sacrifice", ["Islamic"]),
    Holiday("2025-10-13", "Thanksgiving", "Public Holiday",
            "Day of giving thanks", ["Canada"]),
    Holiday("2025-10-31", "Diwali", "Religious (Hindu)",
            "Festival of Lights", ["India"]),
    Holiday("2025-11-11", "Remembrance Day", "Public Holiday",
            "Honors military members who died in service", ["Canada", "UK"]),
    Holiday("2025-11-28", "Thanksgiving", "Public Holiday",
            "Celebrated with feasting and gratitude", ["USA"]),
    Holiday("2025-12-25", "Christmas Day", "Religious (Christian)",
            "Celebrates the birth of Jesus Christ", ["Canada", "UK", "USA"]),
    Holiday("2025-12-26", "Boxing Day", "Public Holiday",
            "Traditionally a day for giving to the less fortunate", ["Canada", "UK"]),
    Holiday("2025-12-31", "New Year's Eve", "Cultural",
            "Celebration of the final day of the Gregorian year", ["Global"]),
]


def get_holiday_by_name(name: str) -> Holiday | None:
    """First holiday whose name matches, ignoring case."""
    wanted = name.strip().lower()
    return next((holiday for holiday in HOLIDAYS if holiday.name.lower() == wanted), None)


def get_holidays_for_date(day: date, regions: set[str] | None = None) -> list[Holiday]:
    """Holidays on the same month and day, optionally limited to regions."""
    suffix = day.strftime("-%m-%d")
    return [
        holiday
        for holiday in HOLIDAYS
        if holiday.date.endswith(suffix)
        and (regions is None or regions.intersection(holiday.region))
    ]


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def normalize_details(details: dict[str, Any]) -> dict[str, str]:
    """Snake-case keys, stringify values and drop blanks."""
    normalized = {}
    for key, value in details.items():
        if value is None:
            continue
        text = str(value).strip()
        if text:
            normalized[_snake_case(key)] = text
    return normalized


def _holiday_phrases(details: dict[str, str]) -> list[str]:
    parts = []
    holiday = get_holiday_by_name(details["holiday"]) if "holiday" in details else None
    if holiday:
        parts.append(f"{holiday.name} celebration")
        parts.append(f"{holiday.type.lower()} holiday")
        if holiday.description:
            parts.append(holiday.description.lower())
        if holiday.region:
            parts.append(f"{', '.join(holiday.region)} cultural context")
    elif "holiday" in details:
        parts.append(f"{details['holiday']} celebration")

    if details.get("context") and details["context"] != "Public Holiday":
        parts.append(f"{details['context']} context")
    if "venue" in details:
        parts.append(f"at {details['venue']}")
    if "people" in details:
        parts.append(f"{details['people']} gathering")
    if "traditions" in details:
        parts.append(f"with {details['traditions']}")
    if "decorations" in details:
        decorations = details["decorations"].lower()
        redundant = (
            holiday is not None
            and bool(holiday.region)
            and holiday.region[0].lower() in decorations
            and "cultural" in decorations
        )
        if not redundant:
            parts.append(f"decorated with {details['decorations']}")
    return parts


# Per event type: (detail key, phrase template) in output order
DETAIL_PHRASES: dict[str, list[tuple[str, str]]] = {
    "BIRTHDAY_PARTY": [
        ("age", "{}th birthday celebration"),
        ("theme", "{} theme"),
        ("venue", "at {}"),
        ("guests", "{} guests"),
        ("activities", "featuring {}"),
        ("decorations", "with {}"),
    ],
    "WEDDING": [
        ("style", "{} style wedding"),
        ("colors", "{} color scheme"),
        ("venue", "at {}"),
        ("season", "{} season"),
        ("guests", "{} guests"),
        ("elements", "with {}"),
    ],
    "CORPORATE_EVENT": [
        ("event_type", "{}"),
        ("industry", "{} industry"),
        ("attendees", "{} attendees"),
        ("venue", "at {}"),
        ("formality", "{} atmosphere"),
        ("branding", "{} branding"),
    ],
    "CONCERT": [
        ("genre", "{} concert"),
        ("venue", "at {}"),
        ("crowd", "{} crowd"),
        ("lighting", "{} lighting"),
        ("performance", "{} performance"),
        ("atmosphere", "with {}"),
    ],
    "SPORTS_EVENT": [
        ("sport", "{} event"),
        ("venue", "at {}"),
        ("colors", "{} colors"),
        ("crowd", "{} spectators"),
        ("event_type", "{}"),
        ("weather", "{} weather"),
    ],
    "NIGHTLIFE": [
        ("venue", "{} venue"),
        ("music", "{} music"),
        ("crowd", "{} crowd"),
        ("lighting", "{} lighting"),
        ("features", "with {}"),
        ("dresscode", "{} dress code"),
    ],
}

GENERIC_PHRASES = [
    ("venue", "at {}"),
    ("atmosphere", "{} atmosphere"),
    ("activities", "featuring {}"),
    ("decorations", "with {}"),
]


def detail_phrases(event_type: str, details: dict[str, str]) -> list[str]:
    if event_type == "HOLIDAY_CELEBRATION":
        return _holiday_phrases(details)
    phrases = DETAIL_PHRASES.get(event_type, GENERIC_PHRASES)
    return [template.format(details[key]) for key, template in phrases if key in details]


def style_phrases(style_name: str | None, stored_prompt: str | None = None) -> list[str]:
    """Style context from a stored style prompt, or from the style name alone.

    A stored prompt is cut where its quality-control tail starts; text quality
    phrases found in that tail are kept as a separate part.
    """
    if not style_name or style_name == NO_STYLE:
        return []

    if not stored_prompt:
        return [style_name if len(style_name) > 20 else f"{style_name} style"]

    lowered = stored_prompt.lower()
    description = stored_prompt
    text_quality = ""
    for phrase in QUALITY_CONTROL_PHRASES:
        index = lowered.find(phrase)
        if index != -1:
            description = stored_prompt[:index].strip()
            tail = lowered[index:]
            found = [p for p in TEXT_QUALITY_PHRASES if p in tail]
            text_quality = ", ".join(found)
            break

    parts = [re.sub(r",\s*$", "", description)]
    if text_quality:
        parts.append(text_quality)
    return [part for part in parts if part]


def build_event_prompt(
    event_type: str | None,
    details: dict[str, Any],
    base_prompt: str,
    style_preset: str | None = None,
    custom_style: str | None = None,
    stored_style_prompt: str | None = None,
) -> str:
    """Enrich the user's prompt with event context.

    Unknown or missing event types return the base prompt untouched.
    """
    if not event_type or event_type not in EVENT_TYPES:
        return base_prompt

    normalized = normalize_details(details)
    parts = [f"{EVENT_TYPES[event_type]} flyer theme"]
    parts.extend(detail_phrases(event_type, normalized))
    parts.extend(style_phrases(style_preset, stored_style_prompt))

    if normalized.get("custom_text"):
        parts.append(f'with text: "{normalized["custom_text"]}"')
    if custom_style and custom_style.strip():
        parts.append(custom_style.strip())

    return f"{', '.join(parts)}, {base_prompt}".strip()


def validate_event_details(event_type: str, details: dict[str, Any]) -> tuple[bool, list[str]]:
    """Return (is_valid, labels of missing required fields)."""
    if event_type not in EVENT_TYPES:
        return False, []
    normalized = normalize_details(details)
    missing = [label for key, label in REQUIRED_DETAILS.get(event_type, []) if key not in normalized]
    return not missing, missing


def carousel_background_prompt(prompt: str) -> str:
    return CAROUSEL_BACKGROUND_TEMPLATE.format(prompt=prompt.strip())


def carousel_seed(prompt: str, slide_count: int) -> int:
    """Deterministic seed so the same carousel request reproduces its background."""
    return abs(java_string_hash(f"{prompt}_longimage_{slide_count}slides")) % 1_000_000
