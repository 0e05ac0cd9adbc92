"""Tests for event prompt building and the holiday catalogue."""

from datetime import date

from eventcraft.prompts import (
    build_event_prompt,
    carousel_background_prompt,
    carousel_seed,
    get_holiday_by_name,
    get_holidays_for_date,
    normalize_details,
    style_phrases,
    validate_event_details,
)


class TestBuildEventPrompt:
    """Prompt enrichment."""

    def test_birthday(self):
        prompt = build_event_prompt(
            "BIRTHDAY_PARTY", {"age": 30, "theme": "Tropical"}, "bright and colourful"
        )
        assert prompt == (
            "Birthday Party flyer theme, 30th birthday celebration, Tropical theme, "
            "bright and colourful"
        )

    def test_unknown_event_type(self):
        assert build_event_prompt("SPACE_LAUNCH", {"venue": "Moon"}, "rocket") == "rocket"
        assert build_event_prompt(None, {}, "rocket") == "rocket"

    def test_generic_event_with_text_and_custom_style(self):
        prompt = build_event_prompt(
            "WORKSHOP",
            {"venue": "Town Hall", "customText": "Join us"},
            "friendly flyer",
            custom_style="  retro print  ",
        )
        assert prompt == (
            'Workshop flyer theme, at Town Hall, with text: "Join us", retro print, friendly flyer'
        )

    def test_style_preset_without_stored_prompt(self):
        prompt = build_event_prompt("BBQ", {}, "summer", style_preset="Neon Glow")
        assert prompt == "BBQ flyer theme, Neon Glow style, summer"

    def test_no_style(self):
        prompt = build_event_prompt("BBQ", {}, "summer", style_preset="No Style")
        assert prompt == "BBQ flyer theme, summer"

    def test_known_holiday(self):
        prompt = build_event_prompt(
            "HOLIDAY_CELEBRATION", {"holiday": "Diwali", "venue": "Community hall"}, "warm"
        )
        assert prompt == (
            "Holiday Celebration flyer theme, Diwali celebration, religious (hindu) holiday, "
            "festival of lights, India cultural context, at Community hall, warm"
        )

    def test_unknown_holiday(self):
        prompt = build_event_prompt("HOLIDAY_CELEBRATION", {"holiday": "Festivus"}, "pole")
        assert prompt == "Holiday Celebration flyer theme, Festivus celebration, pole"

    def test_redundant_holiday_decorations_dropped(self):
        prompt = build_event_prompt(
            "HOLIDAY_CELEBRATION",
            {"holiday": "Diwali", "decorations": "India cultural lanterns"},
            "warm",
        )
        assert "decorated with" not in prompt

        prompt = build_event_prompt(
            "HOLIDAY_CELEBRATION", {"holiday": "Diwali", "decorations": "paper lanterns"}, "warm"
        )
        assert "decorated with paper lanterns" in prompt


class TestStylePhrases:
    """Style context from stored prompts."""

    def test_quality_tail_split_off(self):
        parts = style_phrases(
            "Watercolor",
            "Soft watercolor washes, pastel tones, no blur, no gibberish text, no fake letters",
        )
        assert parts == [
            "Soft watercolor washes, pastel tones",
            "no gibberish text, no fake letters",
        ]

    def test_stored_prompt_without_tail(self):
        assert style_phrases("Ink", "Bold ink lines") == ["Bold ink lines"]

    def test_long_style_name_used_as_is(self):
        name = "Hand drawn chalkboard lettering"
        assert style_phrases(name) == [name]


class TestDetails:
    """Detail normalisation and validation."""

    def test_normalize(self):
        assert normalize_details({"customText": " Hi ", "guestCount": 20, "x": None, "y": " "}) == {
            "custom_text": "Hi",
            "guest_count": "20",
        }

    def test_required_details(self):
        assert validate_event_details("BIRTHDAY_PARTY", {}) == (False, ["Age of birthday person"])
        assert validate_event_details("BIRTHDAY_PARTY", {"age": 7}) == (True, [])
        assert validate_event_details("BBQ", {}) == (True, [])
        assert validate_event_details("SPACE_LAUNCH", {}) == (False, [])


class TestHolidays:
    """Holiday lookup."""

    def test_by_name(self):
        holiday = get_holiday_by_name("  christmas day ")
        assert holiday is not None
        assert holiday.date == "2025-12-25"
        assert get_holiday_by_name("Festivus") is None

    def test_by_date_any_year(self):
        names = [holiday.name for holiday in get_holidays_for_date(date(2026, 12, 25))]
        assert names == ["Christmas Day"]

    def test_by_date_and_region(self):
        assert get_holidays_for_date(date(2026, 12, 25), {"India"}) == []
        assert len(get_holidays_for_date(date(2026, 7, 1), {"Canada"})) == 1


class TestCarouselPrompt:
    """Carousel background prompt and seed."""

    def test_background_prompt(self):
        prompt = carousel_background_prompt("  Summer sale ")
        assert prompt.startswith("Create a seamless horizontal background image")
        assert "continuous pattern. Summer sale. The background" in prompt

    def test_seed_is_stable(self):
        seed = carousel_seed("Summer sale", 3)
        assert seed == carousel_seed("Summer sale", 3)
        assert 0 <= seed < 1_000_000
        assert seed != carousel_seed("Summer sale", 4)
