from smart_upload.parts.naming import (
    build_part_display_name,
    normalize_instrument_label,
)


class TestNormalizeInstrumentLabel:
    def test_clarinet_with_roman_chair(self) -> None:
        result = normalize_instrument_label("Clarinet in Bb II")
        assert result.instrument == "2nd Bb Clarinet"
        assert result.transposition == "Bb"
        assert result.section == "Woodwinds"

    def test_first_trumpet(self) -> None:
        result = normalize_instrument_label("1st Trumpet")
        assert result.instrument == "1st Trumpet"
        assert result.section == "Brass"

    def test_horn_is_in_f(self) -> None:
        assert normalize_instrument_label("Horn").transposition == "F"

    def test_tuba_is_concert_pitch(self) -> None:
        result = normalize_instrument_label("Tuba")
        assert result.instrument == "Tuba"
        assert result.transposition == "C"

    def test_full_score_is_in_score_section(self) -> None:
        result = normalize_instrument_label("Full Score")
        assert result.instrument == "Full Score"
        assert result.section == "Score"

    def test_unrecognized_label_is_cleaned(self) -> None:
        result = normalize_instrument_label("  Kazoo   Obbligato ")
        assert result.instrument == "Kazoo Obbligato"
        assert result.section == "Other"
        assert result.transposition == "C"

    def test_empty_label_becomes_unknown(self) -> None:
        assert normalize_instrument_label("").instrument == "Unknown"


class TestDisplayNames:
    def test_display_name_joins_title_and_instrument(self) -> None:
        assert (
            build_part_display_name("American  Patrol", "1st Bb Clarinet")
            == "American Patrol 1st Bb Clarinet"
        )
