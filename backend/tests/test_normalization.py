"""
Unit Tests for identity normalization

Tests the boundary helpers that canonicalize module input:
- Phone canonicalization (extensions, country code, garbage)
- Name folding (punctuation, diacritics)
- Household key construction

Run with: pytest tests/test_normalization.py -v
"""

import uuid

import pytest

from identity.normalization import (
    normalize_phone,
    normalize_email,
    normalize_name_component,
    normalize_zip,
    generate_household_key,
    coerce_uuid,
    clean_text,
)


class TestNormalizePhone:
    """Phone numbers reduce to 10 digits or None."""

    @pytest.mark.parametrize("raw", [
        "(404) 555-1234",
        "404.555.1234",
        "404 555 1234",
        "+1 404-555-1234",
        "1-404-555-1234",
        "4045551234",
    ])
    def test_common_formats(self, raw):
        assert normalize_phone(raw) == "4045551234"

    def test_extension_is_ignored(self):
        assert normalize_phone("404-555-1234 ext. 22") == "4045551234"
        assert normalize_phone("404-555-1234 x22") == "4045551234"
        assert normalize_phone("404-555-1234 #9") == "4045551234"
        assert normalize_phone("404-555-1234, ext 22") == "4045551234"

    @pytest.mark.parametrize("raw", [
        "Text 404-555-1234",
        "Fax: 404-555-1234",
        "Text-404-555-1234",
        "Ext-Line 404-555-1234",
        "#1: (404) 555-1234",
    ])
    def test_leading_label_is_not_an_extension(self, raw):
        assert normalize_phone(raw) == "4045551234"

    def test_unparseable_returns_none(self):
        assert normalize_phone("555-1234") is None
        assert normalize_phone("call me") is None
        assert normalize_phone("") is None
        assert normalize_phone(None) is None

    def test_eleven_digits_without_country_code_rejected(self):
        assert normalize_phone("24045551234") is None


class TestNormalizeEmail:

    def test_lowercases_and_strips(self):
        assert normalize_email("  John.Smith@Example.COM ") == "john.smith@example.com"

    def test_blank_is_none(self):
        assert normalize_email("   ") is None
        assert normalize_email(None) is None


class TestNameComponents:
    """Name folding for key building."""

    def test_apostrophe_removed(self):
        assert normalize_name_component("O'Brien") == "OBRIEN"

    def test_hyphen_removed(self):
        assert normalize_name_component("Smith-Jones") == "SMITHJONES"

    def test_diacritics_folded(self):
        assert normalize_name_component("José") == "JOSE"
        assert normalize_name_component("Zoë") == "ZOE"

    def test_empty(self):
        assert normalize_name_component("") == ""
        assert normalize_name_component(None) == ""


class TestNormalizeZip:

    def test_missing_zip_defaults(self):
        assert normalize_zip(None) == "00000"
        assert normalize_zip("") == "00000"

    def test_short_numeric_zip_left_padded(self):
        assert normalize_zip("2134") == "02134"

    def test_zip_plus_four_truncated(self):
        assert normalize_zip("30301-1234") == "30301"


class TestHouseholdKey:
    """LAST_FIRST_ZIP keys."""

    def test_basic_key(self):
        assert generate_household_key("John", "Smith", "30301") == "SMITH_JOHN_30301"

    def test_missing_first_name(self):
        assert generate_household_key(None, "Smith", "30301") == "SMITH_UNKNOWN_30301"

    def test_missing_zip(self):
        assert generate_household_key("John", "Smith", None) == "SMITH_JOHN_00000"

    def test_punctuation_and_case_insensitive(self):
        assert generate_household_key("josé", "o'brien", "30301") == generate_household_key("JOSE", "OBrien", "30301")

    def test_deterministic(self):
        keys = {generate_household_key("Ann", "Smith-Jones", "2134") for _ in range(5)}
        assert keys == {"SMITHJONES_ANN_02134"}

    def test_last_name_required(self):
        with pytest.raises(ValueError):
            generate_household_key("John", None, "30301")
        with pytest.raises(ValueError):
            generate_household_key("John", "'-'", "30301")


class TestHelpers:

    def test_coerce_uuid_accepts_string(self):
        value = uuid.uuid4()
        assert coerce_uuid(str(value), "agency_id") == value
        assert coerce_uuid(value, "agency_id") == value

    def test_coerce_uuid_rejects_bad_values(self):
        with pytest.raises(ValueError, match="agency_id is required"):
            coerce_uuid(None, "agency_id")
        with pytest.raises(ValueError, match="valid UUID"):
            coerce_uuid("not-a-uuid", "agency_id")

    def test_clean_text(self):
        assert clean_text("  Smith ") == "Smith"
        assert clean_text("   ") is None
        assert clean_text(None) is None
