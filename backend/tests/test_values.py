"""
Unit tests for cell coercion helpers.
"""
import pytest

from vizengine.services.values import (
    dominant_shape, is_missing, is_strict_date, name_matches_pattern, name_tokens,
    normalize_name, to_date, to_number, unique_strings, value_shape,
)


@pytest.mark.unit
@pytest.mark.parametrize("value", [None, "", float("nan")])
def test_is_missing(value):
    assert is_missing(value)


@pytest.mark.unit
@pytest.mark.parametrize("value", [0, False, " ", "n/a"])
def test_is_not_missing(value):
    assert not is_missing(value)


@pytest.mark.unit
def test_to_number_parses_currency_and_separators():
    assert to_number("$1,234.50") == 1234.5
    assert to_number("15%") == 15.0
    assert to_number(7) == 7.0


@pytest.mark.unit
def test_to_number_rejects_non_numbers():
    assert to_number(True) is None
    assert to_number("abc") is None
    assert to_number("$") is None
    assert to_number(float("inf")) is None
    assert to_number(None) is None


@pytest.mark.unit
def test_to_date_parses_common_formats():
    assert to_date("2024-03-15").year == 2024
    assert to_date("03/15/2024").month == 3
    assert to_date("March 15, 2024").day == 15


@pytest.mark.unit
def test_to_date_reads_dotted_dates_day_first():
    parsed = to_date("05.03.2024")
    assert parsed.day == 5
    assert parsed.month == 3


@pytest.mark.unit
def test_to_date_rejects_numbers_and_plain_words():
    assert to_date(20240315) is None
    assert to_date("20240315") is None
    assert to_date("12.5") is None
    assert to_date("may") is None
    assert to_date("hello world") is None
    assert to_date("SKU-12-A3") is None
    assert to_date("batch 2024-01") is None


@pytest.mark.unit
def test_to_date_rejects_years_out_of_range():
    assert to_date("1850-01-01") is None
    assert to_date("2150-01-01") is None


@pytest.mark.unit
def test_to_date_drops_timezone():
    parsed = to_date("2024-03-15T10:00:00+02:00")
    assert parsed is not None
    assert parsed.tzinfo is None


@pytest.mark.unit
def test_is_strict_date_requires_literal_shape():
    assert is_strict_date("2024-01-31")
    assert not is_strict_date("next tuesday 5pm")


@pytest.mark.unit
def test_value_shape():
    assert value_shape(3) == "integer"
    assert value_shape("3.5") == "decimal"
    assert value_shape(2.0) == "decimal"
    assert value_shape("2024-01-01") == "date"
    assert value_shape("x" * 150) == "long_text"
    assert value_shape("north") == "text"
    assert value_shape(True) == "text"


@pytest.mark.unit
def test_dominant_shape_ignores_missing_values():
    assert dominant_shape([None, "", "2024-01-01", "2024-02-01", "x"]) == "date"
    assert dominant_shape([None, ""]) is None


@pytest.mark.unit
def test_name_tokens_split_camel_case_and_separators():
    assert name_tokens("orderDate_UTC") == ["order", "date", "utc"]
    assert normalize_name("Date of Birth") == "date_of_birth"


@pytest.mark.unit
def test_name_matches_pattern_on_token_boundaries():
    assert name_matches_pattern("dob", "dob")
    assert name_matches_pattern("customer_dob", "dob")
    assert name_matches_pattern("customerDOB", "dob")
    assert not name_matches_pattern("dobson", "dob")
    assert not name_matches_pattern("dob", "")


@pytest.mark.unit
def test_unique_strings_keeps_first_seen_order():
    assert unique_strings(["b", "a", "b", 1, "1"]) == ["b", "a", "1"]
    assert unique_strings([]) == []
