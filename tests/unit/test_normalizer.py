from __future__ import annotations

from datetime import date, datetime

import pandas as pd
import pytest

from member_bulk.services.normalizer import (
    digits_only,
    extract_card_last4,
    format_dob,
    is_blank,
    mask_card,
    normalize_row,
    parse_dob,
    sanitize_value,
    split_list,
)


@pytest.mark.parametrize("value", [None, "", "   ", float("nan"), pd.NaT, [], ["", " "]])
def test_is_blank_true(value):
    assert is_blank(value)


@pytest.mark.parametrize("value", ["x", 0, 0.0, ["a"], date(2020, 1, 1)])
def test_is_blank_false(value):
    assert not is_blank(value)


def test_sanitize_value_trims_and_drops_float_suffix():
    assert sanitize_value("  Asha  ") == "Asha"
    assert sanitize_value(9876543210.0) == "9876543210"
    assert sanitize_value(12) == "12"
    assert sanitize_value("   ") is None


def test_split_list_comma_string_and_native_list():
    assert split_list("Reading, Music ,,") == ["Reading", "Music"]
    assert split_list(["React", " ", "Java"]) == ["React", "Java"]
    assert split_list(",") == []
    assert split_list(None) == []


def test_parse_dob_accepts_native_and_iso_only():
    assert parse_dob("1990-05-17") == date(1990, 5, 17)
    assert parse_dob(datetime(1990, 5, 17, 10, 30)) == date(1990, 5, 17)
    assert parse_dob(pd.Timestamp("1990-05-17")) == date(1990, 5, 17)
    assert parse_dob(date(2001, 4, 5)) == date(2001, 4, 5)
    assert parse_dob("04/05/2001") is None
    assert parse_dob("1990-02-30") is None
    assert parse_dob(19900517) is None


def test_digits_only_and_card_helpers():
    assert digits_only("4111-1111 1111-1111") == "4111111111111111"
    assert digits_only("abc") is None
    assert extract_card_last4("4111 1111 1111 1234") == "1234"
    assert extract_card_last4("************1234") == "1234"
    assert extract_card_last4("123") is None
    assert mask_card("1234") == "************1234"
    assert mask_card(None) is None


def test_format_dob():
    assert format_dob(date(1990, 5, 17)) == "1990-05-17"
    assert format_dob(None) is None


def test_normalize_row_tracks_supplied_fields():
    result = normalize_row(
        {
            "identifier": "",
            "name": " Asha ",
            "mobile": 9876543210.0,
            "hobbies": "Reading,Music",
            "dob": "17/05/1990",
        }
    )
    assert result.values["identifier"] is None
    assert result.values["name"] == "Asha"
    assert result.values["mobile"] == "9876543210"
    assert result.values["hobbies"] == ["Reading", "Music"]
    assert result.values["tech_interests"] == []
    assert result.values["dob"] is None
    # 不正な DOB でも supplied には残る
    assert result.supplied == frozenset({"name", "mobile", "hobbies", "dob"})
