from __future__ import annotations

from member_bulk.models.bulk_row import RowMode
from member_bulk.services.normalizer import normalize_row
from member_bulk.services.validator import PASSWORD_RULE, validate_password, validate_row


def _validate(raw, mode, catalog):
    normalized = normalize_row(raw)
    return validate_row(normalized.values, mode, catalog, normalized.supplied)


def _full_add(**overrides):
    raw = {
        "name": "Asha Rao",
        "email": "asha@example.com",
        "username": "asha.rao",
        "mobile": "9876543210",
        "credit_card": "4111111111111111",
        "state": "Telangana",
        "city": "Hyderabad",
        "gender": "Female",
        "hobbies": "Reading",
        "tech_interests": "React, Java",
        "address": "12 MG Road",
        "dob": "1990-05-17",
        "password": "Secret@123",
    }
    raw.update(overrides)
    return raw


def test_valid_add_row(catalog):
    outcome = _validate(_full_add(), RowMode.ADD, catalog)
    assert outcome.valid
    assert outcome.values["tech_interests"] == ["React", "Java"]


def test_add_row_missing_everything_lists_required_fields_in_order(catalog):
    outcome = _validate({}, RowMode.ADD, catalog)
    assert outcome.reasons == [
        "Name is required",
        "Email is required",
        "Username is required",
        "Mobile is required",
        "Credit card is required",
        "State is required",
        "City is required",
        "Gender is required",
        "At least one hobby is required",
        "At least one tech interest is required",
        "DOB is required",
        "Password is required",
    ]


def test_address_is_optional_for_add(catalog):
    assert _validate(_full_add(address=None), RowMode.ADD, catalog).valid


def test_multiple_reasons_are_all_collected(catalog):
    outcome = _validate(
        _full_add(email="not-an-email", mobile="12345", gender="Unknown"), RowMode.ADD, catalog
    )
    assert outcome.reasons == [
        "Invalid email format",
        "Mobile must be exactly 10 digits",
        "Invalid gender 'Unknown'",
    ]


def test_malformed_dob_reported_once(catalog):
    outcome = _validate(_full_add(dob="05/17/1990"), RowMode.ADD, catalog)
    assert outcome.reasons == ["Invalid DOB (expected YYYY-MM-DD)"]


def test_blank_list_cell_counts_as_missing(catalog):
    outcome = _validate(_full_add(hobbies=" , "), RowMode.ADD, catalog)
    assert outcome.reasons == ["At least one hobby is required"]


def test_unknown_state(catalog):
    outcome = _validate(_full_add(state="Nowhereland"), RowMode.ADD, catalog)
    assert outcome.reasons == ["Invalid state 'Nowhereland'"]


def test_city_must_belong_to_state(catalog):
    outcome = _validate(_full_add(city="Guntur"), RowMode.ADD, catalog)
    assert outcome.reasons == ["City 'Guntur' does not belong to state 'Telangana'"]


def test_closed_vocabulary_lists(catalog):
    outcome = _validate(_full_add(hobbies="Reading, Knitting", tech_interests="Cobol"), RowMode.ADD, catalog)
    assert outcome.reasons == ["Invalid hobby 'Knitting'", "Invalid tech interest 'Cobol'"]


def test_add_card_needs_16_digits(catalog):
    outcome = _validate(_full_add(credit_card="1234"), RowMode.ADD, catalog)
    assert outcome.reasons == ["Credit card must be exactly 16 digits"]


def test_username_and_name_rules(catalog):
    outcome = _validate(_full_add(name="A", username="ab"), RowMode.ADD, catalog)
    assert outcome.reasons == [
        "Name must be at least 2 characters",
        "Username must be 4-20 characters (letters, numbers, . _ - allowed)",
    ]


def test_weak_password(catalog):
    outcome = _validate(_full_add(password="password"), RowMode.ADD, catalog)
    assert outcome.reasons == [PASSWORD_RULE]


def test_validate_password_rules():
    assert validate_password("Secret@123")
    assert not validate_password("Sec@1")
    assert not validate_password("secret@123")
    assert not validate_password("SECRET@123")
    assert not validate_password("Secret1234")
    assert not validate_password("Secret@abc")


def test_edit_row_only_needs_identifier(catalog):
    outcome = _validate({"identifier": "m-0001", "city": "Warangal", "state": "Telangana"}, RowMode.EDIT, catalog)
    assert outcome.valid


def test_edit_row_accepts_last4_card(catalog):
    outcome = _validate({"identifier": "m-0001", "credit_card": "************4242"}, RowMode.EDIT, catalog)
    assert outcome.valid
    outcome = _validate({"identifier": "m-0001", "credit_card": "42424"}, RowMode.EDIT, catalog)
    assert outcome.reasons == ["Credit card must be 16 digits (or the last 4 digits already on file)"]


def test_edit_row_without_identifier(catalog):
    outcome = validate_row({"identifier": None}, RowMode.EDIT, catalog)
    assert outcome.reasons == ["Identifier is required for EDIT rows"]


def test_city_without_state_must_be_known(catalog):
    assert _validate({"identifier": "m-1", "city": "Hyderabad"}, RowMode.EDIT, catalog).valid
    outcome = _validate({"identifier": "m-1", "city": "Atlantis"}, RowMode.EDIT, catalog)
    assert outcome.reasons == ["Invalid city 'Atlantis'"]
