"""Tests for shipping normalization and validation."""

import pytest

from services.order.app.shipping import normalize_shipping, validate_shipping
from services.shared.errors import ValidationError


def test_normalize_trims_and_uppercases(shipping):
    raw = {**shipping, "name": "  Jane Doe ", "state": " tx", "country": "us "}
    addr = normalize_shipping(raw)

    assert addr.name == "Jane Doe"
    assert addr.state == "TX"
    assert addr.country == "US"
    assert addr.address2 == ""


def test_country_defaults_to_us(shipping):
    shipping.pop("country")
    assert normalize_shipping(shipping).country == "US"

    shipping["country"] = "   "
    assert normalize_shipping(shipping).country == "US"


def test_non_string_values_are_stringified(shipping):
    shipping["postal"] = 78701
    assert normalize_shipping(shipping).postal == "78701"


def test_valid_address_passes(shipping):
    validate_shipping(normalize_shipping(shipping))


def test_zip_plus_four_accepted(shipping):
    shipping["postal"] = "78701-1234"
    validate_shipping(normalize_shipping(shipping))


def test_missing_fields_are_all_named(shipping):
    shipping["name"] = " "
    shipping.pop("phone")

    with pytest.raises(ValidationError) as exc_info:
        validate_shipping(normalize_shipping(shipping))

    assert exc_info.value.fields == ["name", "phone"]
    assert "name, phone" in exc_info.value.message


def test_missing_everything():
    with pytest.raises(ValidationError) as exc_info:
        validate_shipping(normalize_shipping(None))

    # country defaults to US so it is never reported missing
    assert exc_info.value.fields == ["name", "email", "phone", "address1", "city", "state", "postal"]


@pytest.mark.parametrize("email", ["jane", "jane@", "@x.com", "jane@x", "ja ne@x.com"])
def test_invalid_email(shipping, email):
    shipping["email"] = email
    with pytest.raises(ValidationError) as exc_info:
        validate_shipping(normalize_shipping(shipping))
    assert exc_info.value.fields == ["email"]


@pytest.mark.parametrize("postal", ["7870", "787011", "78701-12", "ABCDE"])
def test_invalid_zip(shipping, postal):
    shipping["postal"] = postal
    with pytest.raises(ValidationError) as exc_info:
        validate_shipping(normalize_shipping(shipping))
    assert exc_info.value.fields == ["postal"]
    assert "ZIP" in exc_info.value.message


def test_non_us_country_rejected(shipping):
    shipping["country"] = "CA"
    with pytest.raises(ValidationError) as exc_info:
        validate_shipping(normalize_shipping(shipping))
    assert exc_info.value.fields == ["country"]
    assert "US" in exc_info.value.message
