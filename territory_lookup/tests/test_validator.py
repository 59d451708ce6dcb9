import pytest

from territory_lookup.errors import ErrorCode, ResolutionError
from territory_lookup.models import RawAddress
from territory_lookup.validator import (
    is_supported_postal_code,
    split_postal_code,
    validate_address,
    validate_postal_code,
)


@pytest.mark.parametrize("raw, code", [
    ("7520", ErrorCode.INVALID_LENGTH),
    ("752011", ErrorCode.INVALID_LENGTH),
    ("", ErrorCode.INVALID_LENGTH),
    ("ABCDE", ErrorCode.INVALID_CHARACTERS),
    ("7520a", ErrorCode.INVALID_CHARACTERS),
])
def test_format_errors(raw, code):
    result = validate_postal_code(raw)
    assert not result.is_valid
    assert result.error_code == code


def test_valid_in_region():
    result = validate_postal_code("75201")
    assert result.is_valid
    assert result.zip_code == "75201"
    assert result.error_code is None


def test_non_digits_are_stripped():
    assert validate_postal_code(" 75 201 ").is_valid


def test_outside_region_has_suggestions():
    result = validate_postal_code("10001")
    assert not result.is_valid
    assert result.error_code == ErrorCode.NOT_SUPPORTED_REGION
    assert result.suggestions
    assert "75201" in result.suggestions


def test_outside_national_envelope():
    result = validate_postal_code("00100")
    assert result.error_code == ErrorCode.NOT_NATIONAL_FORMAT
    assert validate_postal_code("99999").error_code == ErrorCode.NOT_NATIONAL_FORMAT


def test_second_supported_range():
    assert is_supported_postal_code("88510")
    assert is_supported_postal_code("79999")
    assert not is_supported_postal_code("88600")
    assert not is_supported_postal_code("75000")


def test_split_postal_code():
    assert split_postal_code("75201-1234") == ("75201", "1234")
    assert split_postal_code("75201") == ("75201", None)
    assert split_postal_code("bad") == ("bad", None)


def test_validate_address_splits_combined_zip():
    raw = RawAddress(street=" 1 Main St ", city="Dallas", state="texas", zip_code="75201-1234")
    clean = validate_address(raw)
    assert clean.zip_code == "75201"
    assert clean.zip4 == "1234"
    assert clean.state == "TX"
    assert clean.street == "1 Main St"


def test_validate_address_rejects_missing_street():
    with pytest.raises(ResolutionError) as exc:
        validate_address(RawAddress(street="", city="Dallas", state="TX", zip_code="75201"))
    assert exc.value.code == ErrorCode.INVALID_ADDRESS


def test_validate_address_rejects_other_states():
    with pytest.raises(ResolutionError) as exc:
        validate_address(RawAddress(street="1 Main St", city="Tulsa", state="OK", zip_code="75201"))
    assert exc.value.code == ErrorCode.NOT_SUPPORTED_REGION


def test_validate_address_rejects_bad_zip4():
    with pytest.raises(ResolutionError) as exc:
        validate_address(RawAddress(street="1 Main St", city="Dallas", state="TX", zip_code="75201", zip4="12"))
    assert exc.value.code == ErrorCode.INVALID_LENGTH


def test_error_to_dict_is_user_facing():
    err = validate_postal_code("10001").to_error()
    d = err.to_dict()
    assert d["code"] == "NOT_SUPPORTED_REGION"
    assert d["message"] == "This ZIP code is not in Texas"
    assert d["suggestions"]


@pytest.mark.parametrize("raw", [
    "７５００１",   # full-width 75001
    "٧٥٠٠١",   # Arabic-Indic 75001
    "75００１",
])
def test_non_ascii_digits_rejected(raw):
    result = validate_postal_code(raw)
    assert not result.is_valid
    assert result.error_code == ErrorCode.INVALID_CHARACTERS
    assert not is_supported_postal_code(raw)


def test_non_ascii_zip4_rejected():
    with pytest.raises(ResolutionError) as exc:
        validate_address(RawAddress(street="1 Main St", city="Dallas", state="TX",
                                    zip_code="75201", zip4="１２３４"))
    assert exc.value.code == ErrorCode.INVALID_LENGTH
