"""
Unit tests for phone normalization.
"""
import pytest

from stkpay.exceptions import InvalidPhoneError
from stkpay.services.phone import normalize_phone


class TestNormalizePhone:

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", [
        "0712345678",
        "712345678",
        "254712345678",
        "+254712345678",
        "+254 712 345 678",
        "0712-345-678",
        " 0712345678 ",
    ])
    def test_accepted_shapes_share_canonical_form(self, raw: str) -> None:
        assert normalize_phone(raw) == "254712345678"

    @pytest.mark.unit
    def test_newer_prefixes_are_accepted(self) -> None:
        assert normalize_phone("0110123456") == "254110123456"

    @pytest.mark.unit
    def test_custom_country_code(self) -> None:
        assert normalize_phone("0712345678", country_code="255") == "255712345678"
        assert normalize_phone("255712345678", country_code="255") == "255712345678"

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", [
        "",
        "   ",
        "07123",
        "07123456789",
        "2547123456789",
        "0012345678",
        "07123abc78",
        "254012345678",
        None,
        712345678,
    ])
    def test_rejects_other_shapes(self, raw) -> None:
        with pytest.raises(InvalidPhoneError) as exc_info:
            normalize_phone(raw)
        assert exc_info.value.error_code == "invalid_phone"
        assert exc_info.value.status_code == 400
