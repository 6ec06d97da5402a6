"""
Input coercion helpers shared by routes and services.
"""

import pytest

from bookstack.validation import ValidationError, parse_page_list, require_positive_int


class TestRequirePositiveInt:

    @pytest.mark.parametrize("value,expected", [(3, 3), ("7", 7), (" 12 ", 12)])
    def test_accepts_plain_integers(self, value, expected):
        assert require_positive_int(value, "quantity") == expected

    @pytest.mark.parametrize(
        "value",
        [None, True, 1.5, "", "1.0", "1e3", "--5", "-+5", "²", "١٢", "0x10", "0", "-3", [1]],
    )
    def test_rejects_everything_else(self, value):
        with pytest.raises(ValidationError):
            require_positive_int(value, "quantity")

    def test_maximum(self):
        with pytest.raises(ValidationError):
            require_positive_int("1001", "quantity", maximum=1000)


class TestParsePageList:

    def test_valid_pages(self):
        assert parse_page_list([1, "4", 9]) == [1, 4, 9]

    @pytest.mark.parametrize("value", ["1,2", [0], ["--2"], ["³"]])
    def test_invalid_pages(self, value):
        with pytest.raises(ValidationError):
            parse_page_list(value)
