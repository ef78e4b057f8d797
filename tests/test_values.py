"""
Unit tests for registry value conversions.
"""

import pytest

from policy_reconciler.core.exceptions import ValueFormatError
from policy_reconciler.core.models import RegistryValueType
from policy_reconciler.core.values import (
    build_reg_value, compare_reg_values, encode_reg_value, from_native_value,
    parse_data, split_multi_string, to_native_value
)

from conftest import make_entry


class TestParseData:
    """Test decoding of raw value data."""

    def test_dword(self):
        assert parse_data(RegistryValueType.REG_DWORD, b"\x01\x00\x00\x00") == 1

    def test_dword_is_unsigned(self):
        assert parse_data(RegistryValueType.REG_DWORD, b"\xff\xff\xff\xff") == 0xFFFFFFFF

    def test_short_dword_rejected(self):
        with pytest.raises(ValueFormatError):
            parse_data(RegistryValueType.REG_DWORD, b"\x01")

    def test_string_strips_terminator(self):
        assert parse_data(RegistryValueType.REG_SZ, "On\0".encode("utf-16-le")) == "On"

    def test_multi_string(self):
        data = "a\0b\0\0".encode("utf-16-le")
        assert parse_data(RegistryValueType.REG_MULTI_SZ, data) == ["a", "b"]

    def test_empty_data(self):
        assert parse_data(RegistryValueType.REG_QWORD, b"") is None


class TestBuildRegValue:
    """Test deriving the string form of an entry."""

    def test_from_dword_data(self):
        entry = make_entry("SOFTWARE\\Test", reg_value=None, data=(537395200).to_bytes(4, "little"))
        assert build_reg_value(entry) == "537395200"

    def test_from_multi_string_data(self):
        entry = make_entry("SOFTWARE\\Test", type=RegistryValueType.REG_MULTI_SZ, reg_value=None,
                           data="one\0two\0\0".encode("utf-16-le"))
        assert build_reg_value(entry) == "one;two"

    def test_from_binary_data(self):
        entry = make_entry("SOFTWARE\\Test", type=RegistryValueType.REG_BINARY, reg_value=None, data=b"\x00\x01")
        assert build_reg_value(entry) == "AAE="

    def test_no_data(self):
        """Test entries without data cannot produce a string form."""
        entry = make_entry("SOFTWARE\\Test", reg_value=None, data=b"")
        with pytest.raises(ValueFormatError, match="no data"):
            build_reg_value(entry)

    def test_reg_none(self):
        entry = make_entry("SOFTWARE\\Test", type=RegistryValueType.REG_NONE, reg_value=None, data=b"\x00")
        with pytest.raises(ValueFormatError, match="REG_NONE"):
            build_reg_value(entry)


class TestEncodeRegValue:
    """Test encoding of string forms."""

    def test_dword(self):
        assert encode_reg_value(RegistryValueType.REG_DWORD, "1") == b"\x01\x00\x00\x00"

    def test_negative_dword_wraps(self):
        assert encode_reg_value(RegistryValueType.REG_DWORD, "-1") == b"\xff\xff\xff\xff"

    def test_invalid_dword(self):
        with pytest.raises(ValueFormatError, match="not a valid REG_DWORD"):
            encode_reg_value(RegistryValueType.REG_DWORD, "yes")

    def test_invalid_binary(self):
        with pytest.raises(ValueFormatError):
            encode_reg_value(RegistryValueType.REG_BINARY, "not base64!")

    def test_none(self):
        assert encode_reg_value(RegistryValueType.REG_SZ, None) == b""

    def test_string_roundtrip(self):
        data = encode_reg_value(RegistryValueType.REG_EXPAND_SZ, "%SystemRoot%")
        assert parse_data(RegistryValueType.REG_EXPAND_SZ, data) == "%SystemRoot%"


class TestNativeValues:
    """Test conversions to and from registry API values."""

    def test_split_multi_string(self):
        assert split_multi_string("") == []
        assert split_multi_string("a;b") == ["a", "b"]

    def test_to_native(self):
        assert to_native_value(RegistryValueType.REG_QWORD, "5") == 5
        assert to_native_value(RegistryValueType.REG_MULTI_SZ, "a;b") == ["a", "b"]
        assert to_native_value(RegistryValueType.REG_SZ, "On") == "On"

    def test_to_native_invalid_int(self):
        with pytest.raises(ValueFormatError):
            to_native_value(RegistryValueType.REG_DWORD, "abc")

    def test_from_native(self):
        assert from_native_value(RegistryValueType.REG_DWORD, -1) == "4294967295"
        assert from_native_value(RegistryValueType.REG_MULTI_SZ, ["a", "b"]) == "a;b"
        assert from_native_value(RegistryValueType.REG_BINARY, b"\x00\x01") == "AAE="

    @pytest.mark.parametrize("value_type,value", [
        (RegistryValueType.REG_DWORD, "abc"),
        (RegistryValueType.REG_QWORD, None),
        (RegistryValueType.REG_MULTI_SZ, 5),
    ])
    def test_from_native_wrong_type(self, value_type, value):
        with pytest.raises(ValueFormatError, match=f"not a valid {value_type.value}"):
            from_native_value(value_type, value)


class TestCompareRegValues:
    """Test type-aware comparison of string forms."""

    def test_strings_ignore_case(self):
        assert compare_reg_values(RegistryValueType.REG_SZ, "ON", "on")
        assert not compare_reg_values(RegistryValueType.REG_SZ, "On", "Off")

    def test_integers_compare_numerically(self):
        assert compare_reg_values(RegistryValueType.REG_DWORD, "01", "1")
        assert compare_reg_values(RegistryValueType.REG_DWORD, "-1", "4294967295")
        assert not compare_reg_values(RegistryValueType.REG_DWORD, "2", "1")

    def test_invalid_integer_is_mismatch(self):
        assert not compare_reg_values(RegistryValueType.REG_DWORD, "abc", "1")

    def test_multi_strings_compare_elementwise(self):
        assert compare_reg_values(RegistryValueType.REG_MULTI_SZ, "A;b", "a;B")
        assert not compare_reg_values(RegistryValueType.REG_MULTI_SZ, "a;b", "a")
