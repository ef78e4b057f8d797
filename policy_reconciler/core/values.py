"""
Conversions between raw registry value data and its string form.

The string form (``reg_value``) is what catalogs author and what the
registry-style backends write and compare:

- REG_SZ / REG_EXPAND_SZ: the text itself
- REG_DWORD / REG_QWORD: unsigned decimal integer
- REG_BINARY: base64
- REG_MULTI_SZ: strings joined with ``;``
"""

import base64
import binascii
from typing import Any, List, Optional

from .exceptions import ValueFormatError
from .models import PolicyEntry, RegistryValueType

SEPARATOR = ";"

_DWORD_MASK = 0xFFFFFFFF
_QWORD_MASK = 0xFFFFFFFFFFFFFFFF

_STRING_TYPES = (RegistryValueType.REG_SZ, RegistryValueType.REG_EXPAND_SZ)


def parse_data(value_type: RegistryValueType, data: bytes) -> Any:
    """
    Decode raw value data into a Python value.

    Args:
        value_type: Registry value type of the data
        data: Raw little-endian / UTF-16 data

    Returns:
        Any: str, int, list of str or bytes; None for empty data

    Raises:
        ValueFormatError: If integer data is too short for its type
    """
    if not data:
        return None

    if value_type in _STRING_TYPES:
        return data.decode("utf-16-le", errors="replace").rstrip("\0")
    if value_type == RegistryValueType.REG_DWORD:
        if len(data) < 4:
            raise ValueFormatError(f"REG_DWORD data must be 4 bytes, got {len(data)}")
        return int.from_bytes(data[:4], "little")
    if value_type == RegistryValueType.REG_QWORD:
        if len(data) < 8:
            raise ValueFormatError(f"REG_QWORD data must be 8 bytes, got {len(data)}")
        return int.from_bytes(data[:8], "little")
    if value_type == RegistryValueType.REG_MULTI_SZ:
        text = data.decode("utf-16-le", errors="replace")
        return [part for part in text.split("\0") if part]
    return bytes(data)


def build_reg_value(entry: PolicyEntry) -> str:
    """
    Derive the string form of an entry's value from its type and data.

    Raises:
        ValueFormatError: If the entry has no data or an unsupported type
    """
    if entry.type == RegistryValueType.REG_NONE:
        raise ValueFormatError(f"Cannot derive a string value for REG_NONE entry {entry.policy_id}")

    parsed = parse_data(entry.type, entry.data)
    if parsed is None:
        raise ValueFormatError(f"Entry {entry.policy_id} has no data to derive a string value from")

    if entry.type in _STRING_TYPES:
        return parsed
    if entry.type in (RegistryValueType.REG_DWORD, RegistryValueType.REG_QWORD):
        return str(parsed)
    if entry.type == RegistryValueType.REG_MULTI_SZ:
        return SEPARATOR.join(parsed)
    return base64.b64encode(parsed).decode("ascii")


def encode_reg_value(value_type: RegistryValueType, text: Optional[str]) -> bytes:
    """
    Encode a string form into raw value data.

    Raises:
        ValueFormatError: If the text does not fit the value type
    """
    if text is None or value_type == RegistryValueType.REG_NONE:
        return b""

    try:
        if value_type in _STRING_TYPES:
            return (text + "\0").encode("utf-16-le")
        if value_type == RegistryValueType.REG_DWORD:
            return (int(text) & _DWORD_MASK).to_bytes(4, "little")
        if value_type == RegistryValueType.REG_QWORD:
            return (int(text) & _QWORD_MASK).to_bytes(8, "little")
        if value_type == RegistryValueType.REG_MULTI_SZ:
            parts = split_multi_string(text)
            return ("\0".join(parts) + "\0\0").encode("utf-16-le")
        return base64.b64decode(text, validate=True)
    except (ValueError, binascii.Error) as e:
        raise ValueFormatError(f"Value {text!r} is not a valid {value_type.value}: {e}")


def split_multi_string(text: str) -> List[str]:
    """Split a ``;`` separated multi-string; empty text is an empty list."""
    if text == "":
        return []
    return text.split(SEPARATOR)


def to_native_value(value_type: RegistryValueType, text: str) -> Any:
    """Convert a string form to the value a registry API expects for the type."""
    if value_type in (RegistryValueType.REG_DWORD, RegistryValueType.REG_QWORD):
        try:
            return int(text)
        except ValueError:
            raise ValueFormatError(f"Value {text!r} is not a valid {value_type.value}")
    if value_type == RegistryValueType.REG_MULTI_SZ:
        return split_multi_string(text)
    if value_type == RegistryValueType.REG_BINARY:
        return encode_reg_value(value_type, text)
    return text


def from_native_value(value_type: RegistryValueType, value: Any) -> str:
    """
    Inverse of :func:`to_native_value`: render a value read from a store.

    Raises:
        ValueFormatError: If the value cannot be rendered as the given type
    """
    try:
        if value_type in (RegistryValueType.REG_DWORD, RegistryValueType.REG_QWORD):
            mask = _DWORD_MASK if value_type == RegistryValueType.REG_DWORD else _QWORD_MASK
            return str(int(value) & mask)
        if value_type == RegistryValueType.REG_MULTI_SZ:
            if isinstance(value, str):
                return value
            return SEPARATOR.join(value)
    except (TypeError, ValueError) as e:
        raise ValueFormatError(f"Value {value!r} is not a valid {value_type.value}: {e}")
    if value_type == RegistryValueType.REG_BINARY and isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    return str(value)


def compare_reg_values(value_type: RegistryValueType, actual: str, expected: str) -> bool:
    """
    Compare two string forms according to the value type.

    Strings compare case-insensitively, integers numerically and
    multi-strings element-wise.
    """
    if value_type in (RegistryValueType.REG_DWORD, RegistryValueType.REG_QWORD):
        mask = _DWORD_MASK if value_type == RegistryValueType.REG_DWORD else _QWORD_MASK
        try:
            return (int(actual) & mask) == (int(expected) & mask)
        except ValueError:
            return False

    if value_type == RegistryValueType.REG_MULTI_SZ:
        actual_parts = actual.split(SEPARATOR)
        expected_parts = expected.split(SEPARATOR)
        return len(actual_parts) == len(expected_parts) and all(
            a.casefold() == e.casefold() for a, e in zip(actual_parts, expected_parts)
        )

    return actual.casefold() == expected.casefold()
