"""
Value stores the backend adapters read from and write to.

A store knows how to persist one value addressed by hive, key path and
value name. Values cross the store boundary in their string form (see
:mod:`policy_reconciler.core.values`).
"""

import logging
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, NamedTuple, Optional, Sequence, Tuple

import yaml

from ..core.exceptions import ValueFormatError
from ..core.models import Hive, RegistryValueType
from ..core.values import from_native_value, to_native_value

logger = logging.getLogger(__name__)


class ValueWrite(NamedTuple):
    """One pending write in a batch."""
    hive: Hive
    key_name: str
    value_name: str
    value_type: RegistryValueType
    value: str


class ValueStore(ABC):
    """Abstract hive/key/value store."""

    @abstractmethod
    def read_value(self, hive: Hive, key_name: str, value_name: str,
                   value_type: RegistryValueType) -> Optional[str]:
        """
        Read a value.

        Returns:
            Optional[str]: String form of the value, None if key or value is missing
        """
        pass

    @abstractmethod
    def write_value(self, hive: Hive, key_name: str, value_name: str,
                    value_type: RegistryValueType, value: str) -> None:
        """Create or overwrite a value, creating the key if needed."""
        pass

    @abstractmethod
    def delete_value(self, hive: Hive, key_name: str, value_name: str) -> bool:
        """
        Delete a value.

        Returns:
            bool: True if the value existed
        """
        pass

    def write_values(self, writes: Sequence[ValueWrite]) -> None:
        """Write a batch of values. Stores with costly persistence override this."""
        for write in writes:
            self.write_value(*write)

    def delete_values(self, addresses: Sequence[Tuple[Hive, str, str]]) -> int:
        """
        Delete a batch of values.

        Returns:
            int: Number of values that existed
        """
        return sum(1 for hive, key_name, value_name in addresses
                   if self.delete_value(hive, key_name, value_name))


def _address(hive: Hive, key_name: str, value_name: str) -> Tuple[str, str, str]:
    return (Hive(hive).value, key_name.strip("\\").casefold(), value_name.casefold())


class MemoryStore(ValueStore):
    """
    Dictionary-backed store.

    Used for dry runs on machines without a registry and by the test suite.
    Key and value names are case-insensitive.
    """

    def __init__(self, initial: Optional[Dict[Tuple[str, str, str], str]] = None):
        self._values: Dict[Tuple[str, str, str], str] = {}
        for (hive, key_name, value_name), value in (initial or {}).items():
            self._values[_address(hive, key_name, value_name)] = value

    def read_value(self, hive, key_name, value_name, value_type):
        return self._values.get(_address(hive, key_name, value_name))

    def write_value(self, hive, key_name, value_name, value_type, value):
        self._values[_address(hive, key_name, value_name)] = value

    def delete_value(self, hive, key_name, value_name):
        return self._values.pop(_address(hive, key_name, value_name), None) is not None

    def __len__(self) -> int:
        return len(self._values)


_STRING_KINDS = (RegistryValueType.REG_SZ, RegistryValueType.REG_EXPAND_SZ)


class WindowsRegistryStore(ValueStore):
    """Store backed by the live Windows registry through ``winreg``."""

    def __init__(self):
        if sys.platform != "win32":
            raise RuntimeError("The Windows registry store is only available on Windows")
        import winreg
        self._winreg = winreg
        self._roots = {
            Hive.HKLM: winreg.HKEY_LOCAL_MACHINE,
            Hive.HKCU: winreg.HKEY_CURRENT_USER,
            Hive.HKCR: winreg.HKEY_CLASSES_ROOT,
        }
        self._kinds = {
            RegistryValueType.REG_NONE: winreg.REG_NONE,
            RegistryValueType.REG_SZ: winreg.REG_SZ,
            RegistryValueType.REG_EXPAND_SZ: winreg.REG_EXPAND_SZ,
            RegistryValueType.REG_BINARY: winreg.REG_BINARY,
            RegistryValueType.REG_DWORD: winreg.REG_DWORD,
            RegistryValueType.REG_MULTI_SZ: winreg.REG_MULTI_SZ,
            RegistryValueType.REG_QWORD: winreg.REG_QWORD,
        }
        self._types = {kind: value_type for value_type, kind in self._kinds.items()}

    def read_value(self, hive, key_name, value_name, value_type):
        """
        Read a value from the registry.

        A value stored with a different type than expected reads as absent,
        so it never verifies as compliant.
        """
        try:
            with self._winreg.OpenKey(self._roots[Hive(hive)], key_name) as key:
                value, kind = self._winreg.QueryValueEx(key, value_name)
        except FileNotFoundError:
            return None

        actual_type = self._types.get(kind)
        expected_type = RegistryValueType(value_type)
        both_strings = actual_type in _STRING_KINDS and expected_type in _STRING_KINDS
        if actual_type != expected_type and not both_strings:
            logger.warning("%s\\%s\\%s holds %s data, expected %s",
                           Hive(hive).value, key_name, value_name,
                           actual_type.value if actual_type else kind, expected_type.value)
            return None

        try:
            return from_native_value(expected_type, value)
        except ValueFormatError as e:
            logger.warning("Unreadable value %s\\%s\\%s: %s", Hive(hive).value, key_name, value_name, e)
            return None

    def write_value(self, hive, key_name, value_name, value_type, value):
        native = to_native_value(value_type, value)
        if value_type == RegistryValueType.REG_DWORD:
            native &= 0xFFFFFFFF
        elif value_type == RegistryValueType.REG_QWORD:
            native &= 0xFFFFFFFFFFFFFFFF

        with self._winreg.CreateKeyEx(self._roots[Hive(hive)], key_name, 0,
                                      self._winreg.KEY_SET_VALUE) as key:
            self._winreg.SetValueEx(key, value_name, 0, self._kinds[value_type], native)

    def delete_value(self, hive, key_name, value_name):
        try:
            with self._winreg.OpenKey(self._roots[Hive(hive)], key_name, 0,
                                      self._winreg.KEY_SET_VALUE) as key:
                self._winreg.DeleteValue(key, value_name)
        except FileNotFoundError:
            return False
        return True


class PolicyFileStore(ValueStore):
    """
    Store persisted to a YAML file.

    Stands in for the machine Group Policy store: values written here are
    policy settings, separate from the live registry state that the
    registry fallback verification reads. Batch writes and deletes load and
    save the file once.
    """

    def __init__(self, path: str):
        """
        Initialize policy file store.

        Args:
            path: YAML file holding the stored values (created on first write)
        """
        self.path = Path(path)

    def read_value(self, hive, key_name, value_name, value_type):
        record = self._load().get(self._record_key(hive, key_name, value_name))
        if record is None:
            return None
        return str(record["value"])

    def write_value(self, hive, key_name, value_name, value_type, value):
        self.write_values([ValueWrite(hive, key_name, value_name, value_type, value)])

    def delete_value(self, hive, key_name, value_name):
        return self.delete_values([(hive, key_name, value_name)]) == 1

    def write_values(self, writes):
        if not writes:
            return
        records = self._load()
        for hive, key_name, value_name, value_type, value in writes:
            records[self._record_key(hive, key_name, value_name)] = {
                "hive": Hive(hive).value,
                "key_name": key_name,
                "value_name": value_name,
                "type": RegistryValueType(value_type).value,
                "value": value,
            }
        self._save(records)

    def delete_values(self, addresses):
        records = self._load()
        removed = 0
        for hive, key_name, value_name in addresses:
            if records.pop(self._record_key(hive, key_name, value_name), None) is not None:
                removed += 1
        if removed:
            self._save(records)
        return removed

    @staticmethod
    def _record_key(hive, key_name, value_name) -> str:
        return "\\".join(_address(hive, key_name, value_name))

    def _load(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        with open(self.path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        return data or {}

    def _save(self, records: Dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(records, f, default_flow_style=False, indent=2, allow_unicode=True)
