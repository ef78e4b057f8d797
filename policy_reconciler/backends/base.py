"""
Base backend interface for bulk policy operations.

Defines the common interface that the Group Policy, Registry and
Security Policy Registry adapters implement.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Sequence

from ..core.models import Backend, Hive, PolicyEntry
from ..core.values import compare_reg_values
from .stores import ValueStore, ValueWrite


class BaseBackend(ABC):
    """
    Abstract base class for backend adapters.

    Every operation takes the whole batch of entries so an adapter can
    amortize I/O. Adapters validate the whole batch before the first
    write, so an invalid entry leaves the store untouched.
    """

    backend: Backend

    def __init__(self, store: ValueStore):
        """
        Initialize backend adapter.

        Args:
            store: Value store the adapter reads and writes
        """
        self.store = store

    @abstractmethod
    def add_policies_to_system(self, entries: Sequence[PolicyEntry]) -> None:
        """
        Write all entries to the system.

        Args:
            entries: Entries to apply

        Raises:
            Exception: If any entry cannot be written
        """
        pass

    @abstractmethod
    def remove_policies_from_system(self, entries: Sequence[PolicyEntry]) -> None:
        """
        Remove all entries from the system (or reset them to their defaults).

        Args:
            entries: Entries to remove

        Raises:
            Exception: If any entry cannot be removed
        """
        pass

    @abstractmethod
    def verify_policies_in_system(self, entries: Sequence[PolicyEntry]) -> Dict[PolicyEntry, bool]:
        """
        Check entries against the system without changing it.

        Args:
            entries: Entries to verify

        Returns:
            Dict[PolicyEntry, bool]: Compliance of each entry
        """
        pass

    def read_entry_value(self, entry: PolicyEntry) -> Optional[str]:
        """Read the current string form of an entry's value, None if absent."""
        return self.store.read_value(self.resolve_hive(entry), self.resolve_key(entry),
                                     entry.value_name, entry.type)

    def is_compliant(self, entry: PolicyEntry, actual: Optional[str]) -> bool:
        """Whether an observed value satisfies an entry."""
        if actual is None or entry.reg_value is None:
            return False
        return compare_reg_values(entry.type, actual, entry.reg_value)

    def value_write(self, entry: PolicyEntry, value: str) -> ValueWrite:
        """Pending store write of `value` for an entry."""
        return ValueWrite(self.resolve_hive(entry), self.resolve_key(entry),
                          entry.value_name, entry.type, value)

    def resolve_hive(self, entry: PolicyEntry) -> Hive:
        return entry.hive or Hive.HKLM

    def resolve_key(self, entry: PolicyEntry) -> str:
        return entry.key_name

