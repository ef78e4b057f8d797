"""
Registry backend for security measures stored directly as registry values.
"""

import logging
from typing import Dict, Sequence

from ..core.models import Backend, PolicyEntry
from .base import BaseBackend

logger = logging.getLogger(__name__)


class RegistryBackend(BaseBackend):
    """
    Writes, resets and verifies plain registry values.

    Removing an entry deletes its value, or resets it to the entry's
    default when one is set.
    """

    backend = Backend.REGISTRY

    def add_policies_to_system(self, entries: Sequence[PolicyEntry]) -> None:
        for entry in entries:
            if entry.reg_value is None:
                raise ValueError(f"Registry entry {entry.policy_id} has no value to apply")

        self.store.write_values([self.value_write(entry, entry.reg_value) for entry in entries])
        for entry in entries:
            logger.debug("Applied %s\\%s\\%s", self.resolve_hive(entry).value,
                         entry.key_name, entry.value_name)

        logger.info("Registry application complete: %d policies applied", len(entries))

    def remove_policies_from_system(self, entries: Sequence[PolicyEntry]) -> None:
        deletes = [(self.resolve_hive(entry), self.resolve_key(entry), entry.value_name)
                   for entry in entries if entry.default_value is None]
        resets = [self.value_write(entry, entry.default_value)
                  for entry in entries if entry.default_value is not None]

        self.store.delete_values(deletes)
        self.store.write_values(resets)
        for hive, key_name, value_name in deletes:
            logger.debug("Removed %s\\%s\\%s", hive.value, key_name, value_name)
        for write in resets:
            logger.debug("Reset %s\\%s\\%s to default", write.hive.value, write.key_name, write.value_name)

        logger.info("Registry removal complete: %d policies removed", len(entries))

    def verify_policies_in_system(self, entries: Sequence[PolicyEntry]) -> Dict[PolicyEntry, bool]:
        results: Dict[PolicyEntry, bool] = {}

        for entry in entries:
            actual = self.read_entry_value(entry)
            results[entry] = self.is_compliant(entry, actual)
            logger.debug("VERIFY: %s = %s", entry.policy_id, "MATCH" if results[entry] else "MISMATCH")

        logger.info("Registry verification complete: %d of %d policies match",
                    sum(results.values()), len(entries))
        return results
