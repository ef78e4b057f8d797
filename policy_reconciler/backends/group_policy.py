"""
Group Policy backend for security measures delivered as machine policies.
"""

import logging
from typing import Dict, Optional, Sequence, Tuple

from ..core.models import Backend, PolicyEntry
from ..core.values import encode_reg_value
from .base import BaseBackend

logger = logging.getLogger(__name__)


class GroupPolicyBackend(BaseBackend):
    """
    Writes, removes and verifies entries in the machine policy store.

    Verification can also report the value observed in the store for each
    entry, for diagnostics.
    """

    backend = Backend.GROUP_POLICY

    def add_policies_to_system(self, entries: Sequence[PolicyEntry]) -> None:
        for entry in entries:
            if entry.reg_value is None:
                raise ValueError(f"Group Policy entry {entry.policy_id} has no value to apply")

        self.store.write_values([self.value_write(entry, entry.reg_value) for entry in entries])

        logger.info("Group Policy application complete: %d policies applied", len(entries))

    def remove_policies_from_system(self, entries: Sequence[PolicyEntry]) -> None:
        removed = self.store.delete_values(
            [(self.resolve_hive(entry), self.resolve_key(entry), entry.value_name) for entry in entries]
        )

        logger.info("Group Policy removal complete: %d of %d policies were present",
                    removed, len(entries))

    def verify_policies_in_system(self, entries: Sequence[PolicyEntry]) -> Dict[PolicyEntry, bool]:
        return {
            entry: compliant
            for entry, (compliant, _observed) in self.verify_policies_with_details(entries).items()
        }

    def verify_policies_with_details(
        self, entries: Sequence[PolicyEntry]
    ) -> Dict[PolicyEntry, Tuple[bool, Optional[PolicyEntry]]]:
        """
        Verify entries and report what the policy store actually holds.

        Returns:
            Dict mapping each entry to (is compliant, observed entry or None)
        """
        results: Dict[PolicyEntry, Tuple[bool, Optional[PolicyEntry]]] = {}

        for entry in entries:
            actual = self.read_entry_value(entry)
            observed = None
            if actual is not None:
                data = encode_reg_value(entry.type, actual)
                observed = entry.model_copy(update={"reg_value": actual, "data": data, "size": len(data)})

            compliant = self.is_compliant(entry, actual)
            results[entry] = (compliant, observed)
            if not compliant:
                logger.debug("VERIFY: %s = MISMATCH (expected: %s, actual: %s)",
                             entry.policy_id, entry.reg_value, actual if actual is not None else "<not found>")

        logger.info("Group Policy verification complete: %d of %d policies match",
                    sum(1 for compliant, _ in results.values() if compliant), len(entries))
        return results
