"""
Security Policy Registry backend.

Handles the registry values that belong to the local security policy
(the "Registry Values" area of the security database). Keys are always
machine-wide; catalogs may address them with a ``MACHINE\\`` prefix, which
is stripped before the value is stored under HKLM.
"""

import logging
from typing import Dict, Sequence

from ..core.models import Backend, Hive, PolicyEntry
from .base import BaseBackend

logger = logging.getLogger(__name__)

MACHINE_PREFIX = "MACHINE\\"


def parse_registry_path(key_name: str) -> str:
    """Normalize a key path to its ``MACHINE\\`` form."""
    if key_name.upper().startswith(MACHINE_PREFIX):
        return key_name
    return MACHINE_PREFIX + key_name


def strip_machine_prefix(key_name: str) -> str:
    """Key path relative to HKLM."""
    if key_name.upper().startswith(MACHINE_PREFIX):
        return key_name[len(MACHINE_PREFIX):]
    return key_name


class SecurityPolicyRegistryBackend(BaseBackend):
    """
    Applying sets the value; removing resets it to the entry's default.

    Security policy values are never deleted, so every entry handled here
    must carry a default value.
    """

    backend = Backend.SECURITY_POLICY_REGISTRY

    def resolve_hive(self, entry: PolicyEntry) -> Hive:
        return Hive.HKLM

    def resolve_key(self, entry: PolicyEntry) -> str:
        return strip_machine_prefix(entry.key_name)

    def add_policies_to_system(self, entries: Sequence[PolicyEntry]) -> None:
        for entry in entries:
            if entry.reg_value is None:
                raise ValueError(
                    f"Security policy registry entry {entry.key_name}\\{entry.value_name} has no value to apply"
                )

        self.store.write_values([self.value_write(entry, entry.reg_value) for entry in entries])
        for entry in entries:
            logger.debug("APPLIED: %s\\%s", parse_registry_path(entry.key_name), entry.value_name)

        logger.info("Security policy registry application complete: %d policies applied", len(entries))

    def remove_policies_from_system(self, entries: Sequence[PolicyEntry]) -> None:
        for entry in entries:
            if entry.default_value is None:
                raise ValueError(
                    f"Security policy registry entry {entry.key_name}\\{entry.value_name} "
                    "must have a default value"
                )

        self.store.write_values([self.value_write(entry, entry.default_value) for entry in entries])
        for entry in entries:
            logger.debug("RESET TO DEFAULT: %s\\%s", parse_registry_path(entry.key_name), entry.value_name)

        logger.info("Security policy registry removal complete: %d policies reset", len(entries))

    def verify_policies_in_system(self, entries: Sequence[PolicyEntry]) -> Dict[PolicyEntry, bool]:
        results: Dict[PolicyEntry, bool] = {}

        for entry in entries:
            actual = self.read_entry_value(entry)
            results[entry] = self.is_compliant(entry, actual)
            if not results[entry]:
                logger.debug("VERIFY: %s\\%s = MISMATCH (expected: %s, actual: %s)",
                             entry.key_name, entry.value_name, entry.reg_value,
                             actual if actual is not None else "<not found>")

        logger.info("Security policy registry verification complete: %d of %d policies match",
                    sum(results.values()), len(entries))
        return results
