"""
Data-driven verification strategies declared in catalog files.

A verification strategy is the last tier of the verify fallback chain: it
decides whether a unit is applied when neither its own backend nor a plain
registry read confirms it.
"""

import logging
import shlex
import subprocess
from typing import Any, Dict, List, Sequence, Union

from ..backends.base import BaseBackend
from .models import PolicyEntry

logger = logging.getLogger(__name__)


class CommandVerification:
    """
    Runs a command and matches its output against desired values.

    Output is trimmed and stripped of surrounding quotes. Desired values are
    ``{"type": "string" | "int", "value": ...}`` mappings; strings match
    case-insensitively, ints numerically. Any match verifies.
    """

    def __init__(self, command: Union[str, Sequence[str]],
                 desired_values: List[Dict[str, Any]], timeout: int = 30):
        if not desired_values:
            raise ValueError("Command verification needs at least one desired value")
        for desired in desired_values:
            if desired.get("type", "string") not in ("string", "int"):
                raise ValueError(f"Unsupported desired value type: {desired.get('type')}")
            if "value" not in desired:
                raise ValueError("Desired value is missing 'value'")

        self.command = command
        self.desired_values = desired_values
        self.timeout = timeout

    def verify(self) -> bool:
        """
        Run the command and compare its output.

        Returns:
            bool: True if the output matches any desired value

        Raises:
            OSError: If the command cannot be started
            subprocess.TimeoutExpired: If the command does not finish in time
        """
        cmd_args = shlex.split(self.command) if isinstance(self.command, str) else list(self.command)

        result = subprocess.run(
            cmd_args,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            check=False
        )

        if result.returncode != 0:
            logger.debug("Verification command %s exited with %d: %s",
                         cmd_args[0], result.returncode, result.stderr.strip())
            return False

        output = result.stdout.strip().strip('"').strip("'")
        return any(self._matches(output, desired) for desired in self.desired_values)

    @staticmethod
    def _matches(output: str, desired: Dict[str, Any]) -> bool:
        if desired.get("type", "string") == "int":
            try:
                return int(output) == int(desired["value"])
            except ValueError:
                return False
        return output.casefold() == str(desired["value"]).casefold()


class RegistryValueVerification:
    """Verifies a unit through an alternate entry, e.g. a legacy key."""

    def __init__(self, entry: PolicyEntry, backend: BaseBackend):
        self.entry = entry
        self.backend = backend

    def verify(self) -> bool:
        results = self.backend.verify_policies_in_system([self.entry])
        return results.get(self.entry, False)
