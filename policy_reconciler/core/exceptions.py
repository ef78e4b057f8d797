"""
Exception hierarchy for the policy reconciliation engine.

Backend, hook and fallback-verification failures are not wrapped: they
propagate to the caller unchanged after being logged by the orchestrator.
"""


class PolicyEngineError(Exception):
    """Base exception for all policy engine errors."""


class OperationCancelledError(PolicyEngineError):
    """
    A reconciliation run was cancelled through its cancellation token.

    Distinguished from every other failure: the orchestrator re-raises it
    without error logging.
    """

    def __init__(self, message: str = "Operation was cancelled"):
        super().__init__(message)


class CatalogError(PolicyEngineError):
    """
    A policy catalog file could not be turned into policy units.

    Raised at load time, before any unit reaches the orchestrator.

    Attributes:
        path: Catalog file that was rejected (if known)
    """

    def __init__(self, message: str, path=None):
        self.path = path
        if path is not None:
            message = f"{message} ({path})"
        super().__init__(message)


class ValueFormatError(PolicyEngineError, ValueError):
    """The string form of a registry value cannot be derived from its data."""


class ConfigError(PolicyEngineError):
    """The engine configuration file is unreadable or malformed."""
