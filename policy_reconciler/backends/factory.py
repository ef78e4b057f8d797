"""
Backend factory for creating policy backend adapters.

Provides a unified interface for building the Group Policy, Registry and
Security Policy Registry adapters over the configured value stores.
"""

from pathlib import Path
from typing import Dict, Optional, Type

from ..core.models import Backend
from ..utils.os_detection import is_windows
from .base import BaseBackend
from .group_policy import GroupPolicyBackend
from .registry import RegistryBackend
from .security_policy import SecurityPolicyRegistryBackend
from .stores import MemoryStore, PolicyFileStore, ValueStore, WindowsRegistryStore


class BackendFactory:
    """
    Factory class for creating backend adapters.

    Maps each backend tag to its adapter class and wires adapters to
    value stores according to the engine configuration.
    """

    _backends: Dict[Backend, Type[BaseBackend]] = {
        Backend.GROUP_POLICY: GroupPolicyBackend,
        Backend.REGISTRY: RegistryBackend,
        Backend.SECURITY_POLICY_REGISTRY: SecurityPolicyRegistryBackend,
    }

    @classmethod
    def get_backend(cls, backend: Backend, store: ValueStore) -> BaseBackend:
        """
        Get adapter for the specified backend.

        Args:
            backend: Backend tag
            store: Value store the adapter operates on

        Returns:
            BaseBackend: Backend adapter instance

        Raises:
            ValueError: If the backend is not supported
        """
        if backend not in cls._backends:
            raise ValueError(f"Unsupported backend: {backend}")

        return cls._backends[backend](store)

    @classmethod
    def get_supported_backends(cls) -> list[Backend]:
        return list(cls._backends.keys())

    @classmethod
    def register_backend(cls, backend: Backend, backend_class: Type[BaseBackend]) -> None:
        """
        Register an adapter class for a backend tag.

        Args:
            backend: Backend tag to register for
            backend_class: Adapter class
        """
        cls._backends[backend] = backend_class

    @classmethod
    def create_backends(cls, store_kind: Optional[str] = None,
                        policy_file: Optional[str] = None) -> Dict[Backend, BaseBackend]:
        """
        Build one adapter per backend.

        Args:
            store_kind: ``memory`` or ``system``; defaults to ``system`` on
                Windows and ``memory`` elsewhere
            policy_file: File backing the Group Policy store for ``system``

        Returns:
            Dict[Backend, BaseBackend]: Adapters keyed by backend tag

        Raises:
            ValueError: If the store kind is unknown
        """
        if store_kind is None:
            store_kind = "system" if is_windows() else "memory"

        if store_kind == "memory":
            registry_store: ValueStore = MemoryStore()
            policy_store: ValueStore = MemoryStore()
        elif store_kind == "system":
            registry_store = WindowsRegistryStore()
            policy_store = PolicyFileStore(policy_file or str(_default_policy_file()))
        else:
            raise ValueError(f"Unknown store kind: {store_kind}")

        return {
            Backend.GROUP_POLICY: cls.get_backend(Backend.GROUP_POLICY, policy_store),
            Backend.REGISTRY: cls.get_backend(Backend.REGISTRY, registry_store),
            Backend.SECURITY_POLICY_REGISTRY: cls.get_backend(Backend.SECURITY_POLICY_REGISTRY, registry_store),
        }


def _default_policy_file() -> Path:
    """Default location of the Group Policy store file."""
    if is_windows():
        data_dir = Path.home() / "AppData" / "Roaming" / "policy-reconciler"
    else:
        data_dir = Path.home() / ".local" / "share" / "policy-reconciler"
    return data_dir / "machine_policies.yaml"
