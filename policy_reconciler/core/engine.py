"""
Engine facade for the policy reconciliation engine.

The PolicyEngine class wires the configuration, catalog, registries,
backend adapters and orchestrator together and exposes per-category
apply, remove and verify operations.
"""

import copy
import logging
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from ..backends.base import BaseBackend
from ..backends.factory import BackendFactory
from ..catalog.loader import CatalogLoader
from .cancellation import CancellationToken
from .exceptions import ConfigError
from .models import Backend, Operation, PolicyUnit, ReconciliationRun
from .orchestrator import ReconciliationOrchestrator
from .registry import DependencyRegistry, StrategyRegistry

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "catalog": {
        "definitions_dir": None
    },
    "backends": {
        "store": None,
        "policy_file": None
    },
    "engine": {
        "max_workers": 1
    }
}


class PolicyEngine:
    """
    Main entry point for reconciliation operations.

    Coordinates catalog loading, backend adapters and the orchestrator.
    """

    def __init__(self, config_path: Optional[str] = None,
                 backends: Optional[Mapping[Backend, BaseBackend]] = None):
        """
        Initialize the engine.

        Args:
            config_path: Path to configuration file (optional)
            backends: Adapters to use instead of the configured ones

        Raises:
            ConfigError: If the configuration file is unreadable or malformed
        """
        self.config = self._load_config(config_path)

        if backends is None:
            backends = BackendFactory.create_backends(
                store_kind=self.config["backends"].get("store"),
                policy_file=self.config["backends"].get("policy_file"),
            )
        self.backends = dict(backends)

        self.dependencies = DependencyRegistry()
        self.strategies = StrategyRegistry()
        self.catalog = CatalogLoader(
            definitions_dir=self.config["catalog"].get("definitions_dir"),
            dependencies=self.dependencies,
            strategies=self.strategies,
            backends=self.backends,
        )
        self.orchestrator = ReconciliationOrchestrator(
            self.backends,
            dependencies=self.dependencies,
            strategies=self.strategies,
            max_workers=self.config["engine"].get("max_workers", 1),
        )

    def list_categories(self) -> List[str]:
        return self.catalog.list_categories()

    def get_units(self, category: str, names: Optional[List[str]] = None,
                  intent: Optional[str] = None,
                  sub_categories: Optional[List[str]] = None) -> List[PolicyUnit]:
        return self.catalog.get_units(category, names, intent=intent, sub_categories=sub_categories)

    def apply(self, category: str, names: Optional[List[str]] = None,
              cancellation_token: Optional[CancellationToken] = None,
              intent: Optional[str] = None,
              sub_categories: Optional[List[str]] = None) -> ReconciliationRun:
        """
        Apply security measures of a category.

        Args:
            category: Catalog category
            names: Specific security measures to apply (selected by intent/sub-category if None)
            cancellation_token: Token to cancel the run
            intent: Device intent to select measures for
            sub_categories: Sub-categories to include alongside uncategorized measures

        Returns:
            ReconciliationRun: Run results
        """
        return self._run(Operation.APPLY, category, names, cancellation_token, intent, sub_categories)

    def remove(self, category: str, names: Optional[List[str]] = None,
               cancellation_token: Optional[CancellationToken] = None,
               intent: Optional[str] = None,
               sub_categories: Optional[List[str]] = None) -> ReconciliationRun:
        """Remove security measures of a category."""
        return self._run(Operation.REMOVE, category, names, cancellation_token, intent, sub_categories)

    def verify(self, category: str, names: Optional[List[str]] = None,
               cancellation_token: Optional[CancellationToken] = None,
               intent: Optional[str] = None,
               sub_categories: Optional[List[str]] = None) -> ReconciliationRun:
        """Verify security measures of a category without changing the system."""
        return self._run(Operation.VERIFY, category, names, cancellation_token, intent, sub_categories)

    def submit(self, operation: Operation, category: str, names: Optional[List[str]] = None,
               cancellation_token: Optional[CancellationToken] = None,
               intent: Optional[str] = None,
               sub_categories: Optional[List[str]] = None) -> "Future[ReconciliationRun]":
        """Start an operation on the orchestrator's background worker."""
        units = self.get_units(category, names, intent=intent, sub_categories=sub_categories)
        return self.orchestrator.process_units_async(
            units, Operation(operation),
            cancellation_token=cancellation_token,
            catalog=self.catalog.get_all_units(category),
        )

    def reload_catalog(self) -> None:
        """Reload catalog files, rebuilding dependencies and strategies."""
        self.catalog.reload()

    def close(self) -> None:
        self.orchestrator.shutdown()

    def _run(self, operation: Operation, category: str, names: Optional[List[str]],
             cancellation_token: Optional[CancellationToken], intent: Optional[str] = None,
             sub_categories: Optional[List[str]] = None) -> ReconciliationRun:
        units = self.get_units(category, names, intent=intent, sub_categories=sub_categories)
        return self.orchestrator.process_units(
            units, operation,
            cancellation_token=cancellation_token,
            catalog=self.catalog.get_all_units(category),
        )

    def _load_config(self, config_path: Optional[str]) -> Dict[str, Any]:
        """Load configuration from file or use defaults."""
        config = copy.deepcopy(DEFAULT_CONFIG)

        if not config_path or not Path(config_path).exists():
            return config

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                user_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read configuration {config_path}: {e}")

        if user_config is None:
            return config
        if not isinstance(user_config, dict):
            raise ConfigError(f"Configuration {config_path} must be a mapping")

        # Merge with defaults, one level deep
        for section, values in user_config.items():
            if isinstance(values, dict) and isinstance(config.get(section), dict):
                config[section].update(values)
            else:
                config[section] = values

        logger.debug("Loaded configuration from %s", config_path)
        return config
