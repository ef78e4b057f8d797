"""
Catalog loader for policy unit definitions.

Loads one YAML file per category, turns every policy into a policy unit
and registers the file's dependencies and verification strategies.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple

import yaml
from pydantic import ValidationError

from ..backends.base import BaseBackend
from ..core.exceptions import CatalogError, ValueFormatError
from ..core.models import (
    Backend, BackendAction, DependencyType, ExecutionTiming, Hive, PolicyEntry,
    PolicyUnit, RegistryValueType
)
from ..core.registry import DependencyRegistry, StrategyRegistry
from ..core.strategies import CommandVerification, RegistryValueVerification
from ..core.values import encode_reg_value
from .selection import select_units

logger = logging.getLogger(__name__)


class _ParsedCatalog(NamedTuple):
    category: str
    units: List[PolicyUnit]
    edges: List[Tuple[str, str, DependencyType, ExecutionTiming]]
    verifications: List[Tuple[str, Any]]


class CatalogLoader:
    """
    Manages loading of policy catalogs.

    A file is accepted or rejected as a whole: any invalid policy,
    dependency or verification raises CatalogError and nothing from that
    file is registered.
    """

    def __init__(self, definitions_dir: Optional[str] = None,
                 dependencies: Optional[DependencyRegistry] = None,
                 strategies: Optional[StrategyRegistry] = None,
                 backends: Optional[Mapping[Backend, BaseBackend]] = None):
        """
        Initialize catalog loader.

        Args:
            definitions_dir: Directory containing catalog YAML files (uses packaged definitions if None)
            dependencies: Registry that receives dependency edges
            strategies: Registry that receives verification strategies
            backends: Adapters used by registry-value verifications
        """
        if definitions_dir:
            self.definitions_dir = Path(definitions_dir)
        else:
            self.definitions_dir = Path(__file__).parent / "definitions"

        self.dependencies = dependencies if dependencies is not None else DependencyRegistry()
        self.strategies = strategies if strategies is not None else StrategyRegistry()
        self.backends = dict(backends or {})

        self._catalog_cache: Optional[Dict[str, List[PolicyUnit]]] = None

    def list_categories(self) -> List[str]:
        """Names of all loaded categories, sorted."""
        return sorted(self._load_all())

    def get_units(self, category: str, names: Optional[List[str]] = None,
                  intent: Optional[str] = None,
                  sub_categories: Optional[List[str]] = None) -> List[PolicyUnit]:
        """
        Get the units of a category.

        Without names, the units are selected by device intent or
        sub-category and conflicting measures are resolved. Names pick
        units explicitly and bypass that selection.

        Args:
            category: Category name
            names: Only return units with these names (case-insensitive)
            intent: Device intent to select units for
            sub_categories: Sub-categories to include alongside uncategorized units

        Returns:
            List[PolicyUnit]: Units in catalog order

        Raises:
            CatalogError: If the category or a requested name does not exist
        """
        catalog = self._load_all()
        if category not in catalog:
            raise CatalogError(f"Unknown category: {category}")

        units = catalog[category]
        if not names:
            return select_units(units, intent=intent, sub_categories=sub_categories)

        by_name = {(u.name or "").casefold(): u for u in units}
        selected = []
        for name in names:
            unit = by_name.get(name.casefold())
            if unit is None:
                raise CatalogError(f"Category {category} has no security measure named '{name}'")
            selected.append(unit)
        return selected

    def get_all_units(self, category: str) -> List[PolicyUnit]:
        """Every unit of a category, without selection or conflict resolution."""
        catalog = self._load_all()
        if category not in catalog:
            raise CatalogError(f"Unknown category: {category}")
        return list(catalog[category])

    def reload(self) -> None:
        """Force reload of catalogs from files, clearing the registries."""
        self._catalog_cache = None
        self.dependencies.clear()
        self.strategies.clear()

    def _load_all(self) -> Dict[str, List[PolicyUnit]]:
        """
        Load all catalogs with caching.

        The registries are only filled once every file in the directory
        has been validated.
        """
        if self._catalog_cache is not None:
            return self._catalog_cache

        catalog: Dict[str, List[PolicyUnit]] = {}
        parsed: List[_ParsedCatalog] = []

        if not self.definitions_dir.is_dir():
            raise CatalogError("Catalog definitions directory does not exist", self.definitions_dir)

        for yaml_file in sorted(self.definitions_dir.glob("*.yaml")):
            result = self._parse_file(yaml_file)
            if result.category in catalog:
                raise CatalogError(f"Category {result.category} is defined more than once", yaml_file)
            catalog[result.category] = result.units
            parsed.append(result)

        for result in parsed:
            self._register(result)

        self._catalog_cache = catalog
        return catalog

    def load_file(self, path: Path) -> Tuple[str, List[PolicyUnit]]:
        """
        Load a single catalog file and register its strategies.

        Args:
            path: Catalog YAML file

        Returns:
            Tuple of category name and its units

        Raises:
            CatalogError: If the file cannot be read or any definition is invalid
        """
        result = self._parse_file(path)
        self._register(result)
        return result.category, result.units

    def _register(self, result: _ParsedCatalog) -> None:
        for primary, dependent, dep_type, timing in result.edges:
            self.dependencies.register_dependency(primary, dependent, dep_type, timing)
        for policy_id, strategy in result.verifications:
            self.strategies.register_verification(policy_id, strategy)

    def _parse_file(self, path: Path) -> _ParsedCatalog:
        """Read and validate a catalog file without registering anything."""
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise CatalogError(f"Failed to read catalog: {e}", path)

        if not isinstance(data, dict):
            raise CatalogError("Catalog must be a mapping", path)

        category = data.get('category') or Path(path).stem
        policies = data.get('policies') or []
        if not isinstance(policies, list):
            raise CatalogError("'policies' must be a list", path)

        units = [self._parse_unit(policy_data, category, path) for policy_data in policies]
        edges = [self._parse_dependency(dep, path) for dep in data.get('dependencies') or []]
        verifications = [self._parse_verification(v, path) for v in data.get('verifications') or []]

        logger.info("Loaded %d security measures for category %s from %s",
                    len(units), category, Path(path).name)
        return _ParsedCatalog(category, units, edges, verifications)

    def _parse_unit(self, policy_data: Any, category: str, path: Path) -> PolicyUnit:
        """Parse a policy dictionary into a PolicyUnit with one entry."""
        if not isinstance(policy_data, dict):
            raise CatalogError(f"Policy definition must be a mapping, got {policy_data!r}", path)

        name = policy_data.get('name') or policy_data.get('value_name')
        device_intents = policy_data.get('device_intents')
        if not device_intents:
            raise CatalogError(f"Policy '{name}' has no device intents", path)

        entry = self._parse_entry(policy_data, path)
        action = BackendAction(backend=entry.backend, entries=(entry,))

        try:
            return PolicyUnit(
                category=category,
                name=name,
                device_intents=tuple(device_intents),
                apply_action=action,
                verify_action=action,
                remove_action=action,
                sub_category=policy_data.get('sub_category'),
                url=policy_data.get('url'),
            )
        except ValidationError as e:
            raise CatalogError(f"Invalid policy '{name}': {e}", path)

    def _parse_entry(self, entry_data: Dict[str, Any], path: Path) -> PolicyEntry:
        """Parse the registry fields of a definition into a PolicyEntry."""
        label = entry_data.get('name') or entry_data.get('value_name')

        try:
            backend = Backend(str(entry_data.get('backend', 'registry')).lower())
            value_type = RegistryValueType(str(entry_data['type']).upper())
            hive = Hive(str(entry_data['hive']).upper()) if entry_data.get('hive') else None

            reg_value = entry_data.get('reg_value')
            if reg_value is not None:
                reg_value = str(reg_value)
            default_value = entry_data.get('default_value')
            if default_value is not None:
                default_value = str(default_value)

            if entry_data.get('data') is not None:
                data = bytes.fromhex(str(entry_data['data']))
            else:
                data = encode_reg_value(value_type, reg_value)

            return PolicyEntry(
                backend=backend,
                key_name=entry_data['key_name'],
                value_name=entry_data.get('value_name', ''),
                type=value_type,
                data=data,
                hive=hive,
                reg_value=reg_value,
                default_value=default_value,
            )
        except KeyError as e:
            raise CatalogError(f"Policy '{label}' is missing required field {e}", path)
        except (ValueError, ValueFormatError, ValidationError) as e:
            raise CatalogError(f"Invalid policy '{label}': {e}", path)

    def _parse_dependency(self, dep_data: Any,
                          path: Path) -> Tuple[str, str, DependencyType, ExecutionTiming]:
        try:
            return (
                str(dep_data['primary']),
                str(dep_data['dependent']),
                DependencyType(str(dep_data.get('type', 'both')).lower()),
                ExecutionTiming(str(dep_data.get('timing', 'after')).lower()),
            )
        except (KeyError, TypeError) as e:
            raise CatalogError(f"Dependency is missing required field {e}: {dep_data!r}", path)
        except ValueError as e:
            raise CatalogError(f"Invalid dependency {dep_data!r}: {e}", path)

    def _parse_verification(self, verification_data: Any, path: Path) -> Tuple[str, Any]:
        if not isinstance(verification_data, dict) or 'policy' not in verification_data:
            raise CatalogError(f"Verification must name a policy: {verification_data!r}", path)

        policy_id = str(verification_data['policy'])
        kind = verification_data.get('kind', 'command')

        if kind == 'command':
            try:
                return policy_id, CommandVerification(
                    verification_data['command'],
                    verification_data.get('desired_values') or [],
                    timeout=verification_data.get('timeout', 30),
                )
            except KeyError as e:
                raise CatalogError(f"Verification for {policy_id} is missing required field {e}", path)
            except ValueError as e:
                raise CatalogError(f"Invalid verification for {policy_id}: {e}", path)

        if kind == 'registry':
            if Backend.REGISTRY not in self.backends:
                raise CatalogError(f"Verification for {policy_id} needs a registry backend", path)
            entry_data = dict(verification_data.get('entry') or {})
            entry_data['backend'] = Backend.REGISTRY.value
            entry = self._parse_entry(entry_data, path)
            return policy_id, RegistryValueVerification(entry, self.backends[Backend.REGISTRY])

        raise CatalogError(f"Unknown verification kind '{kind}' for {policy_id}", path)
