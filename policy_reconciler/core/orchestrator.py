"""
Reconciliation orchestrator for policy units.

The ReconciliationOrchestrator takes a batch of policy units and an
operation, fans the batch out per backend, resolves dependency closures,
runs specialized hooks around one bulk backend call per group, walks the
verification fallback chain and commits each unit's status.
"""

import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..backends.base import BaseBackend
from ..backends.security_policy import strip_machine_prefix
from .cancellation import CancellationToken, check_cancelled
from .exceptions import OperationCancelledError
from .models import (
    Backend, ExecutionTiming, Hive, Operation, PolicyEntry, PolicyUnit, ReconciliationRun
)
from .registry import DependencyRegistry, StrategyRegistry, run_verification
from .values import build_reg_value

logger = logging.getLogger(__name__)

# Groups are processed sequentially in this order, regular units last.
BACKEND_ORDER = (Backend.GROUP_POLICY, Backend.REGISTRY, Backend.SECURITY_POLICY_REGISTRY)


class _RunContext:
    """State shared by every recursive call of a single run."""

    def __init__(self, units: Sequence[PolicyUnit], catalog: Sequence[PolicyUnit],
                 token: Optional[CancellationToken]):
        self.catalog = catalog
        self.token = token
        self.requested_ids = {u.policy_id.casefold() for u in units if u.policy_id is not None}
        self.visited = set(self.requested_ids)

    def check(self) -> None:
        check_cancelled(self.token)


class ReconciliationOrchestrator:
    """
    Applies, removes and verifies policy units against the backend adapters.

    A run is single-threaded and sequential: backend groups are processed
    one after another in a fixed order and every hook runs on the same
    worker. ``process_units_async`` moves the whole run off the caller's
    thread.
    """

    def __init__(self, backends: Mapping[Backend, BaseBackend],
                 dependencies: Optional[DependencyRegistry] = None,
                 strategies: Optional[StrategyRegistry] = None,
                 max_workers: int = 1):
        """
        Initialize the orchestrator.

        Args:
            backends: Adapter for each backend tag
            dependencies: Dependency registry (empty if None)
            strategies: Specialized-strategy registry (empty if None)
            max_workers: Worker threads used by process_units_async
        """
        self.backends = dict(backends)
        self.dependencies = dependencies if dependencies is not None else DependencyRegistry()
        self.strategies = strategies if strategies is not None else StrategyRegistry()
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None

    def process_units(self, units: Iterable[PolicyUnit], operation: Operation,
                      cancellation_token: Optional[CancellationToken] = None,
                      catalog: Optional[Iterable[PolicyUnit]] = None) -> ReconciliationRun:
        """
        Run an operation over a batch of units.

        Args:
            units: Units of a single category to process
            operation: Apply, remove or verify
            cancellation_token: Token polled between units of work
            catalog: Units dependencies are resolved against (defaults to ``units``)

        Returns:
            ReconciliationRun: Status of the requested units after the run

        Raises:
            OperationCancelledError: If the token was cancelled
            Exception: Any backend, hook or verification failure
        """
        operation = Operation(operation)
        units = list(units)
        catalog = list(catalog) if catalog is not None else units

        run = ReconciliationRun(
            run_id=str(uuid.uuid4()),
            operation=operation,
            category=units[0].category if units else None,
        )

        logger.info("Starting %s of %d security measures", operation.value, len(units))
        context = _RunContext(units, catalog, cancellation_token)

        try:
            context.check()
            self._dispatch(units, operation, context)
        except OperationCancelledError:
            logger.info("%s of %d security measures was cancelled", operation.value.capitalize(), len(units))
            raise

        run.completed_at = datetime.utcnow()
        run.record(units)
        run.calculate_summary()

        logger.info("Completed %s of %d security measures", operation.value, len(units))
        return run

    def process_units_async(self, units: Iterable[PolicyUnit], operation: Operation,
                            cancellation_token: Optional[CancellationToken] = None,
                            catalog: Optional[Iterable[PolicyUnit]] = None) -> "Future[ReconciliationRun]":
        """Run :meth:`process_units` on a background worker."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers,
                                                thread_name_prefix="policy-reconciler")
        return self._executor.submit(self.process_units, list(units), operation,
                                     cancellation_token, catalog)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the background worker, if one was started."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    @staticmethod
    def classify(units: Iterable[PolicyUnit]) -> Dict[Optional[Backend], List[PolicyUnit]]:
        """
        Partition units by backend.

        Returns:
            Dict mapping each backend to its units, and None to regular units
        """
        groups: Dict[Optional[Backend], List[PolicyUnit]] = {backend: [] for backend in BACKEND_ORDER}
        groups[None] = []
        for unit in units:
            groups[unit.backend].append(unit)
        return groups

    def process_backend_bulk(self, backend: Backend, units: List[PolicyUnit],
                             operation: Operation, context: _RunContext) -> None:
        """Process one backend group with a single bulk adapter call."""
        try:
            self._process_bulk(self._adapter_for(backend), units, operation, context)
        except OperationCancelledError:
            raise
        except Exception:
            logger.error("Error processing %d %s security measures during %s",
                         len(units), backend.value, operation.value)
            raise

    def _dispatch(self, units: List[PolicyUnit], operation: Operation, context: _RunContext) -> None:
        groups = self.classify(units)

        for backend in BACKEND_ORDER:
            context.check()
            if groups[backend]:
                self.process_backend_bulk(backend, groups[backend], operation, context)

        # Regular units have no dependency support
        for unit in groups[None]:
            self._process_regular_unit(unit, operation, context)

    def _process_bulk(self, adapter: BaseBackend, units: List[PolicyUnit],
                      operation: Operation, context: _RunContext) -> None:
        context.check()

        entries: List[PolicyEntry] = []
        for unit in units:
            context.check()
            unit_entries = unit.entries_for(operation, adapter.backend)
            if unit_entries:
                entries.extend(unit_entries)

        if not entries:
            return

        if operation == Operation.VERIFY:
            self._verify_bulk(adapter, units, entries, context)
            return

        self._process_dependencies(units, operation, ExecutionTiming.BEFORE, context)
        self._run_hooks(entries, operation, ExecutionTiming.BEFORE, context)

        context.check()
        if operation == Operation.APPLY:
            adapter.add_policies_to_system(entries)
        else:
            adapter.remove_policies_from_system(entries)

        self._run_hooks(entries, operation, ExecutionTiming.AFTER, context)
        self._process_dependencies(units, operation, ExecutionTiming.AFTER, context)

        is_applied = operation == Operation.APPLY
        for unit in units:
            unit.is_applied = is_applied

    def _process_dependencies(self, units: List[PolicyUnit], operation: Operation,
                              timing: ExecutionTiming, context: _RunContext) -> None:
        dependents = self._resolve_dependencies(units, operation, timing, context)
        if dependents:
            logger.info("Processing %d %s dependencies for %s",
                        len(dependents), timing.value, operation.value)
            self._dispatch(dependents, operation, context)

    def _resolve_dependencies(self, units: List[PolicyUnit], operation: Operation,
                              timing: ExecutionTiming, context: _RunContext) -> List[PolicyUnit]:
        """
        Find dependent units that still need processing.

        Ids in the requested batch are left to the main batch. Ids already
        visited in this run are skipped, which also breaks dependency cycles.
        """
        context.check()
        dependents: List[PolicyUnit] = []

        for unit in units:
            context.check()
            if unit.policy_id is None:
                continue

            for dependency_id in self.dependencies.get_dependencies(unit.policy_id, operation, timing):
                context.check()
                key = dependency_id.casefold()

                if key in context.requested_ids:
                    logger.info("Skipping dependency %s: already part of the requested batch", dependency_id)
                    continue
                if key in context.visited:
                    logger.info("Skipping dependency %s: already visited in this run (cycle)", dependency_id)
                    continue
                context.visited.add(key)

                dependent = self._find_unit(dependency_id, unit.category, context.catalog)
                if dependent is None:
                    logger.warning("Dependency %s of %s was not found in category %s",
                                   dependency_id, unit.policy_id, unit.category)
                    continue

                dependents.append(dependent)
                logger.info("Resolved dependency %s -> %s (%s, %s)",
                            unit.policy_id, dependency_id, operation.value, timing.value)

        return dependents

    @staticmethod
    def _find_unit(policy_id: str, category: str, catalog: Sequence[PolicyUnit]) -> Optional[PolicyUnit]:
        key = policy_id.casefold()
        for unit in catalog:
            if unit.category == category and unit.policy_id is not None and unit.policy_id.casefold() == key:
                return unit
        return None

    def _run_hooks(self, entries: List[PolicyEntry], operation: Operation,
                   timing: ExecutionTiming, context: _RunContext) -> None:
        for entry in entries:
            context.check()
            try:
                for hook in self.strategies.get_hooks(entry.policy_id, operation, timing):
                    context.check()
                    hook.run()
                    logger.info("Specialized %s strategy (%s) succeeded for %s\\%s",
                                operation.value, timing.value, entry.key_name, entry.value_name)
            except OperationCancelledError:
                raise
            except Exception:
                logger.error("Error in specialized %s strategy (%s) for %s\\%s",
                             operation.value, timing.value, entry.key_name, entry.value_name)
                raise

    def _verify_bulk(self, adapter: BaseBackend, units: List[PolicyUnit],
                     entries: List[PolicyEntry], context: _RunContext) -> None:
        context.check()
        results = adapter.verify_policies_in_system(entries)

        # Statuses are committed only once every unit of the group is evaluated
        pending: List[Tuple[PolicyUnit, bool]] = []
        for unit in units:
            context.check()
            unit_entries = unit.entries_for(Operation.VERIFY, adapter.backend)
            if not unit_entries:
                continue
            pending.append((unit, self._verify_unit(adapter.backend, unit, unit_entries, results, context)))

        for unit, is_applied in pending:
            unit.is_applied = is_applied

    def _verify_unit(self, backend: Backend, unit: PolicyUnit, entries: Sequence[PolicyEntry],
                     results: Dict[PolicyEntry, bool], context: _RunContext) -> bool:
        if all(results.get(entry, False) for entry in entries):
            return True

        if backend != Backend.REGISTRY and Backend.REGISTRY in self.backends:
            if self._verify_as_registry(entries, context):
                logger.info("Security measure '%s' verified via registry fallback for all policies", unit.name)
                return True

        return self._try_fallback_verification(entries, context)

    def _verify_as_registry(self, entries: Sequence[PolicyEntry], context: _RunContext) -> bool:
        """Verify entries as if they had been written straight to the registry."""
        reinterpreted = []
        for entry in entries:
            context.check()
            reinterpreted.append(as_registry_entry(entry))

        results = self.backends[Backend.REGISTRY].verify_policies_in_system(reinterpreted)
        return all(results.get(entry, False) for entry in reinterpreted)

    def _try_fallback_verification(self, entries: Sequence[PolicyEntry], context: _RunContext) -> bool:
        """True if any entry's specialized verification succeeds."""
        for entry in entries:
            context.check()

            strategy = self.strategies.get_verification(entry.policy_id)
            if strategy is None:
                continue

            try:
                result = run_verification(strategy)
            except OperationCancelledError:
                raise
            except Exception as e:
                logger.error("Error in fallback verification for %s\\%s: %s",
                             entry.key_name, entry.value_name, e)
                raise

            logger.info("Fallback verification for %s\\%s: %s",
                        entry.key_name, entry.value_name, "SUCCESS" if result else "FAILED")
            if result:
                return True

        return False

    def _process_regular_unit(self, unit: PolicyUnit, operation: Operation, context: _RunContext) -> None:
        try:
            context.check()

            if operation == Operation.APPLY:
                unit.apply_action.run()
                unit.is_applied = True
            elif operation == Operation.REMOVE:
                if unit.remove_action is not None:
                    unit.remove_action.run()
                unit.is_applied = False
            elif unit.verify_action is not None:
                unit.is_applied = bool(unit.verify_action.run())
        except OperationCancelledError:
            raise
        except Exception:
            logger.error("Error processing security measure '%s' during %s", unit.name, operation.value)
            raise

    def _adapter_for(self, backend: Backend) -> BaseBackend:
        if backend not in self.backends:
            raise ValueError(f"No adapter configured for backend: {backend.value}")
        return self.backends[backend]


def as_registry_entry(entry: PolicyEntry) -> PolicyEntry:
    """
    Re-wrap an entry as a plain registry entry.

    Raises:
        ValueFormatError: If the entry has no string value and one cannot be derived
    """
    reg_value = entry.reg_value if entry.reg_value is not None else build_reg_value(entry)
    key_name = entry.key_name
    if entry.backend == Backend.SECURITY_POLICY_REGISTRY:
        key_name = strip_machine_prefix(key_name)

    return PolicyEntry(
        backend=Backend.REGISTRY,
        key_name=key_name,
        value_name=entry.value_name,
        type=entry.type,
        size=entry.size,
        data=entry.data,
        hive=entry.hive or Hive.HKLM,
        reg_value=reg_value,
    )
