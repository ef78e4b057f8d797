"""
Dependency and specialized-strategy registries.

Both are plain objects built once when a catalog is loaded and handed to the
orchestrator. They are read-only during reconciliation; ``clear()`` resets
them for a catalog reload. Policy ids (``KeyName|ValueName``) are matched
case-insensitively, the same way the registry treats key and value names.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from .models import DependencyType, ExecutionTiming, Operation

logger = logging.getLogger(__name__)


def _normalize(policy_id: str) -> str:
    return policy_id.casefold()


@dataclass(frozen=True)
class DependencyEdge:
    """A unit that must be processed alongside a primary unit."""
    primary_id: str
    dependent_id: str
    type: DependencyType
    timing: ExecutionTiming

    def matches(self, operation: Operation, timing: ExecutionTiming) -> bool:
        """Whether the edge fires for the requested operation and timing."""
        if self.timing != timing:
            return False
        if self.type == DependencyType.BOTH:
            return operation in (Operation.APPLY, Operation.REMOVE)
        return self.type.value == operation.value


class DependencyRegistry:
    """
    Maps a primary policy id to the units processed with it.

    Dependent ids are not validated at registration; they are resolved
    against the catalog when a run needs them.
    """

    def __init__(self):
        self._dependencies: Dict[str, List[DependencyEdge]] = defaultdict(list)

    def register_dependency(self, primary_id: str, dependent_id: str,
                            type: DependencyType, timing: ExecutionTiming) -> None:
        """
        Register a dependency edge.

        Args:
            primary_id: Policy id of the primary unit
            dependent_id: Policy id of the dependent unit
            type: Operations that trigger the edge
            timing: Whether the dependent runs before or after the primary's bulk call
        """
        edge = DependencyEdge(primary_id, dependent_id, DependencyType(type), ExecutionTiming(timing))
        self._dependencies[_normalize(primary_id)].append(edge)
        logger.debug("Registered dependency %s -> %s (%s, %s)",
                     primary_id, dependent_id, edge.type.value, edge.timing.value)

    def get_dependencies(self, policy_id: str, operation: Operation,
                         timing: ExecutionTiming) -> List[str]:
        """
        Get dependent ids for a unit, operation and timing.

        Verify never has dependencies. Unknown ids have none either.
        """
        edges = self._dependencies.get(_normalize(policy_id), [])
        return [edge.dependent_id for edge in edges if edge.matches(operation, timing)]

    def clear(self) -> None:
        """Drop all edges."""
        self._dependencies.clear()

    def __len__(self) -> int:
        return sum(len(edges) for edges in self._dependencies.values())


@dataclass(frozen=True)
class SpecializedHook:
    """Extra apply/remove logic run before or after the main bulk call."""
    action: Callable[[], Any]
    timing: ExecutionTiming = ExecutionTiming.BEFORE
    description: Optional[str] = None

    def run(self) -> None:
        self.action()


VerificationStrategy = Union[Callable[[], bool], Any]


def run_verification(strategy: VerificationStrategy) -> bool:
    """Run a verification strategy given as a callable or an object with ``verify()``."""
    verify = getattr(strategy, "verify", None)
    if callable(verify):
        return bool(verify())
    return bool(strategy())


class StrategyRegistry:
    """
    Specialized strategies keyed by policy id.

    A policy has at most one fallback verification (last registration
    wins) and any number of apply/remove hooks, kept in registration order.
    """

    def __init__(self):
        self._verifications: Dict[str, VerificationStrategy] = {}
        self._apply_hooks: Dict[str, List[SpecializedHook]] = defaultdict(list)
        self._remove_hooks: Dict[str, List[SpecializedHook]] = defaultdict(list)

    def register_verification(self, policy_id: str, strategy: VerificationStrategy) -> None:
        self._verifications[_normalize(policy_id)] = strategy

    def register_apply_hook(self, policy_id: str, hook: SpecializedHook) -> None:
        self._apply_hooks[_normalize(policy_id)].append(hook)

    def register_remove_hook(self, policy_id: str, hook: SpecializedHook) -> None:
        self._remove_hooks[_normalize(policy_id)].append(hook)

    def get_verification(self, policy_id: str) -> Optional[VerificationStrategy]:
        return self._verifications.get(_normalize(policy_id))

    def get_apply_hooks(self, policy_id: str, timing: ExecutionTiming) -> List[SpecializedHook]:
        return [h for h in self._apply_hooks.get(_normalize(policy_id), []) if h.timing == timing]

    def get_remove_hooks(self, policy_id: str, timing: ExecutionTiming) -> List[SpecializedHook]:
        return [h for h in self._remove_hooks.get(_normalize(policy_id), []) if h.timing == timing]

    def get_hooks(self, policy_id: str, operation: Operation,
                  timing: ExecutionTiming) -> List[SpecializedHook]:
        """Hooks for an apply or remove operation; verify has none."""
        if operation == Operation.APPLY:
            return self.get_apply_hooks(policy_id, timing)
        if operation == Operation.REMOVE:
            return self.get_remove_hooks(policy_id, timing)
        return []

    def clear(self) -> None:
        """Clear all registered strategies."""
        self._verifications.clear()
        self._apply_hooks.clear()
        self._remove_hooks.clear()
