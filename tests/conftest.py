"""
Test fixtures and utilities for the policy reconciler test suite.

Provides recording backend adapters, entry and unit factories, and
engine fixtures backed by in-memory stores.
"""

import pytest
from typing import Dict, List, Optional, Sequence

from policy_reconciler.backends.base import BaseBackend
from policy_reconciler.backends.stores import MemoryStore
from policy_reconciler.core.engine import PolicyEngine
from policy_reconciler.core.models import (
    Backend, BackendAction, CustomAction, Hive, PolicyEntry, PolicyUnit, RegistryValueType
)
from policy_reconciler.core.orchestrator import ReconciliationOrchestrator
from policy_reconciler.core.registry import DependencyRegistry, StrategyRegistry


class RecordingBackend(BaseBackend):
    """
    Backend adapter that records every bulk call in a shared log.

    Entries count as present in the system once added; ``present`` can be
    seeded directly with policy ids.
    """

    def __init__(self, backend: Backend, calls: List[tuple]):
        super().__init__(MemoryStore())
        self.backend = backend
        self.calls = calls
        self.present = set()
        self.verified: List[List[PolicyEntry]] = []
        self.fail_on: Optional[str] = None

    def add_policies_to_system(self, entries: Sequence[PolicyEntry]) -> None:
        self._record("add", entries)
        for entry in entries:
            self.present.add(entry.policy_id)

    def remove_policies_from_system(self, entries: Sequence[PolicyEntry]) -> None:
        self._record("remove", entries)
        for entry in entries:
            self.present.discard(entry.policy_id)

    def verify_policies_in_system(self, entries: Sequence[PolicyEntry]) -> Dict[PolicyEntry, bool]:
        self._record("verify", entries)
        self.verified.append(list(entries))
        return {entry: entry.policy_id in self.present for entry in entries}

    def _record(self, action: str, entries: Sequence[PolicyEntry]) -> None:
        if self.fail_on == action:
            raise RuntimeError(f"{self.backend.value} {action} failed")
        self.calls.append((self.backend, action, [entry.policy_id for entry in entries]))


def make_entry(key_name: str, value_name: str = "Enabled",
               backend: Backend = Backend.GROUP_POLICY,
               type: RegistryValueType = RegistryValueType.REG_DWORD,
               reg_value: Optional[str] = "1", data: Optional[bytes] = None,
               default_value: Optional[str] = None, hive: Optional[Hive] = None) -> PolicyEntry:
    """Helper function to create policy entries."""
    if data is None:
        data = int(reg_value).to_bytes(4, "little") if reg_value and type == RegistryValueType.REG_DWORD else b""
    if default_value is None and backend == Backend.SECURITY_POLICY_REGISTRY:
        default_value = "0"
    return PolicyEntry(
        backend=backend,
        key_name=key_name,
        value_name=value_name,
        type=type,
        data=data,
        hive=hive,
        reg_value=reg_value,
        default_value=default_value,
    )


def make_unit(name: str, key_name: Optional[str] = None,
              backend: Backend = Backend.GROUP_POLICY,
              category: str = "TestCategory",
              entries: Optional[Sequence[PolicyEntry]] = None) -> PolicyUnit:
    """Helper function to create a backend unit using the same entries for every capability."""
    if entries is None:
        entries = [make_entry(key_name or f"SOFTWARE\\Test\\{name}", backend=backend)]
    action = BackendAction(backend=backend, entries=tuple(entries))
    return PolicyUnit(
        category=category,
        name=name,
        device_intents=("business",),
        apply_action=action,
        verify_action=action,
        remove_action=action,
    )


def make_custom_unit(name: str, apply=None, verify=None, remove=None,
                     category: str = "TestCategory") -> PolicyUnit:
    """Helper function to create a regular unit backed by callables."""
    return PolicyUnit(
        category=category,
        name=name,
        device_intents=("business",),
        apply_action=CustomAction(action=apply or (lambda: None)),
        verify_action=CustomAction(action=verify) if verify else None,
        remove_action=CustomAction(action=remove) if remove else None,
    )


@pytest.fixture
def calls():
    """Shared log of bulk calls and hook invocations."""
    return []


@pytest.fixture
def backends(calls):
    """One recording adapter per backend."""
    return {backend: RecordingBackend(backend, calls) for backend in Backend}


@pytest.fixture
def dependencies():
    return DependencyRegistry()


@pytest.fixture
def strategies():
    return StrategyRegistry()


@pytest.fixture
def orchestrator(backends, dependencies, strategies):
    """Orchestrator wired to recording adapters."""
    orchestrator = ReconciliationOrchestrator(backends, dependencies=dependencies, strategies=strategies)
    yield orchestrator
    orchestrator.shutdown()


@pytest.fixture
def memory_config(tmp_path):
    """Configuration file selecting in-memory stores."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text("backends:\n  store: memory\n")
    return str(config_path)


@pytest.fixture
def engine(memory_config):
    """Policy engine over the packaged catalog and in-memory stores."""
    engine = PolicyEngine(config_path=memory_config)
    yield engine
    engine.close()


SAMPLE_CATALOG = r"""
category: Sample
policies:
  - name: Primary Policy
    backend: group_policy
    hive: HKLM
    key_name: SOFTWARE\Policies\Sample
    value_name: Primary
    type: REG_DWORD
    reg_value: "1"
    device_intents: [business]
    sub_category: Sample_PrimarySettings
  - name: Helper Policy
    backend: registry
    hive: HKLM
    key_name: SOFTWARE\Sample
    value_name: Helper
    type: REG_SZ
    reg_value: "On"
    device_intents: [business, private]
  - name: Security Option
    backend: security_policy_registry
    key_name: MACHINE\System\Sample
    value_name: Option
    type: REG_DWORD
    reg_value: "1"
    default_value: "0"
    device_intents: [school]
dependencies:
  - primary: SOFTWARE\Policies\Sample|Primary
    dependent: SOFTWARE\Sample|Helper
    type: apply
    timing: before
"""
