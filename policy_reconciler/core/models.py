"""
Data models for the policy reconciliation engine using Pydantic for validation.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Backend(str, Enum):
    """Low-level stores a policy entry can originate from."""
    GROUP_POLICY = "group_policy"
    REGISTRY = "registry"
    SECURITY_POLICY_REGISTRY = "security_policy_registry"


class RegistryValueType(str, Enum):
    """Registry value data types."""
    REG_NONE = "REG_NONE"
    REG_SZ = "REG_SZ"
    REG_EXPAND_SZ = "REG_EXPAND_SZ"
    REG_BINARY = "REG_BINARY"
    REG_DWORD = "REG_DWORD"
    REG_MULTI_SZ = "REG_MULTI_SZ"
    REG_QWORD = "REG_QWORD"


class Hive(str, Enum):
    """Registry root keys."""
    HKLM = "HKLM"
    HKCU = "HKCU"
    HKCR = "HKCR"


class Operation(str, Enum):
    """Operations a caller can request for a batch of units."""
    APPLY = "apply"
    REMOVE = "remove"
    VERIFY = "verify"


class ExecutionTiming(str, Enum):
    """When dependencies and hooks run relative to the main bulk call."""
    BEFORE = "before"
    AFTER = "after"


class DependencyType(str, Enum):
    """Which requested operation triggers a dependency edge."""
    APPLY = "apply"
    REMOVE = "remove"
    BOTH = "both"


class UnitStatus(str, Enum):
    """Tri-state status of a policy unit."""
    APPLIED = "applied"
    NOT_APPLIED = "not_applied"
    UNDETERMINED = "undetermined"


def make_policy_id(key_name: str, value_name: str) -> str:
    """Build the ``KeyName|ValueName`` identity used by the registries."""
    return f"{key_name}|{value_name}"


class PolicyEntry(BaseModel):
    """
    One configurable value, tagged with the backend it belongs to.

    Entries are immutable and hashable so bulk verification can return a
    mapping keyed by entry.
    """
    model_config = ConfigDict(frozen=True)

    backend: Backend = Field(..., description="Originating backend")
    key_name: str = Field(..., min_length=1, description="Registry key path")
    value_name: str = Field(..., description="Registry value name")
    type: RegistryValueType = Field(..., description="Registry value type")
    size: int = Field(0, ge=0, description="Size of data in bytes")
    data: bytes = Field(b"", description="Raw value data")
    hive: Optional[Hive] = Field(None, description="Registry root key")
    reg_value: Optional[str] = Field(None, description="Cached string form of the value")
    default_value: Optional[str] = Field(None, description="Value restored on removal")

    @model_validator(mode="before")
    @classmethod
    def fill_size(cls, values: Any) -> Any:
        """Derive size from data when it is not given explicitly."""
        if isinstance(values, dict) and not values.get("size") and values.get("data"):
            values = dict(values)
            values["size"] = len(values["data"])
        return values

    @model_validator(mode="after")
    def validate_default_value(self) -> "PolicyEntry":
        """Security policy registry entries must know their default value."""
        if self.backend == Backend.SECURITY_POLICY_REGISTRY and self.default_value is None:
            raise ValueError(
                f"Security policy registry entry {self.key_name}\\{self.value_name} "
                "must have a default value"
            )
        return self

    @property
    def policy_id(self) -> str:
        return make_policy_id(self.key_name, self.value_name)


class BackendAction(BaseModel):
    """Capability served in bulk by one of the backend adapters."""
    model_config = ConfigDict(frozen=True)

    backend: Backend
    entries: Tuple[PolicyEntry, ...]

    @model_validator(mode="after")
    def validate_entries(self) -> "BackendAction":
        """Every entry must carry the same backend tag as the action."""
        for entry in self.entries:
            if entry.backend != self.backend:
                raise ValueError(
                    f"Entry {entry.policy_id} belongs to {entry.backend.value}, "
                    f"not {self.backend.value}"
                )
        return self


class CustomAction(BaseModel):
    """Capability backed by arbitrary code, processed one unit at a time."""
    model_config = ConfigDict(frozen=True)

    action: Callable[[], Any]

    def run(self) -> Any:
        return self.action()


UnitAction = Union[BackendAction, CustomAction]

_BACKEND_PRIORITY = (Backend.GROUP_POLICY, Backend.REGISTRY, Backend.SECURITY_POLICY_REGISTRY)


class PolicyUnit(BaseModel):
    """
    A named, user-facing security measure.

    Only ``is_applied`` changes after construction, and only the
    orchestrator writes it.
    """
    category: str = Field(..., min_length=1)
    name: Optional[str] = None
    device_intents: Tuple[str, ...] = ()
    apply_action: UnitAction
    verify_action: Optional[UnitAction] = None
    remove_action: Optional[UnitAction] = None
    sub_category: Optional[str] = None
    url: Optional[str] = None
    is_applied: Optional[bool] = None

    @property
    def unit_id(self) -> str:
        """``Category|Name`` identity."""
        return f"{self.category}|{self.name}"

    @property
    def policy_id(self) -> Optional[str]:
        """
        ``KeyName|ValueName`` identity of the first applied entry.

        None for units whose apply capability is not served by a backend.
        """
        if isinstance(self.apply_action, BackendAction) and self.apply_action.entries:
            return self.apply_action.entries[0].policy_id
        return None

    @property
    def backend(self) -> Optional[Backend]:
        """Backend any of the unit's capabilities belongs to, None for regular units."""
        actions = (self.apply_action, self.verify_action, self.remove_action)
        for backend in _BACKEND_PRIORITY:
            for action in actions:
                if isinstance(action, BackendAction) and action.backend == backend:
                    return backend
        return None

    def action_for(self, operation: Operation) -> Optional[UnitAction]:
        if operation == Operation.APPLY:
            return self.apply_action
        if operation == Operation.REMOVE:
            return self.remove_action
        return self.verify_action

    def entries_for(self, operation: Operation, backend: Backend) -> Optional[Tuple[PolicyEntry, ...]]:
        """Entries the given backend should process for this unit and operation."""
        action = self.action_for(operation)
        if isinstance(action, BackendAction) and action.backend == backend:
            return action.entries
        return None

    @property
    def status(self) -> UnitStatus:
        if self.is_applied is None:
            return UnitStatus.UNDETERMINED
        return UnitStatus.APPLIED if self.is_applied else UnitStatus.NOT_APPLIED

    @property
    def sub_category_display(self) -> str:
        """Sub-category rendered for display, e.g. ``MSDefender_SmartAppControl`` -> ``Smart App Control``."""
        if not self.sub_category:
            return ""

        name = self.sub_category.split("_", 1)[-1]
        result = []
        for i, char in enumerate(name):
            if i > 0 and char.isupper():
                prev = name[i - 1]
                next_is_lower = i + 1 < len(name) and name[i + 1].islower()
                if prev.islower() or (prev.isupper() and next_is_lower):
                    result.append(" ")
            result.append(char)
        return "".join(result)


class UnitResult(BaseModel):
    """Status of one unit at the end of a reconciliation run."""
    unit_id: str
    name: Optional[str] = None
    status: UnitStatus


class ReconciliationRun(BaseModel):
    """Complete reconciliation run over one category."""
    run_id: str = Field(..., description="Unique run identifier")
    operation: Operation
    category: Optional[str] = None
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    unit_results: List[UnitResult] = Field(default_factory=list)

    # Summary statistics
    total_units: int = 0
    applied_units: int = 0
    not_applied_units: int = 0
    undetermined_units: int = 0

    def record(self, units: List[PolicyUnit]) -> None:
        """Capture the current status of the given units."""
        self.unit_results = [
            UnitResult(unit_id=u.unit_id, name=u.name, status=u.status) for u in units
        ]

    def calculate_summary(self) -> None:
        """Calculate summary statistics from unit results."""
        self.total_units = len(self.unit_results)
        self.applied_units = sum(1 for r in self.unit_results if r.status == UnitStatus.APPLIED)
        self.not_applied_units = sum(1 for r in self.unit_results if r.status == UnitStatus.NOT_APPLIED)
        self.undetermined_units = sum(1 for r in self.unit_results if r.status == UnitStatus.UNDETERMINED)

    @property
    def compliance_score(self) -> float:
        """Percentage of determined units that are applied."""
        determined = self.applied_units + self.not_applied_units
        if determined == 0:
            return 0.0
        return (self.applied_units / determined) * 100.0
