"""
Unit tests for core data models.

Tests the Pydantic models that describe policy entries, policy units
and reconciliation runs.
"""

import pytest
from pydantic import ValidationError

from policy_reconciler.core.models import (
    Backend, BackendAction, CustomAction, Operation, PolicyEntry, PolicyUnit,
    ReconciliationRun, RegistryValueType, UnitStatus, make_policy_id
)

from conftest import make_custom_unit, make_entry, make_unit


class TestPolicyEntry:
    """Test PolicyEntry model."""

    def test_valid_entry_creation(self):
        """Test creating a valid PolicyEntry instance."""
        entry = PolicyEntry(
            backend="registry",
            key_name="SOFTWARE\\Test",
            value_name="Enabled",
            type="REG_DWORD",
            data=b"\x01\x00\x00\x00",
            reg_value="1"
        )

        assert entry.backend == Backend.REGISTRY
        assert entry.type == RegistryValueType.REG_DWORD
        assert entry.size == 4
        assert entry.policy_id == "SOFTWARE\\Test|Enabled"

    def test_explicit_size_is_kept(self):
        """Test an explicit size is not overwritten."""
        entry = make_entry("SOFTWARE\\Test")
        copy = PolicyEntry(**{**entry.model_dump(), "size": 8})
        assert copy.size == 8

    def test_empty_key_rejected(self):
        """Test key name validation."""
        with pytest.raises(ValidationError):
            make_entry("")

    def test_security_policy_entry_requires_default(self):
        """Test security policy registry entries must carry a default value."""
        with pytest.raises(ValidationError, match="must have a default value"):
            PolicyEntry(
                backend=Backend.SECURITY_POLICY_REGISTRY,
                key_name="MACHINE\\System\\Test",
                value_name="Option",
                type=RegistryValueType.REG_DWORD,
                reg_value="1"
            )

    def test_entries_are_hashable(self):
        """Test equal entries hash equally so they can key verification results."""
        first = make_entry("SOFTWARE\\Test")
        second = make_entry("SOFTWARE\\Test")
        assert {first: True}[second] is True

    def test_entries_are_immutable(self):
        """Test entries cannot be modified after construction."""
        entry = make_entry("SOFTWARE\\Test")
        with pytest.raises(ValidationError):
            entry.reg_value = "0"


class TestBackendAction:
    """Test BackendAction model."""

    def test_entries_must_match_backend(self):
        """Test an action rejects entries of another backend."""
        with pytest.raises(ValidationError, match="belongs to registry"):
            BackendAction(
                backend=Backend.GROUP_POLICY,
                entries=(make_entry("SOFTWARE\\Test", backend=Backend.REGISTRY),)
            )


class TestPolicyUnit:
    """Test PolicyUnit model."""

    def test_identities(self):
        """Test unit id and policy id."""
        unit = make_unit("Smart App Control", "SYSTEM\\CI\\Policy", Backend.REGISTRY, category="MicrosoftDefender")

        assert unit.unit_id == "MicrosoftDefender|Smart App Control"
        assert unit.policy_id == make_policy_id("SYSTEM\\CI\\Policy", "Enabled")
        assert unit.backend == Backend.REGISTRY

    def test_custom_unit_has_no_policy_id(self):
        """Test regular units have no backend and no policy id."""
        unit = make_custom_unit("Custom")

        assert unit.policy_id is None
        assert unit.backend is None

    def test_backend_priority(self):
        """Test group policy wins when capabilities span backends."""
        gp_action = BackendAction(backend=Backend.GROUP_POLICY, entries=(make_entry("SOFTWARE\\A"),))
        reg_action = BackendAction(
            backend=Backend.REGISTRY,
            entries=(make_entry("SOFTWARE\\A", backend=Backend.REGISTRY),)
        )
        unit = PolicyUnit(category="Test", apply_action=reg_action, verify_action=gp_action)

        assert unit.backend == Backend.GROUP_POLICY
        assert unit.entries_for(Operation.VERIFY, Backend.GROUP_POLICY) == gp_action.entries
        assert unit.entries_for(Operation.APPLY, Backend.GROUP_POLICY) is None
        assert unit.entries_for(Operation.REMOVE, Backend.REGISTRY) is None

    def test_status(self):
        """Test tri-state status."""
        unit = make_unit("A")
        assert unit.status == UnitStatus.UNDETERMINED

        unit.is_applied = True
        assert unit.status == UnitStatus.APPLIED

        unit.is_applied = False
        assert unit.status == UnitStatus.NOT_APPLIED

    @pytest.mark.parametrize("sub_category,expected", [
        ("MSDefender_SmartAppControl", "Smart App Control"),
        ("LocalSecurityPolicy_NTLMSettings", "NTLM Settings"),
        ("Network", "Network"),
        (None, ""),
    ])
    def test_sub_category_display(self, sub_category, expected):
        """Test sub-category display names."""
        unit = make_unit("A").model_copy(update={"sub_category": sub_category})
        assert unit.sub_category_display == expected

    def test_custom_action_runs_callable(self):
        """Test a custom action returns its callable's result."""
        assert CustomAction(action=lambda: 42).run() == 42


class TestReconciliationRun:
    """Test ReconciliationRun model."""

    def test_record_and_summary(self):
        """Test summary statistics from recorded units."""
        applied, not_applied, unknown = make_unit("A"), make_unit("B"), make_unit("C")
        applied.is_applied = True
        not_applied.is_applied = False

        run = ReconciliationRun(run_id="run-001", operation=Operation.VERIFY, category="TestCategory")
        run.record([applied, not_applied, unknown])
        run.calculate_summary()

        assert run.total_units == 3
        assert run.applied_units == 1
        assert run.not_applied_units == 1
        assert run.undetermined_units == 1
        assert run.compliance_score == 50.0

    def test_empty_run_score(self):
        """Test compliance score of an empty run."""
        run = ReconciliationRun(run_id="run-002", operation="apply")
        run.calculate_summary()
        assert run.compliance_score == 0.0

    def test_json_dump(self):
        """Test run serialization."""
        unit = make_unit("A")
        unit.is_applied = True
        run = ReconciliationRun(run_id="run-003", operation=Operation.APPLY)
        run.record([unit])

        data = run.model_dump(mode="json")
        assert data["operation"] == "apply"
        assert data["unit_results"][0]["status"] == "applied"
        assert isinstance(data["started_at"], str)
