"""
Integration tests for the policy engine facade.

Runs the packaged catalogs against in-memory stores.
"""

import pytest

from policy_reconciler.core.cancellation import CancellationToken
from policy_reconciler.core.engine import PolicyEngine
from policy_reconciler.core.exceptions import CatalogError, ConfigError, OperationCancelledError
from policy_reconciler.core.models import Backend, Hive, Operation, RegistryValueType, UnitStatus

from conftest import SAMPLE_CATALOG

CLOUD_PROTECTION = "Cloud Protection Level"


class TestConfiguration:
    """Test configuration loading."""

    def test_defaults_without_file(self):
        engine = PolicyEngine(backends={})
        assert engine.config["engine"]["max_workers"] == 1
        assert engine.config["catalog"]["definitions_dir"] is None

    def test_missing_file_uses_defaults(self, tmp_path):
        engine = PolicyEngine(config_path=str(tmp_path / "missing.yaml"), backends={})
        assert engine.config["backends"]["store"] is None

    def test_merges_over_defaults(self, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text("backends:\n  store: memory\nengine:\n  max_workers: 2\n")

        engine = PolicyEngine(config_path=str(config_path))

        assert engine.config["backends"]["store"] == "memory"
        assert engine.config["backends"]["policy_file"] is None
        assert engine.orchestrator.max_workers == 2

    def test_utf8_config(self, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text("backends:\n  store: memory\n  policy_file: stratégie.yaml\n", encoding="utf-8")

        engine = PolicyEngine(config_path=str(config_path))

        assert engine.config["backends"]["policy_file"] == "stratégie.yaml"

    def test_invalid_yaml(self, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text("backends: [unclosed\n")

        with pytest.raises(ConfigError, match="Failed to read configuration"):
            PolicyEngine(config_path=str(config_path))

    def test_not_a_mapping(self, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text("- memory\n")

        with pytest.raises(ConfigError, match="must be a mapping"):
            PolicyEngine(config_path=str(config_path))

    def test_custom_definitions_dir(self, tmp_path):
        definitions = tmp_path / "definitions"
        definitions.mkdir()
        (definitions / "Sample.yaml").write_text(SAMPLE_CATALOG)
        config_path = tmp_path / "config.yaml"
        config_path.write_text(f"catalog:\n  definitions_dir: '{definitions}'\nbackends:\n  store: memory\n")

        engine = PolicyEngine(config_path=str(config_path))

        assert engine.list_categories() == ["Sample"]


class TestOperations:
    """Test apply, remove and verify over packaged catalogs."""

    def test_list_categories(self, engine):
        assert engine.list_categories() == ["LocalSecurityPolicy", "MicrosoftDefender"]

    def test_verify_before_apply(self, engine):
        run = engine.verify("LocalSecurityPolicy")

        assert run.operation == Operation.VERIFY
        assert run.category == "LocalSecurityPolicy"
        assert run.total_units == 4
        assert run.not_applied_units == 4

    def test_apply_then_verify(self, engine):
        applied = engine.apply("LocalSecurityPolicy")
        verified = engine.verify("LocalSecurityPolicy")

        assert applied.applied_units == 4
        assert verified.applied_units == 4
        assert verified.compliance_score == 100.0

        store = engine.backends[Backend.SECURITY_POLICY_REGISTRY].store
        assert store.read_value(Hive.HKLM, "System\\CurrentControlSet\\Control\\Lsa", "RestrictAnonymous",
                                RegistryValueType.REG_DWORD) == "1"

    def test_remove_resets_defaults(self, engine):
        engine.apply("LocalSecurityPolicy")
        removed = engine.remove("LocalSecurityPolicy")

        assert removed.not_applied_units == 4
        store = engine.backends[Backend.SECURITY_POLICY_REGISTRY].store
        assert store.read_value(Hive.HKLM, "Software\\Microsoft\\Windows NT\\CurrentVersion\\Winlogon",
                                "CachedLogonsCount", RegistryValueType.REG_SZ) == "10"

    def test_apply_processes_dependencies(self, engine):
        """Test applying one measure also applies its declared dependents."""
        run = engine.apply("MicrosoftDefender", [CLOUD_PROTECTION])

        assert run.total_units == 1
        assert run.unit_results[0].status == UnitStatus.APPLIED

        units = {unit.name: unit for unit in engine.get_units("MicrosoftDefender")}
        assert units["Join Microsoft MAPS"].is_applied is True
        assert units["Extended Cloud Check"].is_applied is True
        assert units["Smart App Control"].is_applied is None

        verified = engine.verify("MicrosoftDefender", ["Join Microsoft MAPS", "Extended Cloud Check"])
        assert verified.applied_units == 2

    def test_registry_verification_strategy(self, engine):
        """Test a policy confirmed by its legacy registry value counts as applied."""
        engine.backends[Backend.REGISTRY].store.write_value(
            Hive.HKLM, "SOFTWARE\\Microsoft\\Windows Defender", "PUAProtection", RegistryValueType.REG_DWORD, "1"
        )

        run = engine.verify("MicrosoftDefender", ["Potentially Unwanted Application Protection"])

        assert run.applied_units == 1

    def test_unknown_category(self, engine):
        with pytest.raises(CatalogError, match="Unknown category"):
            engine.apply("Nope")

    def test_select_by_intent(self, engine):
        run = engine.verify("MicrosoftDefender", intent="school")

        assert run.total_units == 4
        assert "Network Protection for Servers" not in [result.name for result in run.unit_results]

    def test_select_by_sub_category(self, engine):
        run = engine.apply("LocalSecurityPolicy", sub_categories=["LocalSecurityPolicy_NetworkSecurity"])

        assert run.total_units == 2
        assert run.applied_units == 2
        units = {unit.name: unit for unit in engine.catalog.get_all_units("LocalSecurityPolicy")}
        assert units["Number of Previous Logons to Cache"].is_applied is None

    def test_cancelled_run(self, engine):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            engine.apply("LocalSecurityPolicy", cancellation_token=token)

        assert all(unit.is_applied is None for unit in engine.get_units("LocalSecurityPolicy"))

    def test_submit(self, engine):
        future = engine.submit(Operation.APPLY, "LocalSecurityPolicy", ["Number of Previous Logons to Cache"])

        run = future.result(timeout=10)

        assert run.total_units == 1
        assert run.applied_units == 1

    def test_reload_catalog(self, engine):
        engine.apply("LocalSecurityPolicy")

        engine.reload_catalog()

        assert all(unit.is_applied is None for unit in engine.get_units("LocalSecurityPolicy"))
        assert len(engine.dependencies) > 0
