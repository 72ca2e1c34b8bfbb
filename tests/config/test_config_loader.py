"""
Configuration loading, validation and bridging tests.
"""

import textwrap

import pytest
import yaml

from stock_config import ConfigValidationError, get_active_config
from stock_config.bridges import (
    build_movement_policy,
    build_reconciliation_monitor,
    build_stock_ledger,
    build_submission_guard,
    init_engine_from_config,
)
from stock_config.loader import compute_checksum, load_configuration, parse_configuration
from stock_config.validator import validate_configuration
from stock_kernel.domain.values import SupplierRequirement


def _write(tmp_path, body: str):
    path = tmp_path / "ledger.yaml"
    path.write_text(textwrap.dedent(body))
    return path


MINIMAL = """
config_id: shop-floor
version: 3
"""


class TestLoader:
    def test_default_configuration(self):
        config = get_active_config()

        assert config.config_id == "stock-ledger-default"
        assert config.version == 1
        assert config.policy.supplier_requirement == "optional"
        assert config.policy.max_quantity == 999_999
        assert config.policy.note_max_length == 500
        assert config.ledger.lock_timeout_seconds == 10.0
        assert config.ledger.commit_timeout_seconds == 30.0
        assert config.ledger.key_origin == "service"
        assert config.database.url is None

    def test_minimal_file_uses_defaults(self, tmp_path):
        config = load_configuration(_write(tmp_path, MINIMAL))

        assert config.config_id == "shop-floor"
        assert config.policy.supplier_requirement == "optional"
        assert config.ledger.guard_capacity == 10_000
        assert config.database.pool_size == 20

    def test_supplier_requirement_is_normalized(self, tmp_path):
        path = _write(
            tmp_path,
            """
            config_id: strict
            version: 1
            policy:
              supplier_requirement: " ALL "
            """,
        )

        config = load_configuration(path)

        assert config.policy.supplier_requirement == "all"
        assert build_movement_policy(config).supplier_requirement is SupplierRequirement.ALL

    def test_missing_required_field(self, tmp_path):
        with pytest.raises(KeyError):
            load_configuration(_write(tmp_path, "config_id: x\n"))

    def test_unknown_key_rejected(self, tmp_path):
        path = _write(
            tmp_path,
            """
            config_id: typo
            version: 1
            policy:
              max_quantitty: 5
            """,
        )
        with pytest.raises(ValueError, match="max_quantitty"):
            load_configuration(path)

    @pytest.mark.parametrize("value", ["ten", "true", "1.5"])
    def test_wrong_type_rejected(self, tmp_path, value):
        path = _write(
            tmp_path,
            f"""
            config_id: typed
            version: 1
            policy:
              max_quantity: {value}
            """,
        )
        with pytest.raises(ValueError):
            load_configuration(path)

    def test_root_must_be_mapping(self, tmp_path):
        with pytest.raises(ValueError):
            load_configuration(_write(tmp_path, "- a\n- b\n"))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_checksum_is_deterministic(self):
        data = yaml.safe_load(MINIMAL)
        reordered = {"version": 3, "config_id": "shop-floor"}

        assert compute_checksum(data) == compute_checksum(reordered)
        assert parse_configuration(data).checksum == compute_checksum(data)
        assert compute_checksum({**data, "version": 4}) != compute_checksum(data)


class TestValidator:
    def test_default_is_valid(self):
        result = validate_configuration(get_active_config())
        assert result.is_valid
        assert result.warnings == []

    def test_errors_are_collected(self, tmp_path):
        path = _write(
            tmp_path,
            """
            config_id: broken
            version: 0
            policy:
              supplier_requirement: sometimes
              max_quantity: 0
            ledger:
              guard_capacity: 0
              key_origin: "a:b"
            database:
              pool_size: 0
              max_overflow: -1
            """,
        )

        result = validate_configuration(load_configuration(path))

        assert not result.is_valid
        joined = "\n".join(result.errors)
        for fragment in (
            "version",
            "supplier_requirement",
            "max_quantity",
            "guard_capacity",
            "key_origin",
            "pool_size",
            "max_overflow",
        ):
            assert fragment in joined

    @pytest.mark.parametrize("url", ["sqlite://", "sqlite:///:memory:"])
    def test_in_memory_sqlite_rejected(self, tmp_path, url):
        path = _write(
            tmp_path,
            f"""
            config_id: mem
            version: 1
            database:
              url: "{url}"
            """,
        )
        result = validate_configuration(load_configuration(path))
        assert any("in-memory" in e for e in result.errors)

    def test_short_commit_timeout_is_warning(self, tmp_path, captured_logs):
        path = _write(
            tmp_path,
            """
            config_id: tight
            version: 1
            ledger:
              lock_timeout_seconds: 5
              commit_timeout_seconds: 5
            """,
        )

        config = get_active_config(path)

        assert config.config_id == "tight"
        assert any(r["message"] == "config_validation_warning" for r in captured_logs())

    def test_invalid_configuration_is_never_returned(self, tmp_path):
        path = _write(
            tmp_path,
            """
            config_id: bad
            version: 1
            policy:
              note_max_length: 0
            """,
        )
        with pytest.raises(ConfigValidationError) as exc_info:
            get_active_config(path)
        assert any("note_max_length" in e for e in exc_info.value.errors)


class TestConfigTrace:
    def test_trace_emitted(self, captured_logs):
        config = get_active_config()

        trace = next(r for r in captured_logs() if r["message"] == "STOCK_CONFIG_TRACE")
        assert trace["config_id"] == config.config_id
        assert trace["config_version"] == config.version
        assert trace["checksum"] == config.checksum
        assert trace["supplier_requirement"] == "optional"


class TestBridges:
    def test_build_objects_from_config(self, session_factory):
        config = get_active_config()

        ledger = build_stock_ledger(config, session_factory)
        guard = build_submission_guard(config)
        monitor = build_reconciliation_monitor(config)
        try:
            assert ledger.policy == build_movement_policy(config)
            assert ledger.policy.max_quantity == config.policy.max_quantity
            assert guard.acquire("k") is not None
        finally:
            monitor.shutdown()

    def test_runtime_limits_reach_built_objects(self, tmp_path, session_factory):
        path = _write(
            tmp_path,
            """
            config_id: tight
            version: 1
            ledger:
              lock_timeout_seconds: 2.5
              guard_capacity: 7
            """,
        )
        config = load_configuration(path)

        ledger = build_stock_ledger(config, session_factory)
        guard = build_submission_guard(config)

        assert ledger.lock_registry.timeout_seconds == 2.5
        assert guard.capacity == 7

    def test_engine_requires_url(self):
        with pytest.raises(ValueError, match="database.url"):
            init_engine_from_config(get_active_config())
