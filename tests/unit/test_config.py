"""
Unit tests for configuration loading.
"""

import pytest
from datetime import timedelta

from src.utils.config import AppConfig, apply_environment, from_dict, load_config, load_yaml
from src.utils.errors import ConfigurationError


class TestLoadConfig:
    """Test YAML plus environment configuration."""

    @pytest.fixture
    def config_file(self, tmp_path):
        path = tmp_path / "telemetry2db.yaml"
        path.write_text(
            "database:\n"
            "  url: postgresql://localhost/telemetry\n"
            "  storeTablename: power\n"
            "destination:\n"
            "  url: postgresql://backup/telemetry\n"
            "bus:\n"
            "  server: broker:9092\n"
            "  topic: tele.power\n"
            "  maxTries: 3\n"
            "mapping:\n"
            "  - source: Time\n"
            "    destination: time\n"
            "    type: time.Time\n"
            "reconciliation:\n"
            "  timeField: inserted_at\n"
            "  toleranceSeconds: 30\n"
            "  repeatBudget: 10\n"
            "  backfillPolicy: mirror_destination\n"
            "  backfillOnDrain: false\n"
            "  validateOrder: true\n"
            "  dryRun: true\n"
            "  rawQuery: SELECT inserted_on, time, id FROM {table}\n"
        )
        return str(path)

    def test_yaml_values(self, config_file):
        config = load_config(config_file, environ={})

        assert config.database.url == "postgresql://localhost/telemetry"
        assert config.database.store_tablename == "power"
        assert config.destination.url == "postgresql://backup/telemetry"
        assert config.bus.server == "broker:9092"
        assert config.bus.topic == "tele.power"
        assert config.bus.max_tries == 3
        assert config.mapping[0]["destination"] == "time"

        rc = config.reconciliation
        assert rc.time_field == "inserted_at"
        assert rc.tolerance == timedelta(seconds=30)
        assert rc.repeat_budget == 10
        assert rc.backfill_policy == "mirror_destination"
        assert rc.backfill_on_drain is False
        assert rc.validate_order is True
        assert rc.dry_run is True
        assert "{table}" in rc.raw_query

    def test_environment_overrides_yaml(self, config_file):
        config = load_config(config_file, environ={
            "TELEMETRY_STORE_TABLENAME": "power2",
            "TELEMETRY_DEST_URL": "postgresql://other/telemetry",
            "TELEMETRY_DEST_PASS": "s3cret",
            "TELEMETRY_BUS_TOPIC": "#",
        })

        assert config.database.store_tablename == "power2"
        assert config.destination.url == "postgresql://other/telemetry"
        assert config.destination.password == "s3cret"
        assert config.bus.topic == "#"

    def test_empty_environment_value_is_ignored(self, config_file):
        config = load_config(config_file, environ={"TELEMETRY_STORE_TABLENAME": ""})

        assert config.database.store_tablename == "power"

    def test_defaults_without_file(self):
        config = load_config(environ={})

        assert config.bus.topic == "#"
        assert config.bus.max_tries == 10
        assert config.reconciliation.tolerance is None
        assert config.reconciliation.repeat_budget == 25
        assert config.reconciliation.key_fields == ["time"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_yaml(str(tmp_path / "missing.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("database: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_yaml(str(path))

    def test_section_must_be_mapping(self):
        with pytest.raises(ConfigurationError):
            from_dict({"database": ["url"]})

    def test_quoted_booleans(self):
        config = from_dict({"reconciliation": {"backfillOnDrain": "false", "dryRun": "yes"}})

        assert config.reconciliation.backfill_on_drain is False
        assert config.reconciliation.dry_run is True

    def test_invalid_boolean(self):
        with pytest.raises(ConfigurationError, match="validateOrder"):
            from_dict({"reconciliation": {"validateOrder": "sometimes"}})

    def test_non_numeric_tolerance(self):
        with pytest.raises(ConfigurationError, match="toleranceSeconds"):
            from_dict({"reconciliation": {"toleranceSeconds": "two minutes"}})

    def test_non_numeric_channel_size(self):
        with pytest.raises(ConfigurationError, match="channelSize"):
            from_dict({"reconciliation": {"channelSize": [1000]}})


class TestRequirements:
    """Test configuration checks before a run."""

    def test_destination_required(self):
        config = apply_environment(AppConfig(), {
            "TELEMETRY_STORE_URL": "postgresql://localhost/telemetry",
            "TELEMETRY_STORE_TABLENAME": "power",
        })

        with pytest.raises(ConfigurationError, match="TELEMETRY_DEST_URL"):
            config.require_destination()

    def test_table_required(self):
        config = apply_environment(AppConfig(), {"TELEMETRY_STORE_URL": "postgresql://localhost/db"})

        with pytest.raises(ConfigurationError, match="table not defined"):
            config.require_store()

    def test_bus_required(self):
        config = apply_environment(AppConfig(), {
            "TELEMETRY_STORE_URL": "postgresql://localhost/db",
            "TELEMETRY_STORE_TABLENAME": "power",
        })

        with pytest.raises(ConfigurationError, match="BUS_SERVER"):
            config.require_bus()
