"""Tests for loading and dumping alert models, and the CLI."""

import json
import logging
from datetime import timezone

import pytest

from main import main
from src.alerts.config import (
    AggregationFunction,
    AlertPriority,
    ChannelType,
    ComparisonOperator,
    LogicalOperator,
    NotificationStatus,
)
from src.alerts.engine import AlertRuleEngine
from src.alerts.exceptions import ConfigurationError
from src.alerts.models import EmailChannelConfig, NotificationLog
from src.alerts.serialization import (
    dump_alerts,
    dump_notification_logs,
    dump_validation,
    load_alert,
    load_configuration,
    load_configurations,
    load_context,
    load_escalation_policy,
    load_notification_settings,
)

from conftest import NOW


CONFIGURATION = {
    "id": "cfg_energy",
    "name": "HQ Building",
    "rules": [{
        "id": "rule_peak",
        "name": "Peak energy with occupancy",
        "priority": "critical",
        "logical_operator": "AND",
        "cooldown_period": 30,
        "conditions": [
            {
                "id": "cond_energy",
                "metric": {"type": "energy_consumption", "sensor_id": "energy_meter_01"},
                "operator": "greater_than",
                "threshold": {"value": 1500},
                "time_aggregation": {"function": "sum", "period": 60, "minimum_data_points": 12},
            },
            {
                "id": "cond_occupancy",
                "metric": {"type": "occupancy", "sensor_id": "occupancy_sensor_01"},
                "operator": "greater_than",
                "threshold": {"value": 50},
                "time_aggregation": {"function": "average", "period": 15, "minimum_data_points": 3},
                "filters": [{"field": "quality", "operator": "equals", "value": "good"}],
            },
        ],
    }],
    "notification_settings": {
        "channels": [{"type": "email", "configuration": {"email_addresses": ["ops@example.com"]}}],
        "recipients": [{
            "id": "facility_manager",
            "contact_methods": [{"type": "email", "value": "fm@example.com", "primary": True}],
        }],
    },
}


def _context_data():
    readings = [
        {"sensor_id": "energy_meter_01", "timestamp": f"2024-03-05T13:{5 + 5 * i:02d}:00",
         "value": 130.0, "unit": "kWh", "quality": "good"}
        for i in range(11)
    ]
    readings.append({"sensor_id": "energy_meter_01", "timestamp": "2024-03-05T14:00:00",
                     "value": 130.0, "unit": "kWh"})
    readings += [
        {"sensor_id": "occupancy_sensor_01", "timestamp": f"2024-03-05T13:{50 + 5 * i:02d}:00",
         "value": v, "unit": "people"}
        for i, v in enumerate([60, 75])
    ]
    readings.append({"sensor_id": "occupancy_sensor_01", "timestamp": "2024-03-05T14:00:00Z",
                     "value": 90, "unit": "people"})
    return {"current_time": "2024-03-05T14:00:00", "sensor_readings": readings}


class TestLoading:
    """Test coercion of raw mappings into models."""

    def test_load_configuration(self):
        configuration = load_configuration(CONFIGURATION)
        rule = configuration.rules[0]

        assert rule.priority == AlertPriority.CRITICAL
        assert rule.logical_operator == LogicalOperator.AND
        assert rule.conditions[0].operator == ComparisonOperator.GREATER_THAN
        assert rule.conditions[1].time_aggregation.function == AggregationFunction.AVERAGE
        assert rule.conditions[1].filters[0].value == "good"

        channel = configuration.notification_settings.channels[0]
        assert channel.type == ChannelType.EMAIL
        resolved = channel.resolved_configuration()
        assert isinstance(resolved, EmailChannelConfig)
        assert resolved.email_addresses == ["ops@example.com"]

    def test_load_configurations_accepts_single_object(self):
        assert [c.id for c in load_configurations(CONFIGURATION)] == ["cfg_energy"]
        assert len(load_configurations([CONFIGURATION, CONFIGURATION])) == 2

    def test_invalid_configuration(self):
        with pytest.raises(ConfigurationError):
            load_configuration({"id": "cfg_bad", "name": "Bad", "rules": [{"id": "r"}]})

    def test_naive_timestamps_are_utc(self):
        context = load_context(_context_data())
        assert context.current_time == NOW
        assert all(r.timestamp.tzinfo is not None for r in context.sensor_readings)
        assert context.sensor_readings[-1].timestamp.utcoffset() == timezone.utc.utcoffset(None)

    def test_loaded_inputs_evaluate(self):
        alerts = AlertRuleEngine().evaluate_alerts(
            load_configurations(CONFIGURATION), load_context(_context_data()),
        )
        assert len(alerts) == 1
        assert alerts[0].metric_values[0].value == pytest.approx(1560.0)

    def test_load_policy_and_settings(self):
        policy = load_escalation_policy({
            "id": "policy_hq",
            "stages": [{"level": 1, "delay_minutes": 15, "recipients": ["chief_engineer"],
                        "channels": ["sms"]}],
        })
        assert policy.stages[0].channels == [ChannelType.SMS]

        settings = load_notification_settings({
            "quiet_hours": {"enabled": True, "timezone": "America/New_York"},
            "frequency_limits": {"max_alerts_per_hour": 5},
        })
        assert settings.quiet_hours.enabled
        assert settings.frequency_limits.max_alerts_per_hour == 5


class TestDumping:
    """Test JSON-compatible output."""

    def test_dump_alerts_round_trip(self):
        alerts = AlertRuleEngine().evaluate_alerts(
            load_configurations(CONFIGURATION), load_context(_context_data()),
        )
        dumped = dump_alerts(alerts)

        json.dumps(dumped)
        assert dumped[0]["severity"] == "critical"
        assert dumped[0]["status"] == "triggered"

        restored = load_alert(dumped[0])
        assert restored.id == alerts[0].id
        assert restored.triggered_at == alerts[0].triggered_at

    def test_dump_notification_logs(self):
        entry = NotificationLog(
            channel=ChannelType.SMS, recipient="+15550001111", sent_at=NOW,
            status=NotificationStatus.FAILED, error_message="queue full",
        )
        dumped = dump_notification_logs([entry])[0]
        assert dumped["channel"] == "sms"
        assert dumped["status"] == "failed"
        assert dumped["sent_at"].startswith("2024-03-05T14:00:00")

    def test_dump_validation(self):
        validation = AlertRuleEngine().validate_configuration(load_configuration(CONFIGURATION))
        dumped = dump_validation(validation)
        assert dumped["is_valid"] is True
        assert dumped["subscription_compatibility"]["tier_required"] == "free"


class TestCli:
    """Test the command line entry point."""

    @pytest.fixture(autouse=True)
    def _restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def _write(self, tmp_path, name, data):
        path = tmp_path / name
        path.write_text(json.dumps(data))
        return str(path)

    def test_evaluate(self, tmp_path, capsys):
        configs = self._write(tmp_path, "configs.json", [CONFIGURATION])
        context = self._write(tmp_path, "context.json", _context_data())

        assert main(["evaluate", "--configs", configs, "--context", context]) == 0
        output = json.loads(capsys.readouterr().out)
        assert len(output) == 1
        assert output[0]["configuration_id"] == "cfg_energy"

    def test_validate_invalid_configuration(self, tmp_path, capsys):
        config = self._write(tmp_path, "config.json", {"id": "cfg_new", "name": "", "rules": []})

        assert main(["validate", "--config", config, "--tier", "free"]) == 1
        output = json.loads(capsys.readouterr().out)
        assert output["is_valid"] is False

    def test_missing_file(self, tmp_path, capsys):
        missing = str(tmp_path / "nope.json")
        assert main(["validate", "--config", missing]) == 2
        assert "error:" in capsys.readouterr().err
