import logging

from boardsync.config import Settings
from boardsync.log_config import configure_logging
from boardsync.services.mapper import FieldMapper


def test_debug_forces_debug_level():
    assert Settings(debug=True, log_level="INFO").log_level == "DEBUG"
    assert Settings(debug=True, log_level="TRACE").log_level == "TRACE"


def test_list_properties():
    settings = Settings(cors_origins="http://a, http://b", findings_columns="Findings, QA Review", alert_states="")
    assert settings.cors_origins_list == ["http://a", "http://b"]
    assert settings.findings_columns_list == ["findings", "qa review"]
    assert settings.alert_states_list == []


def test_mapper_from_settings_overrides():
    settings = Settings(
        column_mappings_json='{"Todo": "Backlog", "Parking": "DISPLAY_ONLY"}',
        tag_mappings_json='{"Payments": "billing"}',
        alert_states="Needs Triage",
    )
    mapper = FieldMapper.from_settings(settings)

    assert mapper.map_column_to_state("todo") == "Backlog"
    assert mapper.is_display_only("Parking")
    assert mapper.map_column_to_state("DEV") is None
    assert mapper.map_tags(["Payments"]) == "billing"
    assert mapper.is_alert_state("needs triage")


def test_mapper_defaults_when_unset():
    mapper = FieldMapper.from_settings(Settings())
    assert mapper.map_column_to_state("Ready for Stage") == "DEV"
    assert mapper.map_tags(["UI/UX"]) == "frontend"


def test_trace_level_registered():
    configure_logging("INFO")
    assert logging.getLevelName(5) == "TRACE"
    assert hasattr(logging.getLogger("boardsync.connectors"), "trace")
