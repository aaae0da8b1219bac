import pytest

from boardsync.schemas.mapping import ColumnMapping
from boardsync.services.mapper import ColumnResolution, FieldMapper


@pytest.fixture
def mapper():
    return FieldMapper()


def test_column_to_state_defaults(mapper):
    assert mapper.map_column_to_state("In Progress") == "In Progress"
    assert mapper.map_column_to_state("ready for stage") == "DEV"
    assert mapper.map_column_to_state("  dev ") == "DEV"


def test_findings_column_is_display_only(mapper):
    assert mapper.resolve_column("Findings") == (ColumnResolution.DISPLAY_ONLY, None)
    assert mapper.is_display_only("findings")
    assert mapper.map_column_to_state("Findings") is None


def test_unknown_column_is_unmapped(mapper):
    assert mapper.resolve_column("Someday") == (ColumnResolution.UNMAPPED, None)
    assert mapper.resolve_column(None) == (ColumnResolution.UNMAPPED, None)


def test_reverse_mapping_prefers_highest_priority(mapper):
    # Both "DEV" and "Ready for Stage" map to DEV; DEV has the higher priority
    assert mapper.map_state_to_column("DEV") == "DEV"
    assert mapper.map_state_to_column("development") == "DEV"


def test_reverse_mapping_priority_override():
    mapper = FieldMapper(column_mappings=[
        ColumnMapping(column="Doing", state="In Progress", reverse_sync_priority=0),
        ColumnMapping(column="Active", state="In Progress", reverse_sync_priority=5),
    ])
    assert mapper.map_state_to_column("In Progress") == "Active"


def test_state_aliases(mapper):
    assert mapper.normalize_state("to do") == "Backlog"
    assert mapper.normalize_state("On Hold") == "Blocked"
    assert mapper.states_match("staging", "STAGE")
    assert not mapper.states_match("Backlog", "DEV")
    assert mapper.is_active_state("in-progress")
    assert not mapper.is_active_state("Done")


def test_map_tag_lookup_order(mapper):
    assert mapper.map_tag("Security") == "security"
    assert mapper.map_tag("devops") == "infrastructure"
    assert mapper.map_tag("Payments") == "payments"


def test_map_tags_first_non_empty_wins(mapper):
    assert mapper.map_tags(["", "iOS", "Web"]) == "mobile"
    assert mapper.map_tags([]) is None


def test_tags_for_subsystem(mapper):
    assert mapper.tags_for_subsystem("security") == ["Security"]
    assert set(mapper.tags_for_subsystem("mobile")) == {"Mobile", "iOS", "Android"}
    assert mapper.tags_for_subsystem("billing") == ["billing"]
    assert mapper.tags_for_subsystem(None) == []


def test_alert_states():
    mapper = FieldMapper(alert_states=["Needs Triage"])
    assert mapper.is_alert_state("needs triage")
    assert not mapper.is_alert_state("Backlog")
    assert not mapper.is_alert_state(None)
