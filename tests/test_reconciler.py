import pytest

from boardsync.schemas.common import Direction
from boardsync.schemas.mapping import TicketMapping
from boardsync.services.identity import sync_marker
from boardsync.services.mapper import FieldMapper
from boardsync.services.reconciler import ReconciliationService, sanitize_for_comparison
from tests.fakes import issue, task


def mapping(task_id, issue_id, mapping_id=1):
    return TicketMapping(
        id=mapping_id, user_id=1, task_project_id="BOARD", task_id=task_id, issue_project_id="ARD", issue_id=issue_id
    )


@pytest.fixture
def reconciler():
    return ReconciliationService(FieldMapper(alert_states=["Needs Triage"]))


@pytest.fixture
def board_tasks():
    return [
        task("T-1", "Fix login bug", "Backlog", ["Backend"]),
        task("T-2", "Harden session cookies", "In Progress", ["Security"]),
        task("T-3", "Matched task", "DEV", ["Web"]),
        task("T-4", "Exploratory notes", "Findings"),
        task("T-5", "Parked idea", "Someday"),
    ]


@pytest.fixture
def tracker_issues():
    return [
        issue("I-7", "Harden session cookies", "In Progress", "backend"),
        issue("I-8", "Matched task", "DEV", "web"),
        issue("I-9", "Tracker only issue", "Backlog"),
    ]


@pytest.fixture
def mappings():
    return [mapping("T-2", "I-7", 1), mapping("T-3", "I-8", 2)]


def ids(tickets):
    return [t.id for t in tickets]


def test_classification(reconciler, board_tasks, tracker_issues, mappings):
    result = reconciler.analyze(board_tasks, tracker_issues, mappings)

    assert [p.ticket_id for p in result.matched] == ["T-3"]
    assert [p.ticket_id for p in result.mismatched] == ["T-2"]
    assert [m.ticket_id for m in result.missing] == ["T-1"]
    assert ids(result.orphaned) == ["I-9"]
    assert [(d.ticket_id, d.reason) for d in result.display_only] == [("T-4", "display_only"), ("T-5", "unmapped")]
    assert result.findings_alerts == []


def test_tag_mismatch_scenario(reconciler, board_tasks, tracker_issues, mappings):
    result = reconciler.analyze(board_tasks, tracker_issues, mappings)
    pair = result.find_mismatched("T-2")

    assert pair.tag_mismatch
    assert not pair.status_mismatch
    (mismatch,) = pair.mismatches
    assert (mismatch.field, mismatch.source_value, mismatch.target_value) == ("subsystem", "security", "backend")


def test_analysis_is_deterministic(reconciler, board_tasks, tracker_issues, mappings):
    first = reconciler.analyze(board_tasks, tracker_issues, mappings)
    second = reconciler.analyze(list(reversed(board_tasks)), list(reversed(tracker_issues)), list(reversed(mappings)))
    assert first.model_dump_json() == second.model_dump_json()


def test_partition_covers_every_ticket_once(reconciler, board_tasks, tracker_issues, mappings):
    result = reconciler.analyze(board_tasks, tracker_issues, mappings)

    seen = []
    for pair in result.matched + result.mismatched:
        seen += [pair.source.id, pair.target.id]
    seen += [m.ticket.id for m in result.missing]
    seen += ids(result.orphaned)
    for alert in result.findings_alerts:
        seen += [alert.target.id] + ([alert.source.id] if alert.source else [])
    for entry in result.display_only:
        seen += [entry.ticket.id] + ([entry.counterpart.id] if entry.counterpart else [])

    assert sorted(seen) == sorted(ids(board_tasks) + ids(tracker_issues))


def test_ignored_ticket_and_counterpart_are_suppressed(reconciler, board_tasks, tracker_issues, mappings):
    result = reconciler.analyze(board_tasks, tracker_issues, mappings, ignore_set={"T-2", "I-9"})

    assert "T-2" not in [p.ticket_id for p in result.mismatched]
    assert "I-9" not in ids(result.orphaned)
    assert sorted(ids(result.ignored)) == ["I-7", "I-9", "T-2"]


def test_findings_alert_when_issue_still_active(reconciler):
    result = reconciler.analyze(
        [task("T-4", "Crash on save", "Findings")],
        [issue("I-4", "Crash on save", "DEV")],
        [mapping("T-4", "I-4")],
    )
    (alert,) = result.findings_alerts
    assert alert.message == "HIGH ALERT: 'Crash on save' is in Findings (Asana) but still active in YouTrack (DEV)"
    assert result.display_only == []


def test_alert_state_is_always_surfaced(reconciler):
    result = reconciler.analyze(
        [task("T-1", "Paired", "Backlog")],
        [issue("I-1", "Paired", "Needs Triage"), issue("I-2", "Unpaired", "Needs Triage")],
        [mapping("T-1", "I-1")],
    )
    assert sorted(a.target.id for a in result.findings_alerts) == ["I-1", "I-2"]
    assert result.matched == [] and result.orphaned == []


def test_ambiguous_title_goes_to_missing_and_orphaned(reconciler):
    result = reconciler.analyze(
        [task("T-1", "Fix login bug")],
        [issue("I-1", "Fix login bug"), issue("I-2", "Fix login bug")],
        [],
    )
    (missing,) = result.missing
    assert missing.ambiguous_candidates == ["I-1", "I-2"]
    assert ids(result.orphaned) == ["I-1", "I-2"]


def test_contested_title_claims_are_demoted(reconciler):
    result = reconciler.analyze(
        [task("T-1", "Fix login bug"), task("T-2", "fix login bug")],
        [issue("I-1", "Fix login bug")],
        [],
    )
    assert [m.ticket_id for m in result.missing] == ["T-1", "T-2"]
    assert ids(result.orphaned) == ["I-1"]


def test_marker_and_prefix_are_ignored_in_comparison(reconciler):
    result = reconciler.analyze(
        [task("T-1", "ARD-1 Fix login bug", "Backlog", description="Repro steps")],
        [issue("ARD-1", "Fix login bug", "Backlog", description=f"Repro steps\n\n{sync_marker('T-1')}")],
        [],
    )
    assert [p.ticket_id for p in result.matched] == ["T-1"]


def test_status_mismatch(reconciler):
    result = reconciler.analyze(
        [task("T-1", "Fix login bug", "STAGE")],
        [issue("I-1", "Fix login bug", "DEV")],
        [mapping("T-1", "I-1")],
    )
    pair = result.find_mismatched("T-1")
    assert pair.status_mismatch
    assert pair.mismatches[0].source_value == "STAGE"


def test_column_filter(reconciler, board_tasks, tracker_issues, mappings):
    result = reconciler.analyze(board_tasks, tracker_issues, mappings, column_filter=["backlog"])

    assert [m.ticket_id for m in result.missing] == ["T-1"]
    assert result.matched == [] and result.mismatched == []
    assert result.filtered_out == 4
    # Counterparts of filtered tasks are not reported as orphans
    assert ids(result.orphaned) == ["I-9"]


def test_reverse_direction_makes_issues_create_candidates(reconciler, board_tasks, tracker_issues, mappings):
    result = reconciler.analyze(tracker_issues, board_tasks, mappings, direction=Direction.REVERSE)

    assert [m.ticket_id for m in result.missing] == ["I-9"]
    assert sorted(ids(result.orphaned)) == ["T-1", "T-4", "T-5"]
    pair = result.find_mismatched("I-7")
    assert pair.target.id == "T-2"
    assert pair.mismatches[0].field == "subsystem"


def test_creator_filter(reconciler):
    result = reconciler.analyze(
        [issue("I-1", "Mine", creator="alice"), issue("I-2", "Theirs", creator="bob")],
        [],
        [],
        direction=Direction.REVERSE,
        creator_filter="Alice",
    )
    assert [m.ticket_id for m in result.missing] == ["I-1"]
    assert result.filtered_out == 1


def test_sync_health(reconciler, board_tasks, tracker_issues, mappings):
    result = reconciler.analyze(board_tasks, tracker_issues, mappings)
    assert result.sync_health == pytest.approx(33.3)
    assert result.counts["display_only"] == 2


def test_sanitize_for_comparison():
    assert sanitize_for_comparison("  Line one\r\n\r\n\r\nLine Two  ") == "line one\nline two"
    assert sanitize_for_comparison(None) == ""
