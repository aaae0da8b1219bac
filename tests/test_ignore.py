import pytest

from boardsync.schemas.audit import AuditAction, AuditLogFilter
from boardsync.schemas.common import Platform
from boardsync.schemas.ignore import IgnoreType
from boardsync.schemas.sync import OperationType, OutcomeStatus
from tests.fakes import issue, task


@pytest.mark.asyncio
async def test_forever_ignore_suppresses_ticket(service, board, scope):
    board.add(task("T-1", "Fix login bug", "Backlog"))

    entry = await service.ignore(scope, "T-1", ignore_type=IgnoreType.FOREVER)

    assert entry.project_id == scope.task_project_id
    analysis = await service.analyze(scope)
    assert analysis.missing == []
    assert [t.id for t in analysis.ignored] == ["T-1"]

    operation = await service.execute(scope, OperationType.CREATE, ["T-1"], analysis=analysis)
    assert operation.results[0].status == OutcomeStatus.SKIPPED


@pytest.mark.asyncio
async def test_ignored_target_is_not_orphaned(service, tracker, scope):
    tracker.add(issue("I-9", "Tracker only issue"))

    await service.ignore(scope, "I-9", platform=Platform.YOUTRACK)

    analysis = await service.analyze(scope)
    assert analysis.orphaned == []
    assert [t.id for t in analysis.ignored] == ["I-9"]
    assert [i.project_id for i in service.list_ignored(scope, Platform.YOUTRACK)] == [scope.issue_project_id]


@pytest.mark.asyncio
async def test_clear_temporary_keeps_forever(service, scope):
    await service.ignore(scope, "T-1", ignore_type=IgnoreType.TEMP)
    await service.ignore(scope, "T-2", ignore_type=IgnoreType.FOREVER)
    await service.ignore(scope, "I-3", ignore_type=IgnoreType.TEMP, platform=Platform.YOUTRACK)

    assert await service.clear_temporary_ignores(scope) == 2
    assert [i.ticket_id for i in service.list_ignored(scope)] == ["T-2"]


@pytest.mark.asyncio
async def test_retyping_and_removal_are_audited(service, storage, scope):
    await service.ignore(scope, "T-1", ignore_type=IgnoreType.TEMP)
    await service.ignore(scope, "T-1", ignore_type=IgnoreType.FOREVER)
    await service.ignore(scope, "T-1", action="remove")

    entries = storage.query_audit(AuditLogFilter(ticket_id="T-1", action_type=AuditAction.IGNORED))
    # Newest first
    assert [(e.old_value, e.new_value) for e in entries] == [
        ("forever", None),
        ("temp", "forever"),
        (None, "temp"),
    ]
    assert service.list_ignored(scope) == []


@pytest.mark.asyncio
async def test_removing_unknown_ignore_is_a_noop(service, storage, scope):
    assert await service.ignore(scope, "T-404", action="remove") is None
    assert storage.query_audit(AuditLogFilter()) == []
