import json
from datetime import timedelta

import httpx
import pytest

from boardsync.connectors.youtrack_connector import YouTrackConnector
from boardsync.exceptions import RollbackError, TransientError
from boardsync.schemas.audit import AuditAction, AuditLogFilter
from boardsync.schemas.sync import DeleteSource, OperationStatus, OperationType, OutcomeStatus, SyncScope
from boardsync.services.board_sync import BoardSyncService
from boardsync.utils.timeutils import utcnow
from tests.fakes import issue, task


@pytest.fixture
def linked(storage, board, tracker, scope):
    board.add(task("T-2", "Harden session cookies", "In Progress", ["Security"]))
    tracker.add(issue("I-7", "Harden session cookies", "In Progress", "backend"))
    storage.create_mapping(scope.user_id, scope.task_project_id, "T-2", scope.issue_project_id, "I-7")


@pytest.mark.asyncio
async def test_rollback_restores_updated_field(service, storage, tracker, scope, linked):
    operation = await service.execute(scope, OperationType.SYNC, ["T-2"])
    assert tracker.tickets["I-7"].subsystem == "security"

    rollback_op = await service.rollback(scope, operation.id)

    assert rollback_op.operation_type == OperationType.ROLLBACK
    assert rollback_op.status == OperationStatus.COMPLETED
    assert rollback_op.details["rolled_back_operation_id"] == operation.id
    assert tracker.tickets["I-7"].subsystem == "backend"
    assert storage.get_operation(operation.id).status == OperationStatus.ROLLED_BACK
    assert storage.get_snapshot(operation.id) is None

    (entry,) = storage.query_audit(AuditLogFilter(action_type=AuditAction.ROLLED_BACK))
    assert (entry.field_name, entry.old_value, entry.new_value) == ("subsystem", "security", "backend")
    assert entry.operation_id == rollback_op.id


@pytest.mark.asyncio
async def test_rollback_of_create_removes_ticket_and_mapping(service, storage, board, tracker, scope):
    board.add(task("T-1", "Fix login bug", "Backlog", ["Backend"]))
    operation = await service.execute(scope, OperationType.CREATE, ["T-1"])
    assert "I-42" in tracker.tickets

    await service.rollback(scope, operation.id)

    assert "I-42" not in tracker.tickets
    assert storage.get_mapping_by_task(scope.user_id, "T-1") is None
    assert "T-1" in board.tickets


@pytest.mark.asyncio
async def test_rollback_of_delete_recreates_with_new_ids(service, storage, board, tracker, scope, linked):
    operation = await service.execute(scope, OperationType.DELETE, ["T-2"], source=DeleteSource.BOTH)
    assert not board.tickets and not tracker.tickets

    rollback_op = await service.rollback(scope, operation.id)

    assert rollback_op.results[0].status == OutcomeStatus.SUCCESS
    (new_task,) = board.tickets.values()
    (new_issue,) = tracker.tickets.values()
    assert new_task.title == "Harden session cookies"
    assert new_task.tags == ["Security"]
    assert new_issue.subsystem == "backend"
    assert new_task.id != "T-2" and new_issue.id != "I-7"

    mapping = storage.get_mapping_by_task(scope.user_id, new_task.id)
    assert mapping.issue_id == new_issue.id


@pytest.mark.asyncio
async def test_failed_step_keeps_snapshot(service, storage, tracker, scope, linked):
    operation = await service.execute(scope, OperationType.SYNC, ["T-2"])
    tracker.fail_on[("update", "I-7")] = TransientError("YouTrack", "Server error 500", 500)

    rollback_op = await service.rollback(scope, operation.id)

    assert rollback_op.results[0].status == OutcomeStatus.FAILED
    assert rollback_op.error_message == "1 of 1 rollback steps failed"
    assert storage.get_operation(operation.id).status == OperationStatus.COMPLETED
    assert len(storage.get_snapshot(operation.id).changes) == 1

    del tracker.fail_on[("update", "I-7")]
    await service.rollback(scope, operation.id)
    assert tracker.tickets["I-7"].subsystem == "backend"


@pytest.mark.asyncio
async def test_expired_snapshot_is_discarded(service, storage, scope, linked):
    operation = await service.execute(scope, OperationType.SYNC, ["T-2"])
    snapshot = storage.get_snapshot(operation.id)
    storage.save_snapshot(snapshot.model_copy(update={"expires_at": utcnow() - timedelta(days=1)}))

    with pytest.raises(RollbackError) as exc_info:
        await service.rollback(scope, operation.id)

    assert exc_info.value.code == RollbackError.SNAPSHOT_EXPIRED
    assert storage.get_snapshot(operation.id) is None


@pytest.mark.asyncio
async def test_missing_snapshot(service, storage, scope, linked):
    operation = await service.execute(scope, OperationType.SYNC, ["T-2"])
    storage.delete_snapshot(operation.id)

    with pytest.raises(RollbackError) as exc_info:
        await service.rollback(scope, operation.id)
    assert exc_info.value.code == RollbackError.SNAPSHOT_MISSING


@pytest.mark.asyncio
async def test_unknown_operation(service, scope):
    with pytest.raises(RollbackError) as exc_info:
        await service.rollback(scope, 999)
    assert exc_info.value.code == RollbackError.NOT_FOUND


@pytest.mark.asyncio
async def test_other_users_operation_is_forbidden(service, scope, linked):
    operation = await service.execute(scope, OperationType.SYNC, ["T-2"])
    intruder = SyncScope(user_id=2, task_project_id="BOARD", issue_project_id="ARD")

    with pytest.raises(RollbackError) as exc_info:
        await service.rollback(intruder, operation.id)
    assert exc_info.value.code == RollbackError.FORBIDDEN


@pytest.mark.asyncio
async def test_rollback_cannot_be_rolled_back(service, scope, linked):
    operation = await service.execute(scope, OperationType.SYNC, ["T-2"])
    rollback_op = await service.rollback(scope, operation.id)

    with pytest.raises(RollbackError) as exc_info:
        await service.rollback(scope, rollback_op.id)
    assert exc_info.value.code == RollbackError.NOT_ROLLBACKABLE


@pytest.mark.asyncio
async def test_operation_without_changes_is_not_rollbackable(service, scope, linked):
    operation = await service.execute(scope, OperationType.SYNC, ["T-404"])

    with pytest.raises(RollbackError) as exc_info:
        await service.rollback(scope, operation.id)
    assert exc_info.value.code == RollbackError.NOT_ROLLBACKABLE


@pytest.mark.asyncio
async def test_purge_expired_snapshots(service, storage, scope, linked):
    first = await service.execute(scope, OperationType.SYNC, ["T-2"])
    second = await service.execute(scope, OperationType.SYNC, ["T-404"])
    snapshot = storage.get_snapshot(first.id)
    storage.save_snapshot(snapshot.model_copy(update={"expires_at": utcnow() - timedelta(minutes=1)}))

    assert service.purge_expired_snapshots() == 1
    assert storage.get_snapshot(first.id) is None
    assert storage.get_snapshot(second.id) is not None


class YouTrackStub:
    """Stateful YouTrack API served through httpx.MockTransport."""

    def __init__(self, *issues):
        self.issues = {i["idReadable"]: i for i in issues}
        self.bodies = []

    def __call__(self, request):
        path = request.url.path
        if path == "/api/users/me":
            return httpx.Response(200, json={"login": "sync-bot"})
        if request.method == "GET" and path == "/api/issues":
            return httpx.Response(200, json=list(self.issues.values()))
        issue_id = path.rsplit("/", 1)[-1]
        if request.method == "POST" and issue_id in self.issues:
            body = json.loads(request.content)
            self.bodies.append(body)
            fields = {f["name"]: f for f in self.issues[issue_id]["customFields"]}
            for field in body.get("customFields", []):
                fields[field["name"]] = {"name": field["name"], "value": field["value"]}
            self.issues[issue_id]["customFields"] = list(fields.values())
            return httpx.Response(200, json={"idReadable": issue_id})
        return httpx.Response(404, json={"error": "not found"})

    def field(self, issue_id, name):
        for field in self.issues[issue_id]["customFields"]:
            if field["name"] == name:
                return (field["value"] or {}).get("name")
        return None


@pytest.mark.asyncio
async def test_rollback_clears_field_that_was_empty(storage, board, scope):
    stub = YouTrackStub({
        "idReadable": "ARD-7",
        "summary": "Harden session cookies",
        "description": "",
        "customFields": [{"name": "State", "value": {"name": "In Progress"}}, {"name": "Subsystem", "value": None}],
    })
    tracker = YouTrackConnector("https://yt.example.com", "yt-token", "ARD", transport=httpx.MockTransport(stub))
    service = BoardSyncService(storage, board, tracker)
    board.add(task("T-2", "Harden session cookies", "In Progress", ["Security"]))
    storage.create_mapping(scope.user_id, scope.task_project_id, "T-2", scope.issue_project_id, "ARD-7")

    operation = await service.execute(scope, OperationType.SYNC, ["T-2"])
    assert stub.field("ARD-7", "Subsystem") == "security"

    rollback_op = await service.rollback(scope, operation.id)

    assert rollback_op.results[0].status == OutcomeStatus.SUCCESS
    assert stub.bodies[-1]["customFields"] == [
        {"$type": "SingleOwnedIssueCustomField", "name": "Subsystem", "value": None}
    ]
    assert stub.field("ARD-7", "Subsystem") is None
    assert storage.get_operation(operation.id).status == OperationStatus.ROLLED_BACK
    await service.close()


@pytest.mark.asyncio
async def test_partial_rollback_is_linked_from_original(service, storage, tracker, scope, linked):
    operation = await service.execute(scope, OperationType.SYNC, ["T-2"])
    tracker.fail_on[("update", "I-7")] = TransientError("YouTrack", "Server error 500", 500)

    rollback_op = await service.rollback(scope, operation.id)

    original = storage.get_operation(operation.id)
    assert original.details["partial_rollback_by"] == rollback_op.id
    assert original.details["pending_rollback_changes"] == 1
    assert rollback_op.details["pending_changes"] == 1


@pytest.mark.asyncio
async def test_unexpected_error_in_step_is_recorded(service, storage, tracker, scope, linked):
    operation = await service.execute(scope, OperationType.SYNC, ["T-2"])
    tracker.fail_on[("update", "I-7")] = ValueError("malformed response")

    rollback_op = await service.rollback(scope, operation.id)

    assert rollback_op.status == OperationStatus.COMPLETED
    assert rollback_op.results[0].status == OutcomeStatus.FAILED
    assert "malformed response" in rollback_op.results[0].error
    assert storage.get_snapshot(operation.id) is not None
