from datetime import timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from boardsync.database import build_engine, init_db
from boardsync.exceptions import MappingConflictError
from boardsync.models.audit_log import AuditLog as DBAuditLog
from boardsync.models.rollback_snapshot import RollbackSnapshot as DBRollbackSnapshot
from boardsync.models.sync_operation import SyncOperation as DBSyncOperation
from boardsync.schemas.audit import AuditAction, AuditLogCreate, AuditLogFilter
from boardsync.schemas.common import Platform
from boardsync.schemas.ignore import IgnoreType
from boardsync.schemas.rollback import ChangeKind, RollbackSnapshot, SnapshotChange
from boardsync.schemas.sync import OperationStatus, OperationType, OutcomeStatus, SyncOperation, TicketOutcome
from boardsync.storage.memory import MemoryStorage
from boardsync.storage.sql import SQLStorage
from boardsync.utils.timeutils import utcnow


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'boardsync.db'}")
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request, session_factory):
    if request.param == "memory":
        return MemoryStorage()
    return SQLStorage(session_factory)


def new_operation(user_id=1):
    return SyncOperation(
        user_id=user_id, project_id="BOARD", operation_type=OperationType.SYNC,
        ticket_ids=["T-2"], status=OperationStatus.PENDING,
    )


def new_snapshot(expires_in=timedelta(days=30)):
    return RollbackSnapshot(user_id=1, tickets={"youtrack:I-7": {"id": "I-7"}}, expires_at=utcnow() + expires_in)


def audit_entry(ticket_id="T-1", operation_id=None, action=AuditAction.UPDATED):
    return AuditLogCreate(
        operation_id=operation_id, user_id=1, ticket_id=ticket_id, platform=Platform.YOUTRACK,
        action_type=action, actor="tester@example.com", field_name="status", old_value="DEV", new_value="STAGE",
    )


def test_mapping_create_is_idempotent(store):
    first, created = store.create_mapping(1, "BOARD", "T-1", "ARD", "I-1")
    again, created_again = store.create_mapping(1, "BOARD", "T-1", "ARD", "I-1")

    assert created and not created_again
    assert first.id == again.id
    assert [m.task_id for m in store.list_mappings(1)] == ["T-1"]


def test_mapping_is_one_to_one(store):
    store.create_mapping(1, "BOARD", "T-1", "ARD", "I-1")

    with pytest.raises(MappingConflictError):
        store.create_mapping(1, "BOARD", "T-1", "ARD", "I-2")
    with pytest.raises(MappingConflictError):
        store.create_mapping(1, "BOARD", "T-2", "ARD", "I-1")
    # Other users have their own namespace
    assert store.create_mapping(2, "BOARD", "T-1", "ARD", "I-2")[1]


def test_mapping_lookup_and_delete(store):
    store.create_mapping(1, "BOARD", "T-1", "ARD", "I-1")

    assert store.get_mapping_by_issue(1, "I-1").task_id == "T-1"
    removed = store.delete_mapping(1, "T-1")
    assert removed.issue_id == "I-1"
    assert store.get_mapping_by_task(1, "T-1") is None
    assert store.delete_mapping(1, "T-1") is None


def test_ignore_upsert_and_clear(store):
    store.add_ignore(1, "BOARD", "T-1", IgnoreType.TEMP)
    store.add_ignore(1, "BOARD", "T-1", IgnoreType.FOREVER)
    store.add_ignore(1, "BOARD", "T-2", IgnoreType.TEMP)

    assert [(i.ticket_id, i.ignore_type) for i in store.list_ignored(1, "BOARD")] == [
        ("T-1", IgnoreType.FOREVER), ("T-2", IgnoreType.TEMP),
    ]
    assert store.clear_ignores(1, "BOARD", IgnoreType.TEMP) == 1
    assert store.remove_ignore(1, "BOARD", "T-1")
    assert not store.remove_ignore(1, "BOARD", "T-1")
    assert store.list_ignored(1) == []


def test_operation_and_snapshot_round_trip(store):
    operation, snapshot = store.create_operation(new_operation(), new_snapshot())

    assert operation.id is not None and operation.created_at is not None
    assert snapshot.operation_id == operation.id

    operation.status = OperationStatus.COMPLETED
    operation.results = [TicketOutcome(ticket_id="T-2", status=OutcomeStatus.SUCCESS, counterpart_id="I-7")]
    store.save_operation(operation)
    snapshot.record(SnapshotChange(
        kind=ChangeKind.FIELD_UPDATED, platform=Platform.YOUTRACK, ticket_id="I-7",
        field_name="subsystem", old_value="backend", new_value="security",
    ))
    store.save_snapshot(snapshot)

    loaded = store.get_operation(operation.id)
    assert loaded.status == OperationStatus.COMPLETED
    assert loaded.results[0].counterpart_id == "I-7"
    loaded_snapshot = store.get_snapshot(operation.id)
    assert loaded_snapshot.changes[0].old_value == "backend"
    assert loaded_snapshot.tickets == {"youtrack:I-7": {"id": "I-7"}}


def test_operations_newest_first(store):
    ids = [store.create_operation(new_operation())[0].id for _ in range(3)]
    store.create_operation(new_operation(user_id=2))

    assert [o.id for o in store.list_operations(1)] == list(reversed(ids))
    assert len(store.list_operations(1, limit=2)) == 2


def test_purge_expired_snapshots(store):
    expired, _ = store.create_operation(new_operation(), new_snapshot(expires_in=timedelta(seconds=-1)))
    live, _ = store.create_operation(new_operation(), new_snapshot())

    assert store.purge_expired_snapshots(utcnow()) == 1
    assert store.get_snapshot(expired.id) is None
    assert store.get_snapshot(live.id) is not None
    # The operation itself stays in history
    assert store.get_operation(expired.id) is not None


def test_audit_append_and_query(store):
    for ticket_id in ("T-1", "T-2", "T-1"):
        store.append_audit(audit_entry(ticket_id))
    store.append_audit(audit_entry("T-3", action=AuditAction.CREATED))

    rows = store.query_audit(AuditLogFilter(ticket_id="T-1"))
    assert len(rows) == 2
    assert rows[0].id > rows[1].id
    assert store.count_audit_by_action(1) == {"updated": 3, "created": 1}
    assert len(store.query_audit(AuditLogFilter(limit=1, offset=3))) == 1


def test_sql_audit_survives_operation_delete(session_factory):
    store = SQLStorage(session_factory)
    operation, _ = store.create_operation(new_operation(), new_snapshot())
    store.append_audit(audit_entry(operation_id=operation.id))

    with session_factory() as db:
        db.query(DBSyncOperation).filter(DBSyncOperation.id == operation.id).delete(synchronize_session=False)
        db.commit()

    with session_factory() as db:
        assert db.query(DBRollbackSnapshot).count() == 0
        (row,) = db.query(DBAuditLog).all()
        assert row.operation_id is None


def test_memory_storage_persists_to_file(tmp_path):
    path = str(tmp_path / "state.json")
    store = MemoryStorage(path)
    store.create_mapping(1, "BOARD", "T-1", "ARD", "I-1")
    store.create_operation(new_operation(), new_snapshot())
    store.append_audit(audit_entry())

    reloaded = MemoryStorage(path)
    assert reloaded.get_mapping_by_task(1, "T-1").issue_id == "I-1"
    assert reloaded.get_snapshot(1) is not None
    assert len(reloaded.query_audit(AuditLogFilter())) == 1
    # Id counters continue where they left off
    assert reloaded.create_mapping(1, "BOARD", "T-2", "ARD", "I-2")[0].id == 2
