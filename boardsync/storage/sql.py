"""Relational storage backend on top of SQLAlchemy sessions."""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from boardsync.exceptions import MappingConflictError
from boardsync.models.audit_log import AuditLog as DBAuditLog
from boardsync.models.ignored_ticket import IgnoredTicket as DBIgnoredTicket
from boardsync.models.rollback_snapshot import RollbackSnapshot as DBRollbackSnapshot
from boardsync.models.sync_operation import SyncOperation as DBSyncOperation
from boardsync.models.ticket_mapping import TicketMapping as DBTicketMapping
from boardsync.schemas.audit import AuditLogCreate, AuditLogEntry, AuditLogFilter
from boardsync.schemas.ignore import IgnoredTicket, IgnoreType
from boardsync.schemas.mapping import TicketMapping
from boardsync.schemas.rollback import RollbackSnapshot
from boardsync.schemas.sync import SyncOperation
from boardsync.storage.base import Storage
from boardsync.storage.filters import date_bounds
from boardsync.utils.timeutils import utcnow

log = logging.getLogger(__name__)


def _operation_from_row(row: DBSyncOperation) -> SyncOperation:
    return SyncOperation(
        id=row.id,
        user_id=row.user_id,
        project_id=row.project_id,
        operation_type=row.operation_type,
        direction=row.direction,
        trigger=row.trigger,
        ticket_ids=row.ticket_ids or [],
        status=row.status,
        results=row.results or [],
        summary=row.summary or "",
        error_message=row.error_message,
        details=row.details or {},
        started_at=row.started_at,
        completed_at=row.completed_at,
        created_at=row.created_at,
    )


def _apply_operation(row: DBSyncOperation, operation: SyncOperation) -> None:
    data = operation.model_dump(mode="json")
    row.user_id = operation.user_id
    row.project_id = operation.project_id
    row.operation_type = operation.operation_type.value
    row.direction = operation.direction.value
    row.trigger = operation.trigger
    row.status = operation.status.value
    row.ticket_ids = data["ticket_ids"]
    row.results = data["results"]
    row.summary = operation.summary
    row.error_message = operation.error_message
    row.details = data["details"]
    row.started_at = operation.started_at
    row.completed_at = operation.completed_at


def _snapshot_from_row(row: DBRollbackSnapshot) -> RollbackSnapshot:
    return RollbackSnapshot(
        id=row.id,
        operation_id=row.operation_id,
        user_id=row.user_id,
        tickets=row.tickets or {},
        changes=row.changes or [],
        created_at=row.created_at,
        expires_at=row.expires_at,
    )


class SQLStorage(Storage):
    """Storage over a sessionmaker. One short-lived session per call."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _session(self) -> Session:
        return self.session_factory()

    # Ticket mappings

    def list_mappings(self, user_id: int, task_project_id: Optional[str] = None) -> List[TicketMapping]:
        with self._session() as db:
            query = db.query(DBTicketMapping).filter(DBTicketMapping.user_id == user_id)
            if task_project_id is not None:
                query = query.filter(DBTicketMapping.task_project_id == task_project_id)
            return [TicketMapping.model_validate(m) for m in query.order_by(DBTicketMapping.id).all()]

    def get_mapping_by_task(self, user_id: int, task_id: str) -> Optional[TicketMapping]:
        with self._session() as db:
            row = db.query(DBTicketMapping).filter(
                DBTicketMapping.user_id == user_id, DBTicketMapping.task_id == task_id
            ).first()
            return TicketMapping.model_validate(row) if row else None

    def get_mapping_by_issue(self, user_id: int, issue_id: str) -> Optional[TicketMapping]:
        with self._session() as db:
            row = db.query(DBTicketMapping).filter(
                DBTicketMapping.user_id == user_id, DBTicketMapping.issue_id == issue_id
            ).first()
            return TicketMapping.model_validate(row) if row else None

    def _existing_pair(self, db: Session, user_id: int, task_id: str, issue_id: str) -> List[DBTicketMapping]:
        return db.query(DBTicketMapping).filter(
            DBTicketMapping.user_id == user_id,
            or_(DBTicketMapping.task_id == task_id, DBTicketMapping.issue_id == issue_id),
        ).all()

    def create_mapping(
        self, user_id: int, task_project_id: str, task_id: str, issue_project_id: str, issue_id: str
    ) -> Tuple[TicketMapping, bool]:
        with self._session() as db:
            for attempt in range(2):
                rows = self._existing_pair(db, user_id, task_id, issue_id)
                for row in rows:
                    if row.task_id == task_id and row.issue_id == issue_id:
                        return TicketMapping.model_validate(row), False
                    if row.task_id == task_id:
                        raise MappingConflictError(task_id, issue_id, f"task already linked to {row.issue_id}")
                    raise MappingConflictError(task_id, issue_id, f"issue already linked to {row.task_id}")

                row = DBTicketMapping(
                    user_id=user_id,
                    task_project_id=task_project_id,
                    task_id=task_id,
                    issue_project_id=issue_project_id,
                    issue_id=issue_id,
                    created_at=utcnow(),
                )
                db.add(row)
                try:
                    db.commit()
                except IntegrityError:
                    # Lost a race with a concurrent insert; re-read and report what won
                    db.rollback()
                    log.debug(f"Mapping insert for {task_id} -> {issue_id} raced, re-reading")
                    continue
                db.refresh(row)
                return TicketMapping.model_validate(row), True
            raise MappingConflictError(task_id, issue_id, "concurrent mapping write")

    def delete_mapping(self, user_id: int, task_id: str) -> Optional[TicketMapping]:
        with self._session() as db:
            row = db.query(DBTicketMapping).filter(
                DBTicketMapping.user_id == user_id, DBTicketMapping.task_id == task_id
            ).first()
            if row is None:
                return None
            mapping = TicketMapping.model_validate(row)
            db.delete(row)
            db.commit()
            return mapping

    # Ignore registry

    def add_ignore(self, user_id: int, project_id: str, ticket_id: str, ignore_type: IgnoreType) -> IgnoredTicket:
        with self._session() as db:
            row = db.query(DBIgnoredTicket).filter(
                DBIgnoredTicket.user_id == user_id,
                DBIgnoredTicket.project_id == project_id,
                DBIgnoredTicket.ticket_id == ticket_id,
            ).first()
            if row is None:
                row = DBIgnoredTicket(
                    user_id=user_id, project_id=project_id, ticket_id=ticket_id, created_at=utcnow()
                )
                db.add(row)
            row.ignore_type = ignore_type.value
            db.commit()
            db.refresh(row)
            return IgnoredTicket.model_validate(row)

    def remove_ignore(self, user_id: int, project_id: str, ticket_id: str) -> bool:
        with self._session() as db:
            deleted = db.query(DBIgnoredTicket).filter(
                DBIgnoredTicket.user_id == user_id,
                DBIgnoredTicket.project_id == project_id,
                DBIgnoredTicket.ticket_id == ticket_id,
            ).delete(synchronize_session=False)
            db.commit()
            return deleted > 0

    def list_ignored(self, user_id: int, project_id: Optional[str] = None) -> List[IgnoredTicket]:
        with self._session() as db:
            query = db.query(DBIgnoredTicket).filter(DBIgnoredTicket.user_id == user_id)
            if project_id is not None:
                query = query.filter(DBIgnoredTicket.project_id == project_id)
            rows = query.order_by(DBIgnoredTicket.project_id, DBIgnoredTicket.ticket_id).all()
            return [IgnoredTicket.model_validate(r) for r in rows]

    def clear_ignores(self, user_id: int, project_id: str, ignore_type: IgnoreType) -> int:
        with self._session() as db:
            deleted = db.query(DBIgnoredTicket).filter(
                DBIgnoredTicket.user_id == user_id,
                DBIgnoredTicket.project_id == project_id,
                DBIgnoredTicket.ignore_type == ignore_type.value,
            ).delete(synchronize_session=False)
            db.commit()
            return deleted

    # Operations and snapshots

    def create_operation(
        self, operation: SyncOperation, snapshot: Optional[RollbackSnapshot] = None
    ) -> Tuple[SyncOperation, Optional[RollbackSnapshot]]:
        with self._session() as db:
            row = DBSyncOperation(created_at=utcnow())
            _apply_operation(row, operation)
            db.add(row)
            db.flush()
            snapshot_row = None
            if snapshot is not None:
                data = snapshot.model_dump(mode="json")
                snapshot_row = DBRollbackSnapshot(
                    operation_id=row.id,
                    user_id=snapshot.user_id,
                    tickets=data["tickets"],
                    changes=data["changes"],
                    created_at=utcnow(),
                    expires_at=snapshot.expires_at,
                )
                db.add(snapshot_row)
            db.commit()
            db.refresh(row)
            stored_snapshot = None
            if snapshot_row is not None:
                db.refresh(snapshot_row)
                stored_snapshot = _snapshot_from_row(snapshot_row)
            return _operation_from_row(row), stored_snapshot

    def save_operation(self, operation: SyncOperation) -> SyncOperation:
        with self._session() as db:
            row = db.get(DBSyncOperation, operation.id)
            if row is None:
                raise KeyError(f"Unknown sync operation {operation.id}")
            _apply_operation(row, operation)
            db.commit()
            return operation

    def get_operation(self, operation_id: int) -> Optional[SyncOperation]:
        with self._session() as db:
            row = db.get(DBSyncOperation, operation_id)
            return _operation_from_row(row) if row else None

    def list_operations(self, user_id: int, limit: int = 50) -> List[SyncOperation]:
        with self._session() as db:
            rows = db.query(DBSyncOperation).filter(
                DBSyncOperation.user_id == user_id
            ).order_by(DBSyncOperation.id.desc()).limit(limit).all()
            return [_operation_from_row(r) for r in rows]

    def save_snapshot(self, snapshot: RollbackSnapshot) -> RollbackSnapshot:
        data = snapshot.model_dump(mode="json")
        with self._session() as db:
            row = db.query(DBRollbackSnapshot).filter(
                DBRollbackSnapshot.operation_id == snapshot.operation_id
            ).first()
            if row is None:
                row = DBRollbackSnapshot(operation_id=snapshot.operation_id, created_at=utcnow())
                db.add(row)
            row.user_id = snapshot.user_id
            row.tickets = data["tickets"]
            row.changes = data["changes"]
            row.expires_at = snapshot.expires_at
            db.commit()
            return snapshot

    def get_snapshot(self, operation_id: int) -> Optional[RollbackSnapshot]:
        with self._session() as db:
            row = db.query(DBRollbackSnapshot).filter(DBRollbackSnapshot.operation_id == operation_id).first()
            return _snapshot_from_row(row) if row else None

    def delete_snapshot(self, operation_id: int) -> bool:
        with self._session() as db:
            deleted = db.query(DBRollbackSnapshot).filter(
                DBRollbackSnapshot.operation_id == operation_id
            ).delete(synchronize_session=False)
            db.commit()
            return deleted > 0

    def purge_expired_snapshots(self, now: datetime) -> int:
        with self._session() as db:
            deleted = db.query(DBRollbackSnapshot).filter(
                DBRollbackSnapshot.expires_at <= now
            ).delete(synchronize_session=False)
            db.commit()
            return deleted

    # Audit log

    def append_audit(self, entry: AuditLogCreate) -> AuditLogEntry:
        with self._session() as db:
            row = DBAuditLog(
                operation_id=entry.operation_id,
                user_id=entry.user_id,
                ticket_id=entry.ticket_id,
                platform=entry.platform.value,
                action_type=entry.action_type.value,
                actor=entry.actor,
                field_name=entry.field_name,
                old_value=entry.old_value,
                new_value=entry.new_value,
                created_at=utcnow(),
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return AuditLogEntry.model_validate(row)

    def query_audit(self, filters: AuditLogFilter) -> List[AuditLogEntry]:
        start, end = date_bounds(filters)
        with self._session() as db:
            query = db.query(DBAuditLog)
            if filters.user_id is not None:
                query = query.filter(DBAuditLog.user_id == filters.user_id)
            if filters.ticket_id:
                query = query.filter(DBAuditLog.ticket_id == filters.ticket_id)
            if filters.platform:
                query = query.filter(DBAuditLog.platform == filters.platform.value)
            if filters.action_type:
                query = query.filter(DBAuditLog.action_type == filters.action_type.value)
            if filters.actor:
                query = query.filter(DBAuditLog.actor == filters.actor)
            if filters.operation_id is not None:
                query = query.filter(DBAuditLog.operation_id == filters.operation_id)
            if start:
                query = query.filter(DBAuditLog.created_at >= start)
            if end:
                query = query.filter(DBAuditLog.created_at <= end)
            query = query.order_by(DBAuditLog.created_at.desc(), DBAuditLog.id.desc()).offset(filters.offset)
            if filters.limit is not None:
                query = query.limit(filters.limit)
            return [AuditLogEntry.model_validate(r) for r in query.all()]

    def count_audit_by_action(self, user_id: Optional[int] = None) -> Dict[str, int]:
        with self._session() as db:
            query = db.query(DBAuditLog.action_type, func.count(DBAuditLog.id))
            if user_id is not None:
                query = query.filter(DBAuditLog.user_id == user_id)
            return {action: count for action, count in query.group_by(DBAuditLog.action_type).all()}

    def close(self) -> None:
        bind = self.session_factory.kw.get("bind")
        if bind is not None:
            bind.dispose()
