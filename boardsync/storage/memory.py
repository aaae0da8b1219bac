"""In-process storage backend with optional JSON file persistence."""

import json
import logging
import os
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pydantic import TypeAdapter

from boardsync.exceptions import MappingConflictError
from boardsync.schemas.audit import AuditLogCreate, AuditLogEntry, AuditLogFilter
from boardsync.schemas.ignore import IgnoredTicket, IgnoreType
from boardsync.schemas.mapping import TicketMapping
from boardsync.schemas.rollback import RollbackSnapshot
from boardsync.schemas.sync import SyncOperation
from boardsync.storage.base import Storage
from boardsync.storage.filters import matches_audit_filter
from boardsync.utils.timeutils import as_utc, utcnow

log = logging.getLogger(__name__)


class MemoryStorage(Storage):
    """Single-writer store guarded by one re-entrant lock.

    When `path` is given, the whole state is rewritten to that JSON file after
    every mutation and loaded back on construction.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = threading.RLock()
        self._mappings: Dict[int, TicketMapping] = {}
        self._ignored: Dict[Tuple[int, str, str], IgnoredTicket] = {}
        self._operations: Dict[int, SyncOperation] = {}
        self._snapshots: Dict[int, RollbackSnapshot] = {}
        self._audit: List[AuditLogEntry] = []
        self._ids = {"mapping": 0, "operation": 0, "snapshot": 0, "audit": 0}
        if path and os.path.exists(path):
            self._load()

    def _next_id(self, kind: str) -> int:
        self._ids[kind] += 1
        return self._ids[kind]

    # Persistence

    def _load(self) -> None:
        with open(self.path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        self._mappings = {m["id"]: TicketMapping.model_validate(m) for m in data.get("mappings", [])}
        for raw in data.get("ignored", []):
            entry = IgnoredTicket.model_validate(raw)
            self._ignored[(entry.user_id, entry.project_id, entry.ticket_id)] = entry
        self._operations = {o["id"]: SyncOperation.model_validate(o) for o in data.get("operations", [])}
        self._snapshots = {
            s["operation_id"]: RollbackSnapshot.model_validate(s) for s in data.get("snapshots", [])
        }
        self._audit = TypeAdapter(List[AuditLogEntry]).validate_python(data.get("audit_logs", []))
        self._ids.update(data.get("ids", {}))
        log.info(f"Loaded storage state from {self.path}")

    def _persist(self) -> None:
        if not self.path:
            return
        data = {
            "mappings": [m.model_dump(mode="json") for m in self._mappings.values()],
            "ignored": [i.model_dump(mode="json") for i in self._ignored.values()],
            "operations": [o.model_dump(mode="json") for o in self._operations.values()],
            "snapshots": [s.model_dump(mode="json") for s in self._snapshots.values()],
            "audit_logs": [a.model_dump(mode="json") for a in self._audit],
            "ids": self._ids,
        }
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)
        os.replace(tmp_path, self.path)

    # Ticket mappings

    def list_mappings(self, user_id: int, task_project_id: Optional[str] = None) -> List[TicketMapping]:
        with self._lock:
            return sorted(
                (m for m in self._mappings.values()
                 if m.user_id == user_id and (task_project_id is None or m.task_project_id == task_project_id)),
                key=lambda m: m.id,
            )

    def get_mapping_by_task(self, user_id: int, task_id: str) -> Optional[TicketMapping]:
        with self._lock:
            return next(
                (m for m in self._mappings.values() if m.user_id == user_id and m.task_id == task_id), None
            )

    def get_mapping_by_issue(self, user_id: int, issue_id: str) -> Optional[TicketMapping]:
        with self._lock:
            return next(
                (m for m in self._mappings.values() if m.user_id == user_id and m.issue_id == issue_id), None
            )

    def create_mapping(
        self, user_id: int, task_project_id: str, task_id: str, issue_project_id: str, issue_id: str
    ) -> Tuple[TicketMapping, bool]:
        with self._lock:
            by_task = self.get_mapping_by_task(user_id, task_id)
            by_issue = self.get_mapping_by_issue(user_id, issue_id)
            if by_task and by_task.issue_id == issue_id:
                return by_task, False
            if by_task:
                raise MappingConflictError(task_id, issue_id, f"task already linked to {by_task.issue_id}")
            if by_issue:
                raise MappingConflictError(task_id, issue_id, f"issue already linked to {by_issue.task_id}")
            mapping = TicketMapping(
                id=self._next_id("mapping"),
                user_id=user_id,
                task_project_id=task_project_id,
                task_id=task_id,
                issue_project_id=issue_project_id,
                issue_id=issue_id,
                created_at=utcnow(),
            )
            self._mappings[mapping.id] = mapping
            self._persist()
            return mapping, True

    def delete_mapping(self, user_id: int, task_id: str) -> Optional[TicketMapping]:
        with self._lock:
            mapping = self.get_mapping_by_task(user_id, task_id)
            if mapping:
                del self._mappings[mapping.id]
                self._persist()
            return mapping

    # Ignore registry

    def add_ignore(self, user_id: int, project_id: str, ticket_id: str, ignore_type: IgnoreType) -> IgnoredTicket:
        with self._lock:
            key = (user_id, project_id, ticket_id)
            existing = self._ignored.get(key)
            entry = IgnoredTicket(
                user_id=user_id,
                project_id=project_id,
                ticket_id=ticket_id,
                ignore_type=ignore_type,
                created_at=existing.created_at if existing else utcnow(),
            )
            self._ignored[key] = entry
            self._persist()
            return entry

    def remove_ignore(self, user_id: int, project_id: str, ticket_id: str) -> bool:
        with self._lock:
            removed = self._ignored.pop((user_id, project_id, ticket_id), None)
            if removed:
                self._persist()
            return removed is not None

    def list_ignored(self, user_id: int, project_id: Optional[str] = None) -> List[IgnoredTicket]:
        with self._lock:
            return sorted(
                (i for i in self._ignored.values()
                 if i.user_id == user_id and (project_id is None or i.project_id == project_id)),
                key=lambda i: (i.project_id, i.ticket_id),
            )

    def clear_ignores(self, user_id: int, project_id: str, ignore_type: IgnoreType) -> int:
        with self._lock:
            keys = [
                key for key, entry in self._ignored.items()
                if entry.user_id == user_id and entry.project_id == project_id and entry.ignore_type == ignore_type
            ]
            for key in keys:
                del self._ignored[key]
            if keys:
                self._persist()
            return len(keys)

    # Operations and snapshots

    def create_operation(
        self, operation: SyncOperation, snapshot: Optional[RollbackSnapshot] = None
    ) -> Tuple[SyncOperation, Optional[RollbackSnapshot]]:
        with self._lock:
            now = utcnow()
            stored = operation.model_copy(update={"id": self._next_id("operation"), "created_at": now})
            self._operations[stored.id] = stored
            stored_snapshot = None
            if snapshot is not None:
                stored_snapshot = snapshot.model_copy(update={
                    "id": self._next_id("snapshot"), "operation_id": stored.id, "created_at": now,
                })
                self._snapshots[stored.id] = stored_snapshot
            self._persist()
            return stored.model_copy(deep=True), (
                stored_snapshot.model_copy(deep=True) if stored_snapshot else None
            )

    def save_operation(self, operation: SyncOperation) -> SyncOperation:
        with self._lock:
            if operation.id not in self._operations:
                raise KeyError(f"Unknown sync operation {operation.id}")
            self._operations[operation.id] = operation.model_copy(deep=True)
            self._persist()
            return operation

    def get_operation(self, operation_id: int) -> Optional[SyncOperation]:
        with self._lock:
            operation = self._operations.get(operation_id)
            return operation.model_copy(deep=True) if operation else None

    def list_operations(self, user_id: int, limit: int = 50) -> List[SyncOperation]:
        with self._lock:
            operations = [o for o in self._operations.values() if o.user_id == user_id]
            operations.sort(key=lambda o: o.id, reverse=True)
            return [o.model_copy(deep=True) for o in operations[:limit]]

    def save_snapshot(self, snapshot: RollbackSnapshot) -> RollbackSnapshot:
        with self._lock:
            if snapshot.operation_id not in self._operations:
                raise KeyError(f"Unknown sync operation {snapshot.operation_id}")
            self._snapshots[snapshot.operation_id] = snapshot.model_copy(deep=True)
            self._persist()
            return snapshot

    def get_snapshot(self, operation_id: int) -> Optional[RollbackSnapshot]:
        with self._lock:
            snapshot = self._snapshots.get(operation_id)
            return snapshot.model_copy(deep=True) if snapshot else None

    def delete_snapshot(self, operation_id: int) -> bool:
        with self._lock:
            removed = self._snapshots.pop(operation_id, None)
            if removed:
                self._persist()
            return removed is not None

    def purge_expired_snapshots(self, now: datetime) -> int:
        with self._lock:
            expired = [op_id for op_id, s in self._snapshots.items() if s.is_expired(now)]
            for op_id in expired:
                del self._snapshots[op_id]
            if expired:
                self._persist()
            return len(expired)

    # Audit log

    def append_audit(self, entry: AuditLogCreate) -> AuditLogEntry:
        with self._lock:
            stored = AuditLogEntry(id=self._next_id("audit"), created_at=utcnow(), **entry.model_dump())
            self._audit.append(stored)
            self._persist()
            return stored

    def query_audit(self, filters: AuditLogFilter) -> List[AuditLogEntry]:
        with self._lock:
            rows = [e for e in self._audit if matches_audit_filter(e, filters)]
        rows.sort(key=lambda e: (as_utc(e.created_at), e.id), reverse=True)
        rows = rows[filters.offset:]
        if filters.limit is not None:
            rows = rows[:filters.limit]
        return rows

    def count_audit_by_action(self, user_id: Optional[int] = None) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        with self._lock:
            for entry in self._audit:
                if user_id is not None and entry.user_id != user_id:
                    continue
                counts[entry.action_type.value] = counts.get(entry.action_type.value, 0) + 1
        return counts
