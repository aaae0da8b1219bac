"""Per-user, per-project suppression of tickets from reconciliation."""

import logging
from typing import Iterable, List, Optional, Set

from boardsync.schemas.audit import AuditAction
from boardsync.schemas.common import Platform
from boardsync.schemas.ignore import IgnoredTicket, IgnoreType
from boardsync.schemas.sync import SyncScope
from boardsync.services.audit_service import AuditService
from boardsync.services.locks import LockRegistry
from boardsync.storage.base import Storage

log = logging.getLogger(__name__)


class IgnoreRegistry:
    def __init__(self, storage: Storage, audit: AuditService, locks: LockRegistry):
        self.storage = storage
        self.audit = audit
        self.locks = locks

    async def add(
        self, scope: SyncScope, ticket_id: str, ignore_type: IgnoreType, platform: Platform = Platform.ASANA
    ) -> IgnoredTicket:
        project_id = scope.project_for(platform)
        async with self.locks.user(scope.user_id):
            previous = next(
                (i for i in self.storage.list_ignored(scope.user_id, project_id) if i.ticket_id == ticket_id), None
            )
            entry = self.storage.add_ignore(scope.user_id, project_id, ticket_id, ignore_type)
            self.audit.log(
                user_id=scope.user_id, ticket_id=ticket_id, platform=platform, action=AuditAction.IGNORED,
                actor=scope.actor, field_name="ignore_type",
                old_value=previous.ignore_type.value if previous else None, new_value=ignore_type.value,
            )
        log.info(f"Ignoring {platform.value} ticket {ticket_id} ({ignore_type.value}) for user {scope.user_id}")
        return entry

    async def remove(self, scope: SyncScope, ticket_id: str, platform: Platform = Platform.ASANA) -> bool:
        project_id = scope.project_for(platform)
        async with self.locks.user(scope.user_id):
            previous = next(
                (i for i in self.storage.list_ignored(scope.user_id, project_id) if i.ticket_id == ticket_id), None
            )
            removed = self.storage.remove_ignore(scope.user_id, project_id, ticket_id)
            if removed:
                self.audit.log(
                    user_id=scope.user_id, ticket_id=ticket_id, platform=platform, action=AuditAction.IGNORED,
                    actor=scope.actor, field_name="ignore_type",
                    old_value=previous.ignore_type.value if previous else None, new_value=None,
                )
        return removed

    def list_ignored(self, scope: SyncScope, platform: Optional[Platform] = None) -> List[IgnoredTicket]:
        if platform is None:
            projects = {scope.task_project_id, scope.issue_project_id}
            return [i for i in self.storage.list_ignored(scope.user_id) if i.project_id in projects]
        return self.storage.list_ignored(scope.user_id, scope.project_for(platform))

    def ignored_ids(self, scope: SyncScope, project_ids: Optional[Iterable[str]] = None) -> Set[str]:
        projects = set(project_ids) if project_ids is not None else {scope.task_project_id, scope.issue_project_id}
        return {i.ticket_id for i in self.storage.list_ignored(scope.user_id) if i.project_id in projects}

    def is_ignored(self, scope: SyncScope, ticket_id: str) -> bool:
        return ticket_id in self.ignored_ids(scope)

    async def clear_temporary(self, scope: SyncScope) -> int:
        async with self.locks.user(scope.user_id):
            cleared = sum(
                self.storage.clear_ignores(scope.user_id, project_id, IgnoreType.TEMP)
                for project_id in {scope.task_project_id, scope.issue_project_id}
            )
        log.info(f"Cleared {cleared} temporary ignores for user {scope.user_id}")
        return cleared
