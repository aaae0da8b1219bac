"""Rollback snapshot cleanup for the retention policy."""

import logging
from typing import Any, Dict, Optional

from boardsync.storage.base import Storage
from boardsync.utils.timeutils import utcnow

log = logging.getLogger(__name__)


def cleanup_expired_snapshots(storage: Storage) -> int:
    """
    Delete rollback snapshots whose retention window has passed.
    Audit log entries are never deleted; only snapshots are subject to retention.

    Args:
        storage: Storage backend holding the snapshots

    Returns:
        Number of snapshots deleted

    Usage:
        from boardsync.services.snapshot_cleanup import cleanup_expired_snapshots

        # Manual cleanup
        purged = cleanup_expired_snapshots(storage)

        # Scheduled cleanup (registered by SchedulerManager)
        scheduler.add_job(
            lambda: cleanup_expired_snapshots(storage),
            IntervalTrigger(hours=24),
            id="snapshot_cleanup_job"
        )
    """
    now = utcnow()
    purged = storage.purge_expired_snapshots(now)
    log.info(f"Snapshot cleanup: Deleted {purged} rollback snapshots expired before {now.isoformat()}")
    return purged


def get_audit_log_stats(storage: Storage, user_id: Optional[int] = None) -> Dict[str, Any]:
    """
    Get statistics about audit log storage.

    Returns:
        Dictionary with the total entry count and counts per action type
    """
    by_action = storage.count_audit_by_action(user_id)
    return {
        "total_logs": sum(by_action.values()),
        "by_action": by_action,
    }
