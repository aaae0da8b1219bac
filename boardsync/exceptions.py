"""Error taxonomy shared by the connectors, services and API layer."""

from typing import Optional


class BoardSyncError(Exception):
    """Base class for all service errors."""


class ConfigurationError(BoardSyncError):
    """Credentials or project identifiers are missing."""


class RemoteError(BoardSyncError):
    """A call to one of the remote systems failed."""

    def __init__(self, platform: str, message: str, status_code: Optional[int] = None):
        self.platform = platform
        self.message = message
        self.status_code = status_code
        super().__init__(f"{platform}: {message}")

    @property
    def is_fatal(self) -> bool:
        """Errors that no ticket in a batch can recover from."""
        return False


class AuthenticationError(RemoteError):
    """401 - bad or expired credentials."""

    @property
    def is_fatal(self) -> bool:
        return True


class AccessDeniedError(RemoteError):
    """403 - the token lacks the required scope."""

    @property
    def is_fatal(self) -> bool:
        return True


class NotFoundError(RemoteError):
    """404 - the ticket does not exist (anymore)."""


class TransientError(RemoteError):
    """Timeouts, connection failures and 5xx responses. Retried on the next tick."""


class MappingConflictError(BoardSyncError):
    """A task or issue is already linked to a different counterpart."""

    def __init__(self, task_id: str, issue_id: str, existing: str):
        self.task_id = task_id
        self.issue_id = issue_id
        super().__init__(f"Cannot link {task_id} -> {issue_id}: {existing}")


class BatchInProgressError(BoardSyncError):
    """Another batch for the same user and project is still running."""


class RollbackError(BoardSyncError):
    """An operation cannot be rolled back."""

    NOT_FOUND = "not_found"
    SNAPSHOT_MISSING = "snapshot_missing"
    SNAPSHOT_EXPIRED = "snapshot_expired"
    NOT_ROLLBACKABLE = "not_rollbackable"
    FORBIDDEN = "forbidden"

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"Cannot rollback: {message}")


class PartialCreateError(RemoteError):
    """The ticket was created but a follow-up call (column, tags) failed.

    `ticket` is the created ticket so callers can still track and map it.
    """

    def __init__(self, ticket, cause: RemoteError):
        self.ticket = ticket
        self.cause = cause
        super().__init__(cause.platform, f"created {ticket.id} but {cause.message}", cause.status_code)

    @property
    def is_fatal(self) -> bool:
        return self.cause.is_fatal
