"""Sync operation model tracking each executed batch."""

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.sql import func

from boardsync.database import Base, JSONVariant


class SyncOperation(Base):
    """Batch execution history and status tracking."""

    __tablename__ = "sync_operations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False)
    project_id = Column(String(100), nullable=False)

    # Execution details
    operation_type = Column(String(20), nullable=False)  # 'sync', 'create', 'delete', 'rollback'
    direction = Column(String(20), nullable=False, default='forward')
    trigger = Column(String(50), nullable=False, default='manual')  # 'manual', 'auto-sync', 'auto-create'
    status = Column(String(20), nullable=False)  # 'pending', 'running', 'completed', 'failed', 'rolled_back'
    ticket_ids = Column(JSONVariant, nullable=False, default=list)

    # Outcome
    results = Column(JSONVariant, nullable=False, default=list)
    summary = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    details = Column(JSONVariant, nullable=True)

    # Timestamps
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index('idx_sync_operations_user_created', 'user_id', 'created_at'),
    )

    def __repr__(self):
        return f"<SyncOperation(id={self.id}, type='{self.operation_type}', status='{self.status}')>"
