"""Rollback snapshot model, one per sync operation."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer
from sqlalchemy.sql import func

from boardsync.database import Base, JSONVariant


class RollbackSnapshot(Base):
    __tablename__ = "rollback_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    operation_id = Column(
        Integer, ForeignKey("sync_operations.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    user_id = Column(Integer, nullable=False)

    # Pre-operation field values and recorded mutations
    tickets = Column(JSONVariant, nullable=False, default=dict)
    changes = Column(JSONVariant, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<RollbackSnapshot(operation={self.operation_id}, expires='{self.expires_at}')>"
