"""Audit log model for field-level mutations."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.sql import func

from boardsync.database import Base


class AuditLog(Base):
    """Append-only audit trail. Rows survive deletion of their operation."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    operation_id = Column(Integer, ForeignKey("sync_operations.id", ondelete="SET NULL"), nullable=True)
    user_id = Column(Integer, nullable=False)

    # What changed
    ticket_id = Column(String(100), nullable=False)
    platform = Column(String(20), nullable=False)  # 'asana', 'youtrack'
    action_type = Column(String(50), nullable=False)
    field_name = Column(String(100), nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)

    # Who
    actor = Column(String(255), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    __table_args__ = (
        Index('idx_audit_logs_created_at_desc', created_at.desc()),
        Index('idx_audit_logs_ticket', 'ticket_id'),
        Index('idx_audit_logs_user_action', 'user_id', 'action_type'),
    )

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action_type}', ticket='{self.ticket_id}')>"
