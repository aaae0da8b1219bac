"""Ignored tickets excluded from reconciliation."""

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint, CheckConstraint
from sqlalchemy.sql import func

from boardsync.database import Base


class IgnoredTicket(Base):
    __tablename__ = "ignored_tickets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False)
    project_id = Column(String(100), nullable=False)
    ticket_id = Column(String(100), nullable=False)
    ignore_type = Column(String(20), nullable=False)  # 'temp', 'forever'
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'project_id', 'ticket_id', name='uq_ignored_user_project_ticket'),
        CheckConstraint("ignore_type IN ('temp', 'forever')", name='ck_ignored_type'),
    )

    def __repr__(self):
        return f"<IgnoredTicket(ticket='{self.ticket_id}', type='{self.ignore_type}')>"
