"""Ticket mapping model linking board tasks to tracker issues."""

from sqlalchemy import Column, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from boardsync.database import Base


class TicketMapping(Base):
    """One task <-> one issue, per user."""

    __tablename__ = "ticket_mappings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False)

    # Board side
    task_project_id = Column(String(100), nullable=False)
    task_id = Column(String(100), nullable=False)

    # Tracker side
    issue_project_id = Column(String(100), nullable=False)
    issue_id = Column(String(100), nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'task_id', name='uq_mapping_user_task'),
        UniqueConstraint('user_id', 'issue_id', name='uq_mapping_user_issue'),
        Index('idx_mappings_user_projects', 'user_id', 'task_project_id', 'issue_project_id'),
    )

    def __repr__(self):
        return f"<TicketMapping(id={self.id}, task='{self.task_id}', issue='{self.issue_id}')>"
