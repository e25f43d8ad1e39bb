"""
Scheduled task and execution models.
"""

import uuid

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON, Float, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class ScheduledTask(Base):
    """A user-defined job run on a schedule (one-time, recurring, cron) or on demand."""

    __tablename__ = "scheduled_tasks"

    __table_args__ = (
        Index("ix_scheduled_tasks_status_next_run", "status", "next_run_at"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=True, index=True)

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    schedule_type = Column(String(20), nullable=False)  # one-time, recurring, cron, trigger
    schedule = Column(JSON, nullable=False, default=dict)
    action = Column(JSON, nullable=False)
    conditions = Column(JSON, default=list)
    notifications = Column(JSON, nullable=True)
    retry_policy = Column(JSON, nullable=True)
    trigger = Column(JSON, nullable=True)

    status = Column(String(20), default="active", nullable=False)
    next_run_at = Column(DateTime(timezone=True), nullable=True)
    last_run_at = Column(DateTime(timezone=True), nullable=True)
    paused_at = Column(DateTime(timezone=True), nullable=True)

    run_count = Column(Integer, default=0, nullable=False)
    success_count = Column(Integer, default=0, nullable=False)
    failure_count = Column(Integer, default=0, nullable=False)
    retry_attempt = Column(Integer, default=0, nullable=False)

    tags = Column(JSON, default=list)
    category = Column(String(50), nullable=True)
    priority = Column(String(20), default="normal", nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), server_default=func.now())

    executions = relationship(
        "TaskExecution",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TaskExecution.started_at.desc()",
    )


class TaskExecution(Base):
    """One run of a scheduled task."""

    __tablename__ = "task_executions"

    id = Column(String(36), primary_key=True, default=_uuid)
    task_id = Column(String(36), ForeignKey("scheduled_tasks.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(String(20), default="queued", nullable=False)
    triggered_by = Column(String(20), default="schedule", nullable=False)  # schedule, manual, retry, trigger

    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)

    result = Column(JSON, nullable=True)
    output = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    logs = Column(JSON, default=list)
    cost = Column(Float, default=0.0)
    retry_attempt = Column(Integer, default=0, nullable=False)

    task = relationship("ScheduledTask", back_populates="executions")
