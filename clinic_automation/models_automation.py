"""
Automation Models
Database models for automation rules, their executions and per-recipient logs
"""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Automation(Base):
    """A stored rule pairing a trigger, a recipient filter and an action"""

    __tablename__ = "automations"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), default="active", nullable=False, index=True)  # active, paused

    # manual, scheduled, event
    trigger_type = Column(String(20), default="manual", nullable=False)
    # {"schedule": "2026-01-01T09:00:00Z"} or {"event_type": "patient_created"}
    trigger_config = Column(JSON, default=dict, nullable=True)

    # message, email, sms
    action_type = Column(String(30), default="message", nullable=False)
    # {"message_template": "...", "use_template": true, "subject": "..."}
    action_config = Column(JSON, default=dict, nullable=True)

    # {"filters": [{"type": ..., "operator": ..., "value": ...}]}
    filter_config = Column(JSON, default=dict, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    executions = relationship(
        "AutomationExecution",
        back_populates="automation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class AutomationExecution(Base):
    """One concrete run of an automation with aggregate outcome counts"""

    __tablename__ = "automation_executions"

    id = Column(Integer, primary_key=True, index=True)
    automation_id = Column(
        Integer, ForeignKey("automations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    executed_by = Column(Integer, ForeignKey("profiles.id"), nullable=True)  # null = automatic
    execution_type = Column(String(20), default="manual", nullable=False)  # manual, automatic
    status = Column(String(20), default="running", nullable=False)  # running, completed, failed

    target_count = Column(Integer, default=0, nullable=False)
    success_count = Column(Integer, default=0, nullable=False)
    failure_count = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)

    # "<automation_id>:<trigger window>" for automatic runs; unique so an occurrence fires once
    trigger_key = Column(String(255), unique=True, nullable=True)

    executed_at = Column(DateTime, server_default=func.now(), index=True)
    completed_at = Column(DateTime, nullable=True)

    automation = relationship("Automation", back_populates="executions")
    executor = relationship("Profile")
    logs = relationship(
        "AutomationExecutionLog",
        back_populates="execution",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AutomationExecutionLog.id",
    )


class AutomationExecutionLog(Base):
    """Outcome of one recipient within an execution (append-only)"""

    __tablename__ = "automation_execution_logs"

    id = Column(Integer, primary_key=True, index=True)
    execution_id = Column(
        Integer,
        ForeignKey("automation_executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    target_phone = Column(String(50), nullable=True)
    target_name = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False)  # sent, failed
    message_id = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    execution = relationship("AutomationExecution", back_populates="logs")
