"""Automation repository - Database operations for automations and executions"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import Appointment, Clinic, Patient, Profile
from ...models_automation import Automation, AutomationExecution, AutomationExecutionLog
from .schemas import AutomationStatus, TriggerType


class AutomationRepository:
    """Repository for automation database operations"""

    @staticmethod
    def get_clinic(db: Session, clinic_id: int) -> Optional[Clinic]:
        return db.query(Clinic).filter(Clinic.id == clinic_id).first()

    @staticmethod
    def get_profile(db: Session, profile_id: int) -> Optional[Profile]:
        return db.query(Profile).filter(Profile.id == profile_id).first()

    # Automations
    @staticmethod
    def get_automation(db: Session, automation_id: int) -> Optional[Automation]:
        return db.query(Automation).filter(Automation.id == automation_id).first()

    @staticmethod
    def get_active_automation(db: Session, automation_id: int) -> Optional[Automation]:
        return (
            db.query(Automation)
            .filter(
                Automation.id == automation_id,
                Automation.status == AutomationStatus.ACTIVE.value,
            )
            .first()
        )

    @staticmethod
    def list_automations(db: Session, clinic_id: int) -> list[Automation]:
        return (
            db.query(Automation)
            .filter(Automation.clinic_id == clinic_id)
            .order_by(Automation.created_at.desc(), Automation.id.desc())
            .all()
        )

    @staticmethod
    def get_active_automations(db: Session) -> list[Automation]:
        """All active automations regardless of trigger type"""
        return (
            db.query(Automation)
            .filter(Automation.status == AutomationStatus.ACTIVE.value)
            .order_by(Automation.id.asc())
            .all()
        )

    @staticmethod
    def get_trigger_candidates(db: Session) -> list[Automation]:
        """Active automations with a scheduled or event trigger"""
        return (
            db.query(Automation)
            .filter(
                Automation.status == AutomationStatus.ACTIVE.value,
                Automation.trigger_type != TriggerType.MANUAL.value,
            )
            .order_by(Automation.id.asc())
            .all()
        )

    @staticmethod
    def create_automation(db: Session, **automation_data) -> Automation:
        automation = Automation(**automation_data)
        db.add(automation)
        db.commit()
        db.refresh(automation)
        return automation

    @staticmethod
    def update_automation(db: Session, automation: Automation, **updates) -> Automation:
        for key, value in updates.items():
            if hasattr(automation, key):
                setattr(automation, key, value)
        db.commit()
        db.refresh(automation)
        return automation

    @staticmethod
    def delete_automation(db: Session, automation: Automation) -> None:
        db.delete(automation)
        db.commit()

    # Executions
    @staticmethod
    def create_execution(db: Session, **execution_data) -> AutomationExecution:
        execution = AutomationExecution(**execution_data)
        db.add(execution)
        db.commit()
        db.refresh(execution)
        return execution

    @staticmethod
    def update_execution(db: Session, execution: AutomationExecution, **updates) -> AutomationExecution:
        for key, value in updates.items():
            setattr(execution, key, value)
        db.commit()
        db.refresh(execution)
        return execution

    @staticmethod
    def get_execution(db: Session, execution_id: int) -> Optional[AutomationExecution]:
        return (
            db.query(AutomationExecution)
            .options(joinedload(AutomationExecution.executor))
            .filter(AutomationExecution.id == execution_id)
            .first()
        )

    @staticmethod
    def get_executions(db: Session, automation_id: int, limit: int = 10) -> list[AutomationExecution]:
        """Most recent executions first"""
        return (
            db.query(AutomationExecution)
            .options(joinedload(AutomationExecution.executor))
            .filter(AutomationExecution.automation_id == automation_id)
            .order_by(AutomationExecution.executed_at.desc(), AutomationExecution.id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def trigger_key_exists(db: Session, trigger_key: str) -> bool:
        return (
            db.query(AutomationExecution.id)
            .filter(AutomationExecution.trigger_key == trigger_key)
            .first()
            is not None
        )

    # Execution logs
    @staticmethod
    def add_log(db: Session, **log_data) -> AutomationExecutionLog:
        log = AutomationExecutionLog(**log_data)
        db.add(log)
        db.commit()
        return log

    @staticmethod
    def get_execution_logs(db: Session, execution_id: int) -> list[AutomationExecutionLog]:
        return (
            db.query(AutomationExecutionLog)
            .filter(AutomationExecutionLog.execution_id == execution_id)
            .order_by(AutomationExecutionLog.id.asc())
            .all()
        )

    @staticmethod
    def count_logs(db: Session, execution_id: int, status: Optional[str] = None) -> int:
        query = db.query(AutomationExecutionLog).filter(
            AutomationExecutionLog.execution_id == execution_id
        )
        if status is not None:
            query = query.filter(AutomationExecutionLog.status == status)
        return query.count()

    # Trigger support
    @staticmethod
    def newest_patient_since(db: Session, clinic_id: int, since: datetime) -> Optional[Patient]:
        """Most recently created patient of the clinic at or after `since`"""
        return (
            db.query(Patient)
            .filter(Patient.clinic_id == clinic_id, Patient.created_at >= since)
            .order_by(Patient.created_at.desc(), Patient.id.desc())
            .first()
        )

    @staticmethod
    def get_appointment(db: Session, appointment_id: int) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.patient).joinedload(Patient.contact))
            .filter(Appointment.id == appointment_id)
            .first()
        )

    @staticmethod
    def get_event_automations(db: Session, clinic_id: int) -> list[Automation]:
        """Active event automations of one clinic"""
        return (
            db.query(Automation)
            .filter(
                Automation.clinic_id == clinic_id,
                Automation.status == AutomationStatus.ACTIVE.value,
                Automation.trigger_type == TriggerType.EVENT.value,
            )
            .order_by(Automation.id.asc())
            .all()
        )
