"""Automation service - runs automations end to end and manages their configuration"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...exceptions import (
    AutomationError,
    AutomationNotFoundError,
    InvalidAutomationError,
    TriggerAlreadyClaimedError,
)
from ...models import Appointment
from ...models_automation import Automation, AutomationExecution, AutomationExecutionLog
from ...services.chatwoot_service import ChatwootGateway
from ...services.notification_service import notify_execution_outcome
from ...shared.dates import parse_timestamp, utcnow
from .dispatcher import ActionDispatcher
from .filters import Recipient, RecipientFilter, parse_filter_config
from .repository import AutomationRepository
from .schemas import (
    ActionType,
    AppointmentEvent,
    AutomationCreate,
    AutomationUpdate,
    ExecutionType,
    TriggerType,
)
from .templating import build_message
from .tracker import ExecutionTracker
from .triggers import (
    APPOINTMENT_CONFIRMATION,
    APPOINTMENT_CREATED,
    TriggerEvaluator,
    confirmation_day,
    days_ahead,
)

logger = logging.getLogger(__name__)

NO_RECIPIENTS_MESSAGE = "Nenhum destinatário encontrado com os filtros especificados"
TEST_RECIPIENT_NAME = "Paciente Teste"
MAX_EXECUTIONS_LIMIT = 100
# Columns an update may change but never clear
REQUIRED_FIELDS = ("name", "status", "trigger_type", "action_type")


@dataclass
class ExecutionResult:
    """Caller-visible outcome of one execution"""

    success: bool
    automation_id: int
    execution_id: Optional[int] = None
    status: Optional[str] = None
    target_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    no_recipients: bool = False
    message: Optional[str] = None
    results: list[dict] = field(default_factory=list)

    @classmethod
    def from_execution(cls, execution: AutomationExecution, **extra) -> "ExecutionResult":
        return cls(
            success=True,
            automation_id=execution.automation_id,
            execution_id=execution.id,
            status=execution.status,
            target_count=execution.target_count,
            success_count=execution.success_count,
            failure_count=execution.failure_count,
            **extra,
        )

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "automationId": self.automation_id,
            "executionId": self.execution_id,
            "status": self.status,
            "targetCount": self.target_count,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "noRecipients": self.no_recipients,
            "message": self.message,
            "results": self.results,
        }


class AutomationService:
    """Service layer for automation execution and configuration"""

    def __init__(
        self,
        db: Session,
        gateway: ChatwootGateway,
        dispatcher: Optional[ActionDispatcher] = None,
        trigger_evaluator: Optional[TriggerEvaluator] = None,
    ):
        self.db = db
        self.repo = AutomationRepository()
        self.gateway = gateway
        self.dispatcher = dispatcher or ActionDispatcher.default(gateway)
        self.recipient_filter = RecipientFilter(db)
        self.trigger_evaluator = trigger_evaluator or TriggerEvaluator(db)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def _resolve_action_type(self, automation: Automation) -> ActionType:
        """Configuration errors surface before any execution row exists"""
        try:
            action_type = ActionType.from_string(automation.action_type)
            self.dispatcher.channel_for(action_type)
        except ValueError as e:
            raise InvalidAutomationError(str(e)) from None
        return action_type

    def _notify(self, automation: Automation, execution: AutomationExecution) -> None:
        notify_execution_outcome(self.db, automation, execution)

    def _recipient_source(
        self, automation: Automation, clauses: list, now: Optional[datetime]
    ) -> Callable[[], list[Recipient]]:
        """Recipient lookup for a regular run; appointment confirmations target one day"""
        trigger_config = automation.trigger_config or {}
        if (
            automation.trigger_type == TriggerType.EVENT.value
            and trigger_config.get("event_type") == APPOINTMENT_CONFIRMATION
        ):
            try:
                day = confirmation_day(trigger_config, now or utcnow())
            except ValueError as e:
                raise InvalidAutomationError(str(e)) from None
            return partial(
                self.recipient_filter.appointment_recipients, automation.clinic_id, day, clauses, now
            )
        return partial(self.recipient_filter.find_recipients, automation.clinic_id, clauses, now)

    def _start(
        self,
        tracker: ExecutionTracker,
        automation: Automation,
        executed_by: Optional[int],
        execution_type: ExecutionType,
        trigger_key: Optional[str],
    ) -> None:
        try:
            tracker.start(automation.id, executed_by, execution_type, trigger_key)
        except IntegrityError:
            self.db.rollback()
            if trigger_key is None:
                raise
            raise TriggerAlreadyClaimedError(
                f"Trigger occurrence {trigger_key} already executed"
            ) from None

    async def execute_automation(
        self,
        automation_id: int,
        executed_by: Optional[int] = None,
        execution_type: ExecutionType = ExecutionType.MANUAL,
        trigger_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ExecutionResult:
        """
        Run one active automation: filter recipients, dispatch, track the execution

        Raises:
            AutomationNotFoundError: unknown or inactive automation, unknown executing user
            InvalidAutomationError / InvalidFilterError: unusable configuration
            TriggerAlreadyClaimedError: trigger_key already used by another execution
            Exception: anything escaping the per-recipient boundary, after the
                execution has been marked failed
        """
        automation = self.repo.get_active_automation(self.db, automation_id)
        if not automation:
            raise AutomationNotFoundError(f"Automation {automation_id} not found or inactive")
        if executed_by is not None and not self.repo.get_profile(self.db, executed_by):
            raise AutomationNotFoundError(f"User {executed_by} not found")

        action_type = self._resolve_action_type(automation)
        clauses = parse_filter_config(automation.filter_config)
        find_recipients = self._recipient_source(automation, clauses, now)

        logger.info(
            f"⚙️ Executing automation {automation.id} ({automation.name}) "
            f"type={execution_type.value} by={executed_by}"
        )
        return await self._run(
            automation, action_type, find_recipients, executed_by, execution_type, trigger_key
        )

    async def _run(
        self,
        automation: Automation,
        action_type: ActionType,
        find_recipients: Callable[[], list[Recipient]],
        executed_by: Optional[int],
        execution_type: ExecutionType,
        trigger_key: Optional[str],
    ) -> ExecutionResult:
        tracker = ExecutionTracker(self.db)
        self._start(tracker, automation, executed_by, execution_type, trigger_key)

        try:
            recipients = find_recipients()

            if not recipients:
                logger.info(f"ℹ️ Automation {automation.id}: no recipients matched")
                execution = tracker.complete(target_count=0)
                self._notify(automation, execution)
                return ExecutionResult.from_execution(
                    execution, no_recipients=True, message=NO_RECIPIENTS_MESSAGE
                )

            results = await self.dispatcher.dispatch(automation, action_type, recipients, tracker)
            execution = tracker.complete(target_count=len(recipients))
        except Exception as e:
            logger.error(f"❌ Automation {automation.id} execution failed: {e}")
            execution = tracker.fail(str(e) or e.__class__.__name__)
            self._notify(automation, execution)
            raise

        self._notify(automation, execution)
        return ExecutionResult.from_execution(
            execution,
            message=f"{execution.success_count} de {execution.target_count} mensagens enviadas",
            results=results,
        )

    async def execute_automatic_triggers(self, now: Optional[datetime] = None) -> list[dict]:
        """
        Evaluate every trigger candidate and execute the due ones

        Each trigger occurrence runs at most once: its key is stored on the execution
        and occurrences already executed are reported as skipped.
        """
        now = now or utcnow()
        candidates = self.repo.get_trigger_candidates(self.db)
        logger.info(f"🔄 Checking {len(candidates)} automatic automation(s)")

        results = []
        for automation in candidates:
            automation_id = automation.id
            automation_name = automation.name
            trigger_key = None
            try:
                decision = self.trigger_evaluator.evaluate(automation, now)
                if not decision.due:
                    logger.debug(f"Automation {automation_id} not due: {decision.reason}")
                    continue

                trigger_key = f"{automation_id}:{decision.window_key}"
                if self.repo.trigger_key_exists(self.db, trigger_key):
                    logger.info(f"⏭️ Automation {automation_id} already ran for {trigger_key}")
                    results.append(self._skipped(automation_id, automation_name, trigger_key))
                    continue

                result = await self.execute_automation(
                    automation_id,
                    executed_by=None,
                    execution_type=ExecutionType.AUTOMATIC,
                    trigger_key=trigger_key,
                    now=now,
                )
                results.append(self._executed(result, automation_name, trigger_key))
            except TriggerAlreadyClaimedError:
                logger.info(f"⏭️ Automation {automation_id} claimed concurrently for {trigger_key}")
                results.append(self._skipped(automation_id, automation_name, trigger_key))
            except Exception as e:
                logger.error(f"❌ Error executing automation {automation_id}: {e}")
                results.append(self._errored(automation_id, automation_name, trigger_key, e))

        return results

    async def process_appointment_event(
        self,
        appointment_id: int,
        event: AppointmentEvent,
        new_status: Optional[str] = None,
        old_status: Optional[str] = None,
    ) -> dict:
        """
        Run the clinic's event automations that react to an appointment event

        appointment_created matches trigger_config.event_type == "appointment_created";
        status_changed matches trigger_config.appointment_status == new_status. Each
        automation messages the appointment's patient once per appointment and event.
        """
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise AutomationNotFoundError(f"Appointment {appointment_id} not found")
        if event is AppointmentEvent.STATUS_CHANGED and not new_status:
            raise InvalidAutomationError("newStatus is required for status changes")

        logger.info(
            f"📅 Appointment {appointment_id} event {event.value}"
            + (f" ({old_status} → {new_status})" if event is AppointmentEvent.STATUS_CHANGED else "")
        )

        automations = [
            automation
            for automation in self.repo.get_event_automations(self.db, appointment.clinic_id)
            if self._matches_appointment_event(automation, event, new_status)
        ]
        response = {
            "success": True,
            "appointmentId": appointment_id,
            "event": event.value,
            "triggered": 0,
            "results": [],
        }
        if not automations:
            logger.info(f"ℹ️ No automation reacts to {event.value} for appointment {appointment_id}")
            return {**response, "reason": "no_relevant_automations"}

        patient = appointment.patient
        recipient = self._appointment_recipient(appointment)
        if not recipient.phone and not recipient.email:
            logger.warning(f"⚠️ Patient {patient.id} has no phone or email, skipping")
            return {**response, "success": False, "reason": "no_contact_channel"}

        occurrence = (
            f"{APPOINTMENT_CREATED}:{appointment.id}"
            if event is AppointmentEvent.CREATED
            else f"appointment_status:{appointment.id}:{new_status}"
        )
        for automation in automations:
            automation_id = automation.id
            automation_name = automation.name
            trigger_key = f"{automation_id}:{occurrence}"
            try:
                if self.repo.trigger_key_exists(self.db, trigger_key):
                    response["results"].append(
                        self._skipped(automation_id, automation_name, trigger_key)
                    )
                    continue

                action_type = self._resolve_action_type(automation)
                result = await self._run(
                    automation,
                    action_type,
                    lambda: [recipient],
                    executed_by=None,
                    execution_type=ExecutionType.AUTOMATIC,
                    trigger_key=trigger_key,
                )
                response["results"].append(self._executed(result, automation_name, trigger_key))
                response["triggered"] += 1
            except TriggerAlreadyClaimedError:
                response["results"].append(self._skipped(automation_id, automation_name, trigger_key))
            except Exception as e:
                logger.error(f"❌ Error executing automation {automation_id} for appointment: {e}")
                response["results"].append(
                    self._errored(automation_id, automation_name, trigger_key, e)
                )

        return response

    @staticmethod
    def _matches_appointment_event(
        automation: Automation, event: AppointmentEvent, new_status: Optional[str]
    ) -> bool:
        trigger_config = automation.trigger_config or {}
        if event is AppointmentEvent.CREATED:
            return trigger_config.get("event_type") == APPOINTMENT_CREATED
        return bool(new_status) and trigger_config.get("appointment_status") == new_status

    @staticmethod
    def _appointment_recipient(appointment: Appointment) -> Recipient:
        """The appointment's patient, reached through the linked contact when there is one"""
        patient = appointment.patient
        if patient.contact is not None:
            return Recipient.from_contact(
                patient.contact,
                patient_id=patient.id,
                appointment_at=appointment.appointment_date,
            )
        return Recipient(
            contact_id=None,
            name=patient.name,
            phone=patient.phone,
            email=patient.email,
            patient_id=patient.id,
            appointment_at=appointment.appointment_date,
        )

    @staticmethod
    def _executed(result: ExecutionResult, name: str, trigger_key: str) -> dict:
        return {**result.to_dict(), "name": name, "triggerKey": trigger_key, "skipped": False}

    @staticmethod
    def _errored(automation_id: int, name: str, trigger_key: Optional[str], error: Exception) -> dict:
        return {
            "success": False,
            "automationId": automation_id,
            "name": name,
            "triggerKey": trigger_key,
            "skipped": False,
            "error": str(error),
        }

    @staticmethod
    def _skipped(automation_id: int, name: str, trigger_key: Optional[str]) -> dict:
        return {
            "success": True,
            "automationId": automation_id,
            "name": name,
            "triggerKey": trigger_key,
            "skipped": True,
            "message": "Trigger occurrence already executed",
        }

    async def test_automation(self, automation_id: int, phone: str) -> dict:
        """Send the rendered message for a sample patient without recording an execution"""
        automation = self.get_automation(automation_id)

        sample = Recipient(
            contact_id=None,
            name=TEST_RECIPIENT_NAME,
            phone=phone,
            appointment_at=utcnow() + timedelta(days=1),
        )
        text = build_message(automation.action_config, sample)
        if not text:
            raise InvalidAutomationError("Automation has no message template")

        logger.info(f"🧪 Testing automation {automation.id} on {phone}")
        result = await self.gateway.send_message(phone, text, TEST_RECIPIENT_NAME)
        return {
            "success": result.success,
            "message": text,
            "messageId": result.message_id,
            "conversationId": result.conversation_id,
            "error": result.error,
        }

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_automation_executions(
        self, automation_id: int, limit: int = 10
    ) -> list[AutomationExecution]:
        """Most recent executions first"""
        if not 1 <= limit <= MAX_EXECUTIONS_LIMIT:
            raise AutomationError(
                f"limit must be between 1 and {MAX_EXECUTIONS_LIMIT}",
                error="Invalid request",
                status_code=400,
            )
        self.get_automation(automation_id)
        return self.repo.get_executions(self.db, automation_id, limit)

    def get_execution_logs(self, execution_id: int) -> list[AutomationExecutionLog]:
        if not self.repo.get_execution(self.db, execution_id):
            raise AutomationNotFoundError(f"Execution {execution_id} not found")
        return self.repo.get_execution_logs(self.db, execution_id)

    def get_active_automations(self) -> list[Automation]:
        return self.repo.get_active_automations(self.db)

    def get_trigger_candidates(self) -> list[Automation]:
        return self.repo.get_trigger_candidates(self.db)

    # ========================================================================
    # CRUD
    # ========================================================================

    def list_automations(self, clinic_id: int) -> list[Automation]:
        return self.repo.list_automations(self.db, clinic_id)

    def get_automation(self, automation_id: int) -> Automation:
        automation = self.repo.get_automation(self.db, automation_id)
        if not automation:
            raise AutomationNotFoundError(f"Automation {automation_id} not found")
        return automation

    @staticmethod
    def _filter_config(filters: list) -> dict:
        """Validate clauses and return the stored {"filters": [...]} shape"""
        parse_filter_config(filters)
        return {"filters": [clause.model_dump(mode="json") for clause in filters]}

    @staticmethod
    def _validate_trigger(trigger_type: str, trigger_config: Optional[dict]) -> None:
        trigger_config = trigger_config or {}
        if trigger_type == TriggerType.SCHEDULED.value:
            if parse_timestamp(trigger_config.get("schedule")) is None:
                raise InvalidAutomationError(
                    "Scheduled automations need a valid trigger_config.schedule timestamp"
                )
        elif trigger_type == TriggerType.EVENT.value:
            if not trigger_config.get("event_type") and not trigger_config.get("appointment_status"):
                raise InvalidAutomationError(
                    "Event automations need trigger_config.event_type or appointment_status"
                )
            if trigger_config.get("event_type") == APPOINTMENT_CONFIRMATION:
                try:
                    days_ahead(trigger_config)
                except ValueError as e:
                    raise InvalidAutomationError(str(e)) from None

    def create_automation(self, data: AutomationCreate) -> Automation:
        if not self.repo.get_clinic(self.db, data.clinic_id):
            raise AutomationNotFoundError(f"Clinic {data.clinic_id} not found")

        self._validate_trigger(data.trigger_type.value, data.trigger_config)
        logger.info(f"📥 Creating automation '{data.name}' for clinic {data.clinic_id}")

        return self.repo.create_automation(
            self.db,
            clinic_id=data.clinic_id,
            name=data.name,
            description=data.description,
            status=data.status.value,
            trigger_type=data.trigger_type.value,
            trigger_config=data.trigger_config,
            action_type=data.action_type,
            action_config=data.action_config,
            filter_config=self._filter_config(data.filters),
        )

    def update_automation(self, automation_id: int, data: AutomationUpdate) -> Automation:
        automation = self.get_automation(automation_id)

        # Every field sent is applied, explicit nulls included
        updates: dict[str, Any] = data.model_dump(exclude_unset=True, exclude={"filters"})
        for key in REQUIRED_FIELDS:
            if key in updates and updates[key] is None:
                raise InvalidAutomationError(f"{key} cannot be null")
        for key in ("status", "trigger_type"):
            if key in updates:
                updates[key] = updates[key].value
        if "filters" in data.model_fields_set:
            updates["filter_config"] = self._filter_config(data.filters or [])

        self._validate_trigger(
            updates.get("trigger_type", automation.trigger_type),
            updates.get("trigger_config", automation.trigger_config),
        )
        return self.repo.update_automation(self.db, automation, **updates)

    def delete_automation(self, automation_id: int) -> dict:
        automation = self.get_automation(automation_id)
        self.repo.delete_automation(self.db, automation)
        logger.info(f"🗑️ Automation {automation_id} deleted")
        return {"success": True, "message": "Automation deleted"}
