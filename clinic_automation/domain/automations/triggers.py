"""
Trigger evaluation for scheduled and event automations

Evaluation is stateless: it answers "is this automation due now?" and names the
trigger occurrence (window key). Firing an occurrence only once is enforced by the
service through the execution's unique trigger_key.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ... import config
from ...models_automation import Automation
from ...shared.dates import parse_timestamp, utcnow
from .repository import AutomationRepository
from .schemas import TriggerType

logger = logging.getLogger(__name__)

PATIENT_CREATED = "patient_created"
APPOINTMENT_CREATED = "appointment_created"
APPOINTMENT_STATUS_CHANGED = "appointment_status_changed"
APPOINTMENT_CONFIRMATION = "appointment_confirmation"

# Fired from the appointment webhook, never by the cron evaluation
WEBHOOK_EVENTS = frozenset({APPOINTMENT_CREATED, APPOINTMENT_STATUS_CHANGED})

DEFAULT_DAYS_AHEAD = 2


def days_ahead(trigger_config: Optional[dict]) -> int:
    """Lead time of an appointment confirmation; raises ValueError when not a whole number >= 0"""
    raw = (trigger_config or {}).get("days_ahead")
    if raw is None or raw == "":
        return DEFAULT_DAYS_AHEAD
    if isinstance(raw, bool):
        raise ValueError(f"Invalid days_ahead: {raw!r}")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid days_ahead: {raw!r}") from None
    if value < 0:
        raise ValueError(f"Invalid days_ahead: {raw!r}")
    return value


def confirmation_day(trigger_config: Optional[dict], now: datetime) -> date:
    """Calendar day whose scheduled appointments get the confirmation message"""
    return (now + timedelta(days=days_ahead(trigger_config))).date()


@dataclass(frozen=True)
class TriggerDecision:
    due: bool
    window_key: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def not_due(cls, reason: str) -> "TriggerDecision":
        return cls(due=False, reason=reason)


class TriggerEvaluator:
    def __init__(
        self,
        db: Session,
        schedule_tolerance: Optional[timedelta] = None,
        event_lookback: Optional[timedelta] = None,
    ):
        self.db = db
        self.repo = AutomationRepository()
        self.schedule_tolerance = schedule_tolerance or timedelta(
            minutes=config.SCHEDULE_TOLERANCE_MINUTES
        )
        self.event_lookback = event_lookback or timedelta(minutes=config.EVENT_LOOKBACK_MINUTES)

    def evaluate(self, automation: Automation, now: Optional[datetime] = None) -> TriggerDecision:
        """Decide whether `now` satisfies the automation's trigger"""
        now = now or utcnow()
        trigger_config = automation.trigger_config or {}

        if automation.trigger_type == TriggerType.SCHEDULED.value:
            return self._evaluate_schedule(trigger_config, now)

        if automation.trigger_type == TriggerType.EVENT.value:
            event_type = trigger_config.get("event_type")
            if event_type == PATIENT_CREATED:
                return self._evaluate_patient_created(automation, now)
            if event_type == APPOINTMENT_CONFIRMATION:
                return self._evaluate_appointment_confirmation(trigger_config, now)
            if event_type in WEBHOOK_EVENTS or trigger_config.get("appointment_status"):
                return TriggerDecision.not_due("fired by appointment events")
            return TriggerDecision.not_due(f"unsupported event type {event_type!r}")

        return TriggerDecision.not_due(f"trigger type {automation.trigger_type!r} is not evaluated")

    def _evaluate_schedule(self, trigger_config: dict, now: datetime) -> TriggerDecision:
        scheduled_at = parse_timestamp(trigger_config.get("schedule"))
        if scheduled_at is None:
            return TriggerDecision.not_due("missing or invalid schedule timestamp")

        if abs(now - scheduled_at) < self.schedule_tolerance:
            return TriggerDecision(due=True, window_key=f"scheduled:{scheduled_at.isoformat()}")
        return TriggerDecision.not_due("outside schedule window")

    def _evaluate_patient_created(self, automation: Automation, now: datetime) -> TriggerDecision:
        newest = self.repo.newest_patient_since(
            self.db, automation.clinic_id, now - self.event_lookback
        )
        if newest is None:
            return TriggerDecision.not_due("no patient created in lookback window")
        return TriggerDecision(due=True, window_key=f"{PATIENT_CREATED}:{newest.id}")

    def _evaluate_appointment_confirmation(self, trigger_config: dict, now: datetime) -> TriggerDecision:
        """Due on every check; the target day makes it fire once per day"""
        try:
            day = confirmation_day(trigger_config, now)
        except ValueError as e:
            return TriggerDecision.not_due(str(e))
        return TriggerDecision(due=True, window_key=f"{APPOINTMENT_CONFIRMATION}:{day.isoformat()}")
