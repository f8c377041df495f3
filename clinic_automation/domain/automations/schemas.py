"""Automation domain schemas - enums and Pydantic models for validation"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AutomationStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"


class TriggerType(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    EVENT = "event"


class ActionType(str, Enum):
    MESSAGE = "message"
    EMAIL = "email"
    SMS = "sms"

    @classmethod
    def from_string(cls, value: str) -> "ActionType":
        """Parse an action type, accepting the legacy whatsapp_message name"""
        normalized = (value or "").strip().lower()
        if normalized == "whatsapp_message":
            return cls.MESSAGE
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Invalid action type: {value!r}") from None


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class ExecutionType(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class LogStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class AppointmentEvent(str, Enum):
    CREATED = "appointment_created"
    STATUS_CHANGED = "status_changed"


class FilterOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER = "greater"
    LESS = "less"
    CONTAINS = "contains"


class FilterClauseSchema(BaseModel):
    """One stored filter clause: {type, operator, value}"""

    model_config = ConfigDict(extra="allow")

    type: str
    operator: FilterOperator = FilterOperator.EQUALS
    value: Any = None


class AutomationCreate(BaseModel):
    """Schema for creating an automation"""

    clinic_id: int
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    status: AutomationStatus = AutomationStatus.ACTIVE
    trigger_type: TriggerType = TriggerType.MANUAL
    trigger_config: dict = Field(default_factory=dict)
    action_type: str = ActionType.MESSAGE.value
    action_config: dict = Field(default_factory=dict)
    filters: list[FilterClauseSchema] = Field(default_factory=list)

    @field_validator("action_type")
    @classmethod
    def validate_action_type(cls, v):
        return ActionType.from_string(v).value


class AutomationUpdate(BaseModel):
    """Schema for updating an automation - only provided fields change"""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[AutomationStatus] = None
    trigger_type: Optional[TriggerType] = None
    trigger_config: Optional[dict] = None
    action_type: Optional[str] = None
    action_config: Optional[dict] = None
    filters: Optional[list[FilterClauseSchema]] = None

    @field_validator("action_type")
    @classmethod
    def validate_action_type(cls, v):
        if v is None:
            return v
        return ActionType.from_string(v).value


class AutomationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: int
    name: str
    description: Optional[str] = None
    status: str
    trigger_type: str
    trigger_config: Optional[dict] = None
    action_type: str
    action_config: Optional[dict] = None
    filter_config: Optional[Any] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ExecutionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    automation_id: int
    executed_by: Optional[int] = None
    executed_by_name: Optional[str] = None
    execution_type: str
    status: str
    target_count: int
    success_count: int
    failure_count: int
    error_message: Optional[str] = None
    trigger_key: Optional[str] = None
    executed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ExecutionLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    execution_id: int
    target_phone: Optional[str] = None
    target_name: Optional[str] = None
    status: str
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class ExecuteRequest(BaseModel):
    """Body of a manual execution; userId is checked by the route (400 when absent)"""

    userId: Optional[int] = None


class AutomationTestRequest(BaseModel):
    phone: str = Field(min_length=8)


class AppointmentEventRequest(BaseModel):
    """Appointment webhook body; newStatus is required for status changes (checked by the service)"""

    event: AppointmentEvent
    newStatus: Optional[str] = None
    oldStatus: Optional[str] = None
