"""
Recipient filter evaluation

Narrows a clinic's contacts to the recipients of an automation. All clauses are
combined with AND. Clauses on contact columns become SQL predicates; clauses that
need patient data (appointments, status, birthdate) are evaluated in memory after
loading patients with their contact and appointments.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, contains_eager, selectinload

from ...exceptions import InvalidFilterError
from ...models import Appointment, Contact, Patient
from ...shared.dates import parse_timestamp, utcnow
from .schemas import FilterOperator

logger = logging.getLogger(__name__)


class ClauseKind(str, Enum):
    FIELD = "field"
    HAS_PHONE = "has_phone"
    BIRTHDAY = "birthday"
    AGE_RANGE = "age_range"
    HAS_APPOINTMENTS = "has_appointments"
    LAST_APPOINTMENT_DAYS = "last_appointment_days"
    PATIENT_STATUS = "patient_status"


PATIENT_LINKED_KINDS = frozenset(
    {
        ClauseKind.BIRTHDAY,
        ClauseKind.AGE_RANGE,
        ClauseKind.HAS_APPOINTMENTS,
        ClauseKind.LAST_APPOINTMENT_DAYS,
        ClauseKind.PATIENT_STATUS,
    }
)

ALL_OPERATORS = frozenset(FilterOperator)

ALLOWED_OPERATORS: dict[ClauseKind, frozenset] = {
    ClauseKind.FIELD: ALL_OPERATORS,
    ClauseKind.HAS_PHONE: frozenset({FilterOperator.EQUALS}),
    ClauseKind.BIRTHDAY: frozenset({FilterOperator.EQUALS}),
    ClauseKind.AGE_RANGE: frozenset(
        {FilterOperator.EQUALS, FilterOperator.GREATER, FilterOperator.LESS}
    ),
    ClauseKind.HAS_APPOINTMENTS: frozenset({FilterOperator.EQUALS, FilterOperator.NOT_EQUALS}),
    ClauseKind.LAST_APPOINTMENT_DAYS: frozenset(
        {FilterOperator.EQUALS, FilterOperator.GREATER, FilterOperator.LESS}
    ),
    ClauseKind.PATIENT_STATUS: frozenset(
        {FilterOperator.EQUALS, FilterOperator.NOT_EQUALS, FilterOperator.CONTAINS}
    ),
}

# Contact columns a generic field clause may reference
CONTACT_FIELDS = {
    "name": Contact.name,
    "phone": Contact.phone,
    "email": Contact.email,
    "status": Contact.status,
    "source": Contact.source,
    "city": Contact.city,
    "created_at": Contact.created_at,
}

TRUE_VALUES = {"true", "1", "yes", "sim"}
FALSE_VALUES = {"false", "0", "no", "nao", "não"}

# Appointment statuses
SCHEDULED = "scheduled"
CANCELLED = "cancelled"


@dataclass(frozen=True)
class Clause:
    """A validated filter clause"""

    kind: ClauseKind
    operator: FilterOperator
    value: Any = None
    field: Optional[str] = None

    @property
    def is_patient_linked(self) -> bool:
        return self.kind in PATIENT_LINKED_KINDS


@dataclass
class Recipient:
    """Read-only projection of a contact that an action is delivered to"""

    contact_id: Optional[int]
    name: Optional[str]
    phone: Optional[str]
    email: Optional[str] = None
    patient_id: Optional[int] = None
    appointment_at: Optional[datetime] = None

    @classmethod
    def from_contact(cls, contact: Contact, **extra) -> "Recipient":
        return cls(
            contact_id=contact.id,
            name=contact.name,
            phone=contact.phone,
            email=contact.email,
            **extra,
        )


def _as_bool(value: Any, default: bool = True) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise InvalidFilterError(f"Expected true/false, got {value!r}")


def _as_int(value: Any, kind: ClauseKind) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise InvalidFilterError(f"Filter {kind.value} expects a number, got {value!r}") from None


def parse_clause(raw: Any) -> Clause:
    """Validate one stored clause ({type, operator, value}) into a Clause"""
    if hasattr(raw, "model_dump"):
        raw = raw.model_dump()
    if not isinstance(raw, dict) or not raw.get("type"):
        raise InvalidFilterError(f"Filter clause must have a type: {raw!r}")

    clause_type = str(raw["type"]).strip()
    operator_raw = raw.get("operator") or FilterOperator.EQUALS.value
    try:
        operator = FilterOperator(operator_raw)
    except ValueError:
        raise InvalidFilterError(f"Unknown filter operator: {operator_raw!r}") from None

    try:
        kind = ClauseKind(clause_type)
    except ValueError:
        kind = ClauseKind.FIELD

    if kind is ClauseKind.FIELD and clause_type not in CONTACT_FIELDS:
        raise InvalidFilterError(f"Unknown filter field: {clause_type!r}")

    if operator not in ALLOWED_OPERATORS[kind]:
        raise InvalidFilterError(
            f"Operator {operator.value!r} is not supported for filter {clause_type!r}"
        )

    clause = Clause(
        kind=kind,
        operator=operator,
        value=raw.get("value"),
        field=clause_type if kind is ClauseKind.FIELD else None,
    )
    _validate_value(clause)
    return clause


def _validate_value(clause: Clause) -> None:
    if clause.kind in (ClauseKind.HAS_PHONE, ClauseKind.HAS_APPOINTMENTS):
        _as_bool(clause.value)
    elif clause.kind is ClauseKind.LAST_APPOINTMENT_DAYS:
        _as_int(clause.value, clause.kind)
    elif clause.kind is ClauseKind.AGE_RANGE:
        _age_bounds(clause)
    elif clause.kind is ClauseKind.BIRTHDAY:
        _birthday_month(clause)


def parse_filter_config(filter_config: Any) -> list[Clause]:
    """
    Parse an automation's filter_config.

    Accepts {"filters": [...]}, a bare list, or nothing.
    """
    if not filter_config:
        return []
    if isinstance(filter_config, dict):
        raw_clauses = filter_config.get("filters") or []
    elif isinstance(filter_config, list):
        raw_clauses = filter_config
    else:
        raise InvalidFilterError("filter_config must be an object or a list")
    return [parse_clause(raw) for raw in raw_clauses]


def _age_bounds(clause: Clause) -> tuple[Optional[int], Optional[int]]:
    """Return inclusive (min, max) age bounds for an age_range clause"""
    value = "" if clause.value is None else str(clause.value).strip()

    if clause.operator is FilterOperator.GREATER:
        return _as_int(value, clause.kind) + 1, None
    if clause.operator is FilterOperator.LESS:
        return None, _as_int(value, clause.kind) - 1

    if "-" in value:
        low, high = (part.strip() for part in value.split("-", 1))
        return (
            _as_int(low, clause.kind) if low else None,
            _as_int(high, clause.kind) if high else None,
        )
    if value:
        age = _as_int(value, clause.kind)
        return age, age
    raise InvalidFilterError("Filter age_range expects a value like '30-50'")


def _birthday_month(clause: Clause) -> Optional[int]:
    """Month for a birthday clause, or None for "today" (the default)"""
    value = "" if clause.value is None else str(clause.value).strip().lower()
    if value in ("", "today", "hoje"):
        return None
    month = _as_int(value, clause.kind)
    if not 1 <= month <= 12:
        raise InvalidFilterError(f"Birthday month must be 1-12, got {month}")
    return month


def _age_on(birthdate: date, today: date) -> int:
    return today.year - birthdate.year - ((today.month, today.day) < (birthdate.month, birthdate.day))


class RecipientFilter:
    """Computes the recipients of an automation for one clinic"""

    def __init__(self, db: Session):
        self.db = db

    def find_recipients(
        self, clinic_id: int, clauses: list[Clause], now: Optional[datetime] = None
    ) -> list[Recipient]:
        """Return recipients matching every clause (empty list when nothing matches)"""
        now = now or utcnow()
        contact_clauses = [c for c in clauses if not c.is_patient_linked]
        patient_clauses = [c for c in clauses if c.is_patient_linked]

        if patient_clauses:
            return self._patient_recipients(clinic_id, contact_clauses, patient_clauses, now)
        return self._contact_recipients(clinic_id, contact_clauses)

    # ------------------------------------------------------------------
    # Contact path
    # ------------------------------------------------------------------

    def _contact_recipients(self, clinic_id: int, clauses: list[Clause]) -> list[Recipient]:
        query = self.db.query(Contact).filter(Contact.clinic_id == clinic_id)
        for clause in clauses:
            query = query.filter(self.contact_predicate(clause))

        contacts = query.order_by(Contact.id.asc()).all()
        logger.debug(f"Contact filter for clinic {clinic_id}: {len(contacts)} match(es)")
        return [Recipient.from_contact(contact) for contact in contacts]

    @staticmethod
    def contact_predicate(clause: Clause):
        """SQL predicate on the contacts table for a contact-level clause"""
        if clause.kind is ClauseKind.HAS_PHONE:
            has_phone = Contact.phone.isnot(None) & (Contact.phone != "")
            if _as_bool(clause.value):
                return has_phone
            return or_(Contact.phone.is_(None), Contact.phone == "")

        if clause.kind is ClauseKind.FIELD:
            column = CONTACT_FIELDS[clause.field]
            value = clause.value
            if clause.field == "created_at":
                value = parse_timestamp(value) or value

            if clause.operator is FilterOperator.EQUALS:
                return column == value
            if clause.operator is FilterOperator.NOT_EQUALS:
                return or_(column != value, column.is_(None))
            if clause.operator is FilterOperator.CONTAINS:
                return func.lower(column).contains(str(value or "").lower(), autoescape=True)
            if clause.operator is FilterOperator.GREATER:
                return column > value
            if clause.operator is FilterOperator.LESS:
                return column < value

        raise InvalidFilterError(f"Clause {clause.kind.value!r} is not a contact clause")

    # ------------------------------------------------------------------
    # Patient path
    # ------------------------------------------------------------------

    def _patient_recipients(
        self,
        clinic_id: int,
        contact_clauses: list[Clause],
        patient_clauses: list[Clause],
        now: datetime,
    ) -> list[Recipient]:
        query = (
            self.db.query(Patient)
            .join(Patient.contact)
            .options(contains_eager(Patient.contact), selectinload(Patient.appointments))
            .filter(Patient.clinic_id == clinic_id)
        )
        # Contact-level clauses still apply to the linked contact
        for clause in contact_clauses:
            query = query.filter(self.contact_predicate(clause))

        patients = query.order_by(Patient.id.asc()).all()

        recipients: list[Recipient] = []
        seen_contacts: set[int] = set()
        for patient in patients:
            if not all(self.matches_patient(patient, clause, now) for clause in patient_clauses):
                continue
            if patient.contact.id in seen_contacts:
                continue
            seen_contacts.add(patient.contact.id)
            recipients.append(
                Recipient.from_contact(
                    patient.contact,
                    patient_id=patient.id,
                    appointment_at=self._next_appointment(patient, now),
                )
            )

        logger.debug(
            f"Patient filter for clinic {clinic_id}: {len(recipients)} of {len(patients)} match(es)"
        )
        return recipients

    def appointment_recipients(
        self, clinic_id: int, day: date, clauses: list[Clause], now: Optional[datetime] = None
    ) -> list[Recipient]:
        """
        Contacts with a scheduled appointment on `day`, one per contact (earliest slot).

        The automation clauses narrow the set the same way as for a regular run.
        """
        now = now or utcnow()
        start = datetime.combine(day, time.min)
        query = (
            self.db.query(Appointment)
            .join(Appointment.patient)
            .join(Patient.contact)
            .options(contains_eager(Appointment.patient).contains_eager(Patient.contact))
            .filter(
                Appointment.clinic_id == clinic_id,
                Appointment.status == SCHEDULED,
                Appointment.appointment_date >= start,
                Appointment.appointment_date < start + timedelta(days=1),
            )
        )
        for clause in clauses:
            if not clause.is_patient_linked:
                query = query.filter(self.contact_predicate(clause))

        appointments = query.order_by(Appointment.appointment_date.asc(), Appointment.id.asc()).all()

        recipients: list[Recipient] = []
        seen_contacts: set[int] = set()
        for appointment in appointments:
            patient = appointment.patient
            if patient.contact.id in seen_contacts:
                continue
            if not all(
                self.matches_patient(patient, clause, now)
                for clause in clauses
                if clause.is_patient_linked
            ):
                continue
            seen_contacts.add(patient.contact.id)
            recipients.append(
                Recipient.from_contact(
                    patient.contact,
                    patient_id=patient.id,
                    appointment_at=appointment.appointment_date,
                )
            )

        logger.debug(
            f"Appointments of clinic {clinic_id} on {day.isoformat()}: {len(recipients)} recipient(s)"
        )
        return recipients

    @staticmethod
    def _next_appointment(patient: Patient, now: datetime) -> Optional[datetime]:
        upcoming = [
            a.appointment_date
            for a in patient.appointments
            if a.appointment_date and a.appointment_date >= now and a.status != CANCELLED
        ]
        return min(upcoming) if upcoming else None

    @staticmethod
    def matches_patient(patient: Patient, clause: Clause, now: datetime) -> bool:
        """Evaluate a patient-linked clause against one loaded patient"""
        kind = clause.kind
        today = now.date()

        if kind is ClauseKind.HAS_APPOINTMENTS:
            has_any = len(patient.appointments) > 0
            wanted = _as_bool(clause.value)
            if clause.operator is FilterOperator.NOT_EQUALS:
                wanted = not wanted
            return has_any == wanted

        if kind is ClauseKind.LAST_APPOINTMENT_DAYS:
            dates = [a.appointment_date for a in patient.appointments if a.appointment_date]
            if not dates:
                return False
            days_since = (now - max(dates)).days
            days = _as_int(clause.value, kind)
            if clause.operator is FilterOperator.LESS:
                return days_since < days
            if clause.operator is FilterOperator.GREATER:
                return days_since > days
            return days_since == days

        if kind is ClauseKind.PATIENT_STATUS:
            status = patient.status or ""
            value = "" if clause.value is None else str(clause.value)
            if clause.operator is FilterOperator.NOT_EQUALS:
                return status != value
            if clause.operator is FilterOperator.CONTAINS:
                return value.lower() in status.lower()
            return status == value

        if kind is ClauseKind.BIRTHDAY:
            if not patient.birthdate:
                return False
            month = _birthday_month(clause)
            if month is None:
                return (patient.birthdate.month, patient.birthdate.day) == (today.month, today.day)
            return patient.birthdate.month == month

        if kind is ClauseKind.AGE_RANGE:
            if not patient.birthdate:
                return False
            low, high = _age_bounds(clause)
            age = _age_on(patient.birthdate, today)
            return (low is None or age >= low) and (high is None or age <= high)

        raise InvalidFilterError(f"Clause {kind.value!r} is not a patient clause")
