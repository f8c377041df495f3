"""
Pytest Configuration and Shared Fixtures

In-memory SQLite database, a fake messaging bridge and small record factories.
"""

import os
from datetime import date, datetime, timedelta
from typing import Optional

import pytest

# Set test environment before importing application modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_ENABLED"] = "false"
os.environ["CRON_SECRET_KEY"] = "test-cron-secret"
os.environ["CHATWOOT_API_TOKEN"] = ""
os.environ["RESEND_API_KEY"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""

from clinic_automation import models, models_automation  # noqa: E402,F401
from clinic_automation.database import Base, SessionLocal, engine  # noqa: E402
from clinic_automation.models import Appointment, Clinic, Contact, Patient, Profile  # noqa: E402
from clinic_automation.models_automation import Automation  # noqa: E402
from clinic_automation.services.chatwoot_service import GatewayResult  # noqa: E402
from clinic_automation.shared.dates import utcnow  # noqa: E402


# --- Time Fixtures ---


@pytest.fixture
def now() -> datetime:
    """Fixed naive-UTC instant for deterministic tests."""
    return datetime(2026, 3, 10, 12, 0, 0)


# --- Database Fixtures ---


@pytest.fixture
def db():
    """Fresh schema per test on the shared in-memory connection."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


class Factory:
    """Creates committed records with sensible defaults."""

    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def clinic(self, name: str = "Clínica Audição") -> Clinic:
        return self._save(Clinic(name=name))

    def profile(self, clinic: Clinic, full_name: str = "Dra. Helena", role: str = "staff") -> Profile:
        return self._save(Profile(clinic_id=clinic.id, full_name=full_name, role=role))

    def contact(
        self,
        clinic: Clinic,
        name: str = "Maria",
        phone: Optional[str] = "11999998888",
        **fields,
    ) -> Contact:
        return self._save(Contact(clinic_id=clinic.id, name=name, phone=phone, **fields))

    def patient(
        self,
        contact: Contact,
        birthdate: Optional[date] = None,
        status: str = "active",
        created_at: Optional[datetime] = None,
    ) -> Patient:
        return self._save(
            Patient(
                clinic_id=contact.clinic_id,
                contact_id=contact.id,
                name=contact.name or "Paciente",
                phone=contact.phone,
                birthdate=birthdate,
                status=status,
                created_at=created_at or utcnow() - timedelta(days=30),
            )
        )

    def appointment(
        self, patient: Patient, appointment_date: datetime, status: str = "scheduled"
    ) -> Appointment:
        return self._save(
            Appointment(
                clinic_id=patient.clinic_id,
                patient_id=patient.id,
                appointment_date=appointment_date,
                status=status,
            )
        )

    def automation(self, clinic: Clinic, **overrides) -> Automation:
        values = {
            "clinic_id": clinic.id,
            "name": "Lembrete de consulta",
            "status": "active",
            "trigger_type": "manual",
            "trigger_config": {},
            "action_type": "message",
            "action_config": {"message_template": "Oi {{nome}}"},
            "filter_config": {"filters": []},
        }
        values.update(overrides)
        return self._save(Automation(**values))


@pytest.fixture
def factory(db) -> Factory:
    return Factory(db)


# --- Messaging Bridge Fixtures ---


class FakeGateway:
    """Records every send; selected phones fail or raise."""

    def __init__(self, fail_phones=(), raise_phones=()):
        self.calls: list[tuple] = []
        self.fail_phones = set(fail_phones)
        self.raise_phones = set(raise_phones)

    async def send_message(self, phone, message, display_name=None) -> GatewayResult:
        self.calls.append((phone, message, display_name))
        if phone in self.raise_phones:
            raise RuntimeError("bridge connection reset")
        if phone in self.fail_phones:
            return GatewayResult(success=False, error="Chatwoot API error 500: boom")
        return GatewayResult(
            success=True, message_id=f"msg-{len(self.calls)}", conversation_id="conv-1"
        )

    @property
    def messages(self) -> list[str]:
        return [call[1] for call in self.calls]


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


# --- HTTP Fixtures ---


@pytest.fixture
def client(db, gateway):
    """TestClient bound to the test session and fake bridge."""
    from fastapi.testclient import TestClient

    from clinic_automation.database import get_db
    from clinic_automation.domain.automations.router import get_gateway
    from clinic_automation.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def cron_headers() -> dict:
    return {"Authorization": "Bearer test-cron-secret"}
