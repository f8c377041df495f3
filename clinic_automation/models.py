from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Clinic(Base):
    __tablename__ = "clinics"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    profiles = relationship("Profile", back_populates="clinic")
    contacts = relationship("Contact", back_populates="clinic")
    patients = relationship("Patient", back_populates="clinic")


class Profile(Base):
    """Clinic operator account (executes automations manually, receives notifications)"""

    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    role = Column(String(50), default="staff", nullable=False)  # admin, staff
    created_at = Column(DateTime, server_default=func.now())

    clinic = relationship("Clinic", back_populates="profiles")


class Contact(Base):
    """CRM contact - the unit automations deliver messages to"""

    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    status = Column(String(50), nullable=True)  # lead, active, inactive
    source = Column(String(100), nullable=True)  # whatsapp, import, manual
    city = Column(String(100), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    clinic = relationship("Clinic", back_populates="contacts")
    patient = relationship("Patient", back_populates="contact", uselist=False)


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    birthdate = Column(Date, nullable=True)
    status = Column(String(50), default="active", nullable=True)  # active, inactive, lead
    created_at = Column(DateTime, server_default=func.now(), index=True)

    clinic = relationship("Clinic", back_populates="patients")
    contact = relationship("Contact", back_populates="patient")
    appointments = relationship(
        "Appointment", back_populates="patient", cascade="all, delete-orphan"
    )


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    appointment_date = Column(DateTime, nullable=False)
    status = Column(String(50), default="scheduled")  # scheduled, completed, cancelled
    location = Column(String(100), nullable=True)  # clinica, domiciliar
    created_at = Column(DateTime, server_default=func.now())

    patient = relationship("Patient", back_populates="appointments")


class Notification(Base):
    """In-app system notification shown to clinic operators"""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    type = Column(String(50), default="info", nullable=False)  # system, error, info
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    extra = Column("metadata", JSON, default=dict, nullable=True)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
