"""
Test Recipient Filters

Clause parsing and recipient selection for contact and patient clauses.
"""

from datetime import date, timedelta

import pytest

from clinic_automation.domain.automations.filters import (
    ClauseKind,
    RecipientFilter,
    parse_clause,
    parse_filter_config,
)
from clinic_automation.domain.automations.schemas import FilterOperator
from clinic_automation.exceptions import InvalidFilterError


def clauses(*raw):
    return parse_filter_config({"filters": list(raw)})


class TestParseClause:
    """Tests for clause validation."""

    def test_semantic_kind(self):
        clause = parse_clause({"type": "has_phone", "operator": "equals", "value": "true"})
        assert clause.kind is ClauseKind.HAS_PHONE
        assert clause.field is None
        assert clause.is_patient_linked is False

    def test_contact_field_kind(self):
        clause = parse_clause({"type": "city", "operator": "contains", "value": "Paulo"})
        assert clause.kind is ClauseKind.FIELD
        assert clause.field == "city"
        assert clause.operator is FilterOperator.CONTAINS

    def test_operator_defaults_to_equals(self):
        assert parse_clause({"type": "status", "value": "lead"}).operator is FilterOperator.EQUALS

    def test_patient_linked_kinds(self):
        for kind in ("has_appointments", "last_appointment_days", "patient_status", "birthday"):
            assert parse_clause({"type": kind, "value": "1"}).is_patient_linked

    def test_unknown_field_rejected(self):
        with pytest.raises(InvalidFilterError, match="Unknown filter field"):
            parse_clause({"type": "password_hash", "value": "x"})

    def test_unknown_operator_rejected(self):
        with pytest.raises(InvalidFilterError, match="Unknown filter operator"):
            parse_clause({"type": "name", "operator": "starts_with", "value": "A"})

    def test_operator_not_supported_for_kind(self):
        with pytest.raises(InvalidFilterError, match="not supported"):
            parse_clause({"type": "has_phone", "operator": "greater", "value": "true"})

    def test_invalid_values_rejected(self):
        with pytest.raises(InvalidFilterError):
            parse_clause({"type": "last_appointment_days", "operator": "less", "value": "soon"})
        with pytest.raises(InvalidFilterError):
            parse_clause({"type": "birthday", "value": "13"})
        with pytest.raises(InvalidFilterError):
            parse_clause({"type": "has_phone", "value": "maybe"})

    def test_missing_type_rejected(self):
        with pytest.raises(InvalidFilterError):
            parse_clause({"operator": "equals", "value": "x"})

    def test_filter_config_shapes(self):
        raw = [{"type": "has_phone", "value": "true"}]
        assert len(parse_filter_config({"filters": raw})) == 1
        assert len(parse_filter_config(raw)) == 1
        assert parse_filter_config(None) == []
        assert parse_filter_config({}) == []
        with pytest.raises(InvalidFilterError):
            parse_filter_config("has_phone")


class TestContactRecipients:
    """Contact-level clauses run as SQL predicates."""

    def test_has_phone_excludes_empty_phone(self, db, factory):
        clinic = factory.clinic()
        factory.contact(clinic, name="Sem Telefone", phone="")
        with_phone = factory.contact(clinic, name="Com Telefone", phone="11988887777")

        recipients = RecipientFilter(db).find_recipients(
            clinic.id, clauses({"type": "has_phone", "operator": "equals", "value": "true"})
        )

        assert [r.contact_id for r in recipients] == [with_phone.id]
        assert recipients[0].phone == "11988887777"

    def test_has_phone_false_selects_missing_phones(self, db, factory):
        clinic = factory.clinic()
        empty = factory.contact(clinic, name="Vazio", phone="")
        missing = factory.contact(clinic, name="Nulo", phone=None)
        factory.contact(clinic, name="Com Telefone", phone="11988887777")

        recipients = RecipientFilter(db).find_recipients(
            clinic.id, clauses({"type": "has_phone", "value": "false"})
        )

        assert {r.contact_id for r in recipients} == {empty.id, missing.id}

    def test_no_clauses_returns_all_clinic_contacts(self, db, factory):
        clinic = factory.clinic()
        other = factory.clinic(name="Outra")
        a = factory.contact(clinic, name="Ana")
        b = factory.contact(clinic, name="Bruno")
        factory.contact(other, name="Carla")

        recipients = RecipientFilter(db).find_recipients(clinic.id, [])

        assert [r.contact_id for r in recipients] == [a.id, b.id]

    def test_field_operators(self, db, factory):
        clinic = factory.clinic()
        sp = factory.contact(clinic, name="Ana", city="São Paulo", status="lead")
        factory.contact(clinic, name="Bruno", city="Campinas", status="active")
        no_city = factory.contact(clinic, name="Carla", city=None, status="lead")
        finder = RecipientFilter(db)

        contains = finder.find_recipients(clinic.id, clauses({"type": "city", "operator": "contains", "value": "paulo"}))
        assert [r.contact_id for r in contains] == [sp.id]

        not_equals = finder.find_recipients(
            clinic.id, clauses({"type": "city", "operator": "not_equals", "value": "Campinas"})
        )
        assert {r.contact_id for r in not_equals} == {sp.id, no_city.id}

        combined = finder.find_recipients(
            clinic.id,
            clauses(
                {"type": "status", "operator": "equals", "value": "lead"},
                {"type": "city", "operator": "equals", "value": "São Paulo"},
            ),
        )
        assert [r.contact_id for r in combined] == [sp.id]

    def test_zero_matches_is_empty_list(self, db, factory):
        clinic = factory.clinic()
        factory.contact(clinic, name="Ana", status="active")

        recipients = RecipientFilter(db).find_recipients(
            clinic.id, clauses({"type": "status", "value": "archived"})
        )

        assert recipients == []


class TestPatientRecipients:
    """Patient-linked clauses load patients and evaluate in memory."""

    def test_field_clauses_still_apply_with_patient_clauses(self, db, factory, now):
        clinic = factory.clinic()
        campinas = factory.patient(factory.contact(clinic, name="Ana", city="Campinas"))
        santos = factory.patient(factory.contact(clinic, name="Bruno", city="Santos"))
        factory.appointment(campinas, now - timedelta(days=3))
        factory.appointment(santos, now - timedelta(days=3))

        recipients = RecipientFilter(db).find_recipients(
            clinic.id,
            clauses(
                {"type": "has_appointments", "value": "true"},
                {"type": "city", "operator": "equals", "value": "Campinas"},
            ),
            now=now,
        )

        assert [r.patient_id for r in recipients] == [campinas.id]

    def test_contacts_without_patient_are_excluded(self, db, factory, now):
        clinic = factory.clinic()
        factory.contact(clinic, name="Lead")
        patient = factory.patient(factory.contact(clinic, name="Paciente"), status="active")

        recipients = RecipientFilter(db).find_recipients(
            clinic.id, clauses({"type": "patient_status", "value": "active"}), now=now
        )

        assert [r.patient_id for r in recipients] == [patient.id]

    def test_has_appointments(self, db, factory, now):
        clinic = factory.clinic()
        with_appointment = factory.patient(factory.contact(clinic, name="Ana"))
        without = factory.patient(factory.contact(clinic, name="Bruno"))
        factory.appointment(with_appointment, now + timedelta(days=2))
        finder = RecipientFilter(db)

        yes = finder.find_recipients(clinic.id, clauses({"type": "has_appointments", "value": "true"}), now=now)
        no = finder.find_recipients(clinic.id, clauses({"type": "has_appointments", "value": "false"}), now=now)

        assert [r.patient_id for r in yes] == [with_appointment.id]
        assert [r.patient_id for r in no] == [without.id]

    def test_last_appointment_days(self, db, factory, now):
        clinic = factory.clinic()
        recent = factory.patient(factory.contact(clinic, name="Recente"))
        old = factory.patient(factory.contact(clinic, name="Antigo"))
        factory.patient(factory.contact(clinic, name="Nunca"))
        factory.appointment(recent, now - timedelta(days=5))
        factory.appointment(old, now - timedelta(days=200))
        factory.appointment(old, now - timedelta(days=120))
        finder = RecipientFilter(db)

        within_30 = finder.find_recipients(
            clinic.id, clauses({"type": "last_appointment_days", "operator": "less", "value": "30"}), now=now
        )
        over_90 = finder.find_recipients(
            clinic.id, clauses({"type": "last_appointment_days", "operator": "greater", "value": 90}), now=now
        )

        assert [r.patient_id for r in within_30] == [recent.id]
        assert [r.patient_id for r in over_90] == [old.id]

    def test_patient_status_not_equals(self, db, factory, now):
        clinic = factory.clinic()
        active = factory.patient(factory.contact(clinic, name="Ana"), status="active")
        factory.patient(factory.contact(clinic, name="Bruno"), status="inactive")

        recipients = RecipientFilter(db).find_recipients(
            clinic.id,
            clauses({"type": "patient_status", "operator": "not_equals", "value": "inactive"}),
            now=now,
        )

        assert [r.patient_id for r in recipients] == [active.id]

    def test_birthday_today_and_month(self, db, factory, now):
        clinic = factory.clinic()
        today = factory.patient(factory.contact(clinic, name="Aniversariante"), birthdate=date(1980, 3, 10))
        same_month = factory.patient(factory.contact(clinic, name="Março"), birthdate=date(1990, 3, 25))
        factory.patient(factory.contact(clinic, name="Julho"), birthdate=date(1985, 7, 1))
        factory.patient(factory.contact(clinic, name="Sem Data"))
        finder = RecipientFilter(db)

        todays = finder.find_recipients(clinic.id, clauses({"type": "birthday", "value": "today"}), now=now)
        march = finder.find_recipients(clinic.id, clauses({"type": "birthday", "value": "3"}), now=now)

        assert [r.patient_id for r in todays] == [today.id]
        assert [r.patient_id for r in march] == [today.id, same_month.id]

    def test_age_range(self, db, factory, now):
        clinic = factory.clinic()
        # now is 2026-03-10
        forty = factory.patient(factory.contact(clinic, name="Quarenta"), birthdate=date(1986, 1, 1))
        seventy = factory.patient(factory.contact(clinic, name="Setenta"), birthdate=date(1955, 6, 1))
        twenty_nine = factory.patient(factory.contact(clinic, name="Vinte"), birthdate=date(1996, 3, 11))
        finder = RecipientFilter(db)

        between = finder.find_recipients(clinic.id, clauses({"type": "age_range", "value": "30-50"}), now=now)
        over_60 = finder.find_recipients(
            clinic.id, clauses({"type": "age_range", "operator": "greater", "value": "60"}), now=now
        )
        under_30 = finder.find_recipients(
            clinic.id, clauses({"type": "age_range", "operator": "less", "value": "30"}), now=now
        )

        assert [r.patient_id for r in between] == [forty.id]
        assert [r.patient_id for r in over_60] == [seventy.id]
        assert [r.patient_id for r in under_30] == [twenty_nine.id]

    def test_next_appointment_is_attached(self, db, factory, now):
        clinic = factory.clinic()
        patient = factory.patient(factory.contact(clinic, name="Ana"))
        factory.appointment(patient, now - timedelta(days=10))
        factory.appointment(patient, now + timedelta(days=7))
        factory.appointment(patient, now + timedelta(days=1), status="cancelled")
        factory.appointment(patient, now + timedelta(days=3))

        recipients = RecipientFilter(db).find_recipients(
            clinic.id, clauses({"type": "has_appointments", "value": "true"}), now=now
        )

        assert recipients[0].appointment_at == now + timedelta(days=3)
