"""
Test Trigger Evaluation

Scheduled windows, patient_created events, and one-shot firing per occurrence.
"""

from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from clinic_automation.domain.automations.service import AutomationService
from clinic_automation.domain.automations.triggers import TriggerEvaluator
from clinic_automation.models_automation import AutomationExecution


def scheduled(factory, clinic, at):
    return factory.automation(
        clinic,
        trigger_type="scheduled",
        trigger_config={"schedule": at.strftime("%Y-%m-%dT%H:%M:%SZ")},
    )


class TestScheduledTrigger:
    def test_due_inside_window(self, db, factory, now):
        automation = scheduled(factory, factory.clinic(), now + timedelta(minutes=3))

        decision = TriggerEvaluator(db).evaluate(automation, now)

        assert decision.due is True
        assert decision.window_key == f"scheduled:{(now + timedelta(minutes=3)).isoformat()}"

    def test_not_due_outside_window(self, db, factory, now):
        evaluator = TriggerEvaluator(db)
        clinic = factory.clinic()

        assert evaluator.evaluate(scheduled(factory, clinic, now + timedelta(minutes=5)), now).due is False
        assert evaluator.evaluate(scheduled(factory, clinic, now - timedelta(minutes=6)), now).due is False

    def test_evaluator_reports_due_twice_in_same_window(self, db, factory, now):
        """Evaluation is stateless; the execution trigger_key prevents the second run."""
        automation = scheduled(factory, factory.clinic(), now)
        evaluator = TriggerEvaluator(db)

        first = evaluator.evaluate(automation, now)
        second = evaluator.evaluate(automation, now + timedelta(minutes=2))

        assert first.due and second.due
        assert first.window_key == second.window_key

    def test_invalid_schedule_never_fires(self, db, factory, now):
        clinic = factory.clinic()
        missing = factory.automation(clinic, trigger_type="scheduled", trigger_config={})
        garbage = factory.automation(clinic, trigger_type="scheduled", trigger_config={"schedule": "amanhã"})
        evaluator = TriggerEvaluator(db)

        assert evaluator.evaluate(missing, now).due is False
        assert evaluator.evaluate(garbage, now).due is False

    def test_custom_tolerance(self, db, factory, now):
        automation = scheduled(factory, factory.clinic(), now + timedelta(minutes=8))

        decision = TriggerEvaluator(db, schedule_tolerance=timedelta(minutes=10)).evaluate(automation, now)

        assert decision.due is True


class TestEventTrigger:
    def event_automation(self, factory, clinic, event_type="patient_created"):
        return factory.automation(clinic, trigger_type="event", trigger_config={"event_type": event_type})

    def test_recent_patient_fires_with_patient_key(self, db, factory, now):
        clinic = factory.clinic()
        factory.patient(factory.contact(clinic, name="Antigo"), created_at=now - timedelta(minutes=30))
        newest = factory.patient(factory.contact(clinic, name="Novo"), created_at=now - timedelta(minutes=10))

        decision = TriggerEvaluator(db).evaluate(self.event_automation(factory, clinic), now)

        assert decision.due is True
        assert decision.window_key == f"patient_created:{newest.id}"

    def test_old_patients_do_not_fire(self, db, factory, now):
        clinic = factory.clinic()
        factory.patient(factory.contact(clinic), created_at=now - timedelta(minutes=61))

        assert TriggerEvaluator(db).evaluate(self.event_automation(factory, clinic), now).due is False

    def test_other_clinic_patients_ignored(self, db, factory, now):
        clinic = factory.clinic()
        other = factory.clinic(name="Outra")
        factory.patient(factory.contact(other), created_at=now - timedelta(minutes=5))

        assert TriggerEvaluator(db).evaluate(self.event_automation(factory, clinic), now).due is False

    def test_unsupported_event_never_fires(self, db, factory, now):
        clinic = factory.clinic()
        factory.patient(factory.contact(clinic), created_at=now - timedelta(minutes=5))

        decision = TriggerEvaluator(db).evaluate(
            self.event_automation(factory, clinic, event_type="appointment_created"), now
        )

        assert decision.due is False

    def test_manual_never_fires(self, db, factory, now):
        automation = factory.automation(factory.clinic(), trigger_type="manual")
        assert TriggerEvaluator(db).evaluate(automation, now).due is False


class TestAutomaticIdempotency:
    async def test_scheduled_occurrence_runs_once(self, db, factory, gateway, now):
        clinic = factory.clinic()
        factory.contact(clinic, name="Ana", phone="11911112222")
        automation = scheduled(factory, clinic, now)
        service = AutomationService(db, gateway)

        first = await service.execute_automatic_triggers(now)
        second = await service.execute_automatic_triggers(now + timedelta(minutes=2))

        assert [r["skipped"] for r in first] == [False]
        assert first[0]["success"] is True
        assert first[0]["triggerKey"] == f"{automation.id}:scheduled:{now.isoformat()}"
        assert [r["skipped"] for r in second] == [True]
        assert gateway.messages == ["Oi Ana"]
        assert db.query(AutomationExecution).count() == 1

    async def test_concurrent_claim_is_reported_as_skipped(self, db, factory, gateway, now, monkeypatch):
        clinic = factory.clinic()
        factory.contact(clinic, name="Ana", phone="11911112222")
        scheduled(factory, clinic, now)
        service = AutomationService(db, gateway)
        await service.execute_automatic_triggers(now)

        # Simulate a second worker that checked before the first one committed
        monkeypatch.setattr(service.repo, "trigger_key_exists", lambda db, key: False)
        results = await service.execute_automatic_triggers(now)

        assert results[0]["skipped"] is True
        assert results[0]["success"] is True
        assert db.query(AutomationExecution).count() == 1
        assert gateway.messages == ["Oi Ana"]

    async def test_integrity_error_after_start_is_a_failure(self, db, factory, gateway, now, monkeypatch):
        clinic = factory.clinic()
        factory.contact(clinic, name="Ana", phone="11911112222")
        scheduled(factory, clinic, now)
        service = AutomationService(db, gateway)

        def broken_lookup(*args, **kwargs):
            raise IntegrityError("INSERT INTO contacts", {}, Exception("constraint failed"))

        monkeypatch.setattr(service.recipient_filter, "find_recipients", broken_lookup)
        results = await service.execute_automatic_triggers(now)

        assert results[0]["skipped"] is False
        assert results[0]["success"] is False
        assert db.query(AutomationExecution).one().status == "failed"

    async def test_new_patient_event_fires_per_patient(self, db, factory, gateway, now):
        clinic = factory.clinic()
        factory.automation(clinic, trigger_type="event", trigger_config={"event_type": "patient_created"})
        factory.patient(factory.contact(clinic, name="Ana", phone="11911112222"), created_at=now - timedelta(minutes=5))
        service = AutomationService(db, gateway)

        await service.execute_automatic_triggers(now)
        await service.execute_automatic_triggers(now + timedelta(minutes=1))
        factory.patient(factory.contact(clinic, name="Bruno", phone="11933334444"), created_at=now)
        await service.execute_automatic_triggers(now + timedelta(minutes=2))

        assert db.query(AutomationExecution).count() == 2

    async def test_paused_and_manual_automations_ignored(self, db, factory, gateway, now):
        clinic = factory.clinic()
        factory.contact(clinic)
        factory.automation(clinic, trigger_type="manual")
        factory.automation(
            clinic,
            status="paused",
            trigger_type="scheduled",
            trigger_config={"schedule": now.isoformat()},
        )

        results = await AutomationService(db, gateway).execute_automatic_triggers(now)

        assert results == []
        assert gateway.calls == []
