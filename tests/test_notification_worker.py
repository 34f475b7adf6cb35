"""
Notification worker tests - due-time handling, idempotent delivery and bounded retries
"""

import json
import threading
import time
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
import redis

from carehealth.domain.notifications.service import NotificationScheduler
from carehealth.errors import NotFoundError, ValidationError
from carehealth.jobs import JOB_TYPE_REMINDER, NotificationJob
from carehealth.models import Appointment, LabResult, Patient, Prescription
from carehealth.workers.notification_worker import (
    DEFERRED,
    DELIVERED,
    DROPPED,
    FAILED,
    RETRIED,
    SKIPPED,
    NotificationWorker,
)

from .conftest import NOW, FakeNotifier

REMINDERS = "queues:appointment-reminders"
LAB_RESULTS = "queue:lab:results"
PHARMACY = "queue:pharmacy:notifications"


def make_worker(queue, notifier, session_factory, clock, queue_name=REMINDERS, **kwargs):
    kwargs.setdefault("not_due_sleep", 0)
    kwargs.setdefault("pop_timeout", 0.05)
    return NotificationWorker(
        queue,
        notifier,
        queue_name,
        session_factory=session_factory,
        clock=clock,
        **kwargs,
    )


def claim(queue, queue_name=REMINDERS):
    payload = queue.dequeue_blocking(queue_name, 0.1)
    assert payload is not None, f"expected a job on {queue_name}"
    return payload


def pending(queue, queue_name=REMINDERS):
    return [NotificationJob.decode(p) for p in queue.backend.scan(queue_name)]


@pytest.fixture
def worker(queue, notifier, session_factory, clock):
    return make_worker(queue, notifier, session_factory, clock)


@pytest.fixture
def appointment(booking, doctor, patient):
    # Reminder due at 2030-01-02 10:00
    return booking.create_appointment(
        doctor.id, patient.id, "2030-01-03T10:00:00Z", "2030-01-03T10:30:00Z"
    )


def reload(session_factory, model, record_id):
    session = session_factory()
    try:
        return session.get(model, record_id)
    finally:
        session.close()


class TestReminderDelivery:
    def test_job_not_yet_due_is_requeued_unchanged(self, worker, queue, notifier, appointment):
        outcome = worker.process_payload(claim(queue))

        assert outcome == DEFERRED
        jobs = pending(queue)
        assert len(jobs) == 1
        assert jobs[0].subject_id == appointment.id
        assert jobs[0].attempts == 0
        assert notifier.sent == []

    def test_due_job_is_delivered_and_marked(
        self, worker, queue, notifier, clock, appointment, session_factory, patient
    ):
        clock.set(datetime(2030, 1, 2, 10, 0))

        outcome = worker.process_payload(claim(queue))

        assert outcome == DELIVERED
        assert len(notifier.sent) == 1
        message = notifier.sent[0]
        assert message["to"] == patient.email
        assert message["subject"] == "Appointment Reminder"
        assert "Gregory House" in message["body"]
        assert "Thursday, 03 January 2030 at 10:00 UTC" in message["body"]

        stored = reload(session_factory, Appointment, appointment.id)
        assert stored.reminder_sent is True
        assert stored.reminder_sent_at == datetime(2030, 1, 2, 10, 0)

    def test_duplicate_jobs_notify_once(self, worker, queue, notifier, clock, appointment):
        payload = claim(queue)
        clock.set(datetime(2030, 1, 2, 10, 0))

        assert worker.process_payload(payload) == DELIVERED
        assert worker.process_payload(payload) == SKIPPED
        assert len(notifier.sent) == 1

    def test_two_workers_sharing_a_payload_deliver_once(
        self, queue, session_factory, clock, appointment
    ):
        clock.set(datetime(2030, 1, 2, 10, 0))
        payload = claim(queue)
        notifier = FakeNotifier()
        workers = [make_worker(queue, notifier, session_factory, clock) for _ in range(2)]

        outcomes = [w.process_payload(payload) for w in workers]

        assert sorted(outcomes) == [DELIVERED, SKIPPED]
        assert len(notifier.sent) == 1

    def test_cancel_before_fire_removes_job(self, booking, worker, queue, notifier, appointment):
        booking.cancel_appointment(appointment.id)

        assert queue.length(REMINDERS) == 0
        assert notifier.sent == []

    def test_cancel_after_claim_skips_send(
        self, booking, worker, queue, notifier, clock, appointment
    ):
        payload = claim(queue)
        booking.cancel_appointment(appointment.id)
        clock.set(datetime(2030, 1, 2, 10, 0))

        assert worker.process_payload(payload) == SKIPPED
        assert notifier.sent == []

    def test_completed_appointment_skips_reminder(
        self, booking, worker, queue, notifier, clock, appointment
    ):
        booking.update_appointment(appointment.id, status="completed")
        clock.set(datetime(2030, 1, 2, 10, 0))

        assert worker.process_payload(claim(queue)) == SKIPPED
        assert notifier.sent == []

    def test_stale_job_from_before_reschedule_is_skipped(
        self, booking, worker, queue, notifier, clock, doctor, patient
    ):
        appt = booking.create_appointment(doctor.id, patient.id, NOW + timedelta(hours=2))
        stale = claim(queue)
        booking.update_appointment(appt.id, start_at="2030-01-05T10:00:00Z")

        assert worker.process_payload(stale) == SKIPPED
        assert notifier.sent == []
        assert [j.send_at for j in pending(queue)] == [datetime(2030, 1, 4, 10, 0)]

    def test_sub_millisecond_start_is_not_mistaken_for_stale(
        self, booking, worker, queue, notifier, clock, doctor, patient
    ):
        booking.create_appointment(doctor.id, patient.id, "2030-01-03T10:00:00.000500Z")
        clock.set(datetime(2030, 1, 2, 10, 0))

        assert worker.process_payload(claim(queue)) == DELIVERED
        assert len(notifier.sent) == 1

    def test_missing_appointment_is_skipped(self, worker, notifier):
        job = NotificationJob(type=JOB_TYPE_REMINDER, subject_id="gone", send_at=NOW)

        assert worker.process_job(job) == SKIPPED
        assert notifier.sent == []

    def test_patient_without_email_is_dropped(
        self, booking, worker, queue, notifier, add_record, doctor
    ):
        anonymous = add_record(Patient(first_name="No", last_name="Email"))
        booking.create_appointment(doctor.id, anonymous.id, NOW + timedelta(hours=1))

        assert worker.process_payload(claim(queue)) == DROPPED
        assert notifier.sent == []


class TestRetries:
    def test_transport_failure_is_retried_exactly_three_times(
        self, queue, session_factory, clock, appointment
    ):
        notifier = FakeNotifier(fail_times=-1)
        worker = make_worker(queue, notifier, session_factory, clock)
        clock.set(datetime(2030, 1, 2, 10, 0))

        first = worker.process_payload(claim(queue))
        assert first == RETRIED
        assert [j.attempts for j in pending(queue)] == [1]

        second = worker.process_payload(claim(queue))
        assert second == RETRIED
        assert [j.attempts for j in pending(queue)] == [2]

        third = worker.process_payload(claim(queue))
        assert third == DROPPED
        assert queue.length(REMINDERS) == 0
        assert notifier.calls == 3

        stored = reload(session_factory, Appointment, appointment.id)
        assert stored.reminder_sent is False

    def test_recovers_after_transient_failure(self, queue, session_factory, clock, appointment):
        notifier = FakeNotifier(fail_times=1)
        worker = make_worker(queue, notifier, session_factory, clock)
        clock.set(datetime(2030, 1, 2, 10, 0))

        assert worker.process_payload(claim(queue)) == RETRIED
        assert worker.process_payload(claim(queue)) == DELIVERED
        assert len(notifier.sent) == 1

    def test_unexpected_errors_are_contained(self, queue, session_factory, clock, appointment):
        notifier = FakeNotifier(fail_times=-1, error=RuntimeError("template exploded"))
        worker = make_worker(queue, notifier, session_factory, clock)
        clock.set(datetime(2030, 1, 2, 10, 0))

        assert worker.process_payload(claim(queue)) == FAILED
        assert queue.length(REMINDERS) == 0


class TestMalformedPayloads:
    @pytest.mark.parametrize(
        "payload",
        [
            "{broken",
            json.dumps({"type": "carrier-pigeon", "subjectId": "x", "sendAt": 0}),
            json.dumps({"type": "reminder", "sendAt": 0}),
            json.dumps({"type": "reminder", "subjectId": "x"}),
        ],
    )
    def test_malformed_payload_is_dropped(self, worker, queue, notifier, payload):
        assert worker.process_payload(payload) == DROPPED
        assert queue.length(REMINDERS) == 0
        assert notifier.calls == 0


class TestLabResultNotifications:
    @pytest.fixture
    def result(self, add_record, doctor, patient):
        return add_record(
            LabResult(order_id="ord-42", patient_id=patient.id, doctor_id=doctor.id, status="uploaded")
        )

    @pytest.fixture
    def lab_worker(self, queue, notifier, session_factory, clock):
        return make_worker(queue, notifier, session_factory, clock, queue_name=LAB_RESULTS)

    def test_scheduler_enqueues_immediate_job(self, db, queue, clock, result, patient, doctor):
        job = NotificationScheduler(db, queue, clock=clock).lab_result_uploaded(result.id)

        assert job.send_at == NOW
        queued = pending(queue, LAB_RESULTS)
        assert len(queued) == 1
        assert queued[0].type == "lab-result"
        assert queued[0].order_id == "ord-42"
        assert queued[0].patient_id == patient.id
        assert queued[0].doctor_id == doctor.id

    def test_notifies_patient_and_doctor_once(
        self, db, queue, clock, notifier, lab_worker, result, session_factory, patient, doctor
    ):
        scheduler = NotificationScheduler(db, queue, clock=clock)
        scheduler.lab_result_uploaded(result.id)
        scheduler.lab_result_uploaded(result.id)

        assert lab_worker.process_payload(claim(queue, LAB_RESULTS)) == DELIVERED
        assert lab_worker.process_payload(claim(queue, LAB_RESULTS)) == SKIPPED

        assert [m["to"] for m in notifier.sent] == [patient.email, doctor.email]
        assert notifier.sent[0]["subject"] == "Lab Results Available"
        assert "ord-42" in notifier.sent[1]["body"]
        assert reload(session_factory, LabResult, result.id).notified is True

    def test_pending_result_cannot_be_announced(self, db, queue, clock, add_record, patient):
        pending_result = add_record(LabResult(order_id="ord-1", patient_id=patient.id))

        with pytest.raises(ValidationError):
            NotificationScheduler(db, queue, clock=clock).lab_result_uploaded(pending_result.id)
        assert queue.length(LAB_RESULTS) == 0

    def test_unknown_result(self, db, queue, clock):
        with pytest.raises(NotFoundError):
            NotificationScheduler(db, queue, clock=clock).lab_result_uploaded("missing")


class TestPrescriptionNotifications:
    @pytest.fixture
    def prescription(self, add_record, patient, pharmacy):
        return add_record(
            Prescription(patient_id=patient.id, pharmacy_id=pharmacy.id, status="dispensed")
        )

    @pytest.fixture
    def pharmacy_worker(self, queue, notifier, session_factory, clock):
        return make_worker(queue, notifier, session_factory, clock, queue_name=PHARMACY)

    def test_status_notification_delivered_once(
        self, db, queue, clock, notifier, pharmacy_worker, prescription, session_factory, patient
    ):
        scheduler = NotificationScheduler(db, queue, clock=clock)
        job = scheduler.prescription_status_changed(prescription.id)
        assert job.status == "dispensed"
        scheduler.prescription_status_changed(prescription.id)

        assert pharmacy_worker.process_payload(claim(queue, PHARMACY)) == DELIVERED
        assert pharmacy_worker.process_payload(claim(queue, PHARMACY)) == SKIPPED

        assert len(notifier.sent) == 1
        assert notifier.sent[0]["to"] == patient.email
        assert notifier.sent[0]["subject"] == "Your Prescription is Ready"
        assert "Main Street Pharmacy" in notifier.sent[0]["body"]
        stored = reload(session_factory, Prescription, prescription.id)
        assert stored.notified_status == "dispensed"

    def test_superseded_status_is_skipped(
        self, db, queue, clock, notifier, pharmacy_worker, prescription
    ):
        NotificationScheduler(db, queue, clock=clock).prescription_status_changed(prescription.id)
        prescription.status = "unavailable"
        db.commit()

        assert pharmacy_worker.process_payload(claim(queue, PHARMACY)) == SKIPPED
        assert notifier.sent == []

    def test_new_status_is_notified_again(
        self, db, queue, clock, notifier, pharmacy_worker, prescription
    ):
        scheduler = NotificationScheduler(db, queue, clock=clock)
        scheduler.prescription_status_changed(prescription.id)
        pharmacy_worker.process_payload(claim(queue, PHARMACY))

        prescription.status = "unavailable"
        db.commit()
        scheduler.prescription_status_changed(prescription.id)

        assert pharmacy_worker.process_payload(claim(queue, PHARMACY)) == DELIVERED
        assert [m["subject"] for m in notifier.sent] == [
            "Your Prescription is Ready",
            "Prescription Unavailable",
        ]

    def test_prescription_without_pharmacy_is_not_queued(self, db, queue, clock, add_record, patient):
        draft = add_record(Prescription(patient_id=patient.id, status="draft"))

        assert NotificationScheduler(db, queue, clock=clock).prescription_status_changed(draft.id) is None
        assert queue.length(PHARMACY) == 0


class TestWorkerLoop:
    def test_run_delivers_until_stopped(self, queue, notifier, session_factory, clock, booking, doctor, patient):
        booking.create_appointment(doctor.id, patient.id, NOW + timedelta(hours=1))
        worker = make_worker(queue, notifier, session_factory, clock)
        thread = threading.Thread(target=worker.run)
        thread.start()

        deadline = time.monotonic() + 5
        while not notifier.sent and time.monotonic() < deadline:
            time.sleep(0.01)
        worker.stop()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert len(notifier.sent) == 1
        assert worker.stopped is True

    def test_backend_errors_do_not_crash_the_loop(self, notifier, session_factory, clock):
        queue = MagicMock()
        worker = make_worker(queue, notifier, session_factory, clock)

        def failing_pop(*_args):
            worker.stop()
            raise redis.ConnectionError("connection reset")

        queue.dequeue_blocking.side_effect = failing_pop

        worker.run()

        queue.dequeue_blocking.assert_called_once()
        assert notifier.calls == 0
