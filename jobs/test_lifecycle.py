from django.test import SimpleTestCase, TestCase

from jobs.errors import JobConflict
from jobs.factories import T0, JobFlowMixin
from jobs.models import Job
from jobs.services import cancel_job, complete_job, raise_dispute, start_job
from jobs.transitions import TERMINAL_STATUSES, can_transition
from payments.services import lock_payment
from warranties.models import WarrantyRecord

S = Job.JobStatus


class TransitionTableTests(SimpleTestCase):
    def test_terminal_states(self):
        self.assertEqual(TERMINAL_STATUSES, {S.COMPLETED, S.CANCELLED, S.DISPUTED})

    def test_payment_gates_assignment(self):
        self.assertTrue(can_transition(S.WAITING_FOR_PAYMENT, S.ASSIGNED))
        self.assertFalse(can_transition(S.PENDING, S.ASSIGNED))
        self.assertFalse(can_transition(S.APPROVED, S.ASSIGNED))

    def test_any_open_state_can_be_disputed(self):
        for status in (S.PENDING, S.APPROVED, S.WAITING_FOR_PAYMENT, S.ASSIGNED, S.IN_PROGRESS):
            self.assertTrue(can_transition(status, S.DISPUTED))

    def test_assigned_job_cannot_be_cancelled(self):
        self.assertFalse(can_transition(S.ASSIGNED, S.CANCELLED))


class JobLifecycleTests(JobFlowMixin, TestCase):
    def _assigned_job(self):
        job, tech, _ = self._job_waiting_for_payment(price="4500.00")
        lock_payment(
            job_id=job.job_id,
            total_amount="4500.00",
            payment_method="CASH",
            external_order_id="",
            external_payment_id="cash-1",
            now=T0,
        )
        job.refresh_from_db()
        return job, tech

    def test_start_and_complete_opens_warranty(self):
        job, tech = self._assigned_job()

        start_job(job_id=job.job_id, technician_id=tech.technician_id, now=T0)
        result = complete_job(job_id=job.job_id, technician_id=tech.technician_id, now=T0)

        job.refresh_from_db()
        self.assertEqual(result.job_status, S.COMPLETED)
        self.assertEqual(job.completed_at, T0)
        warranty = WarrantyRecord.objects.get(job=job)
        self.assertEqual(warranty.status, WarrantyRecord.Status.ACTIVE)
        self.assertEqual(warranty.warranty_days, 30)

    def test_only_assigned_technician_can_start(self):
        job, _ = self._assigned_job()
        stranger = self._make_technician(5)

        with self.assertRaises(PermissionError):
            start_job(job_id=job.job_id, technician_id=stranger.technician_id, now=T0)

    def test_complete_requires_in_progress(self):
        job, tech = self._assigned_job()

        with self.assertRaises(JobConflict) as ctx:
            complete_job(job_id=job.job_id, technician_id=tech.technician_id, now=T0)

        self.assertEqual(ctx.exception.code, "INVALID_TRANSITION")
        self.assertFalse(WarrantyRecord.objects.filter(job=job).exists())

    def test_dealer_cancellation_keeps_rejected_at_empty(self):
        job = self._make_job()

        cancel_job(job_id=job.job_id, dealer_id=job.dealer_id, reason="no longer needed", now=T0)

        job.refresh_from_db()
        self.assertEqual(job.status, S.CANCELLED)
        self.assertIsNone(job.rejected_at)
        self.assertFalse(job.is_permanently_rejected)
        self.assertEqual(job.cancellation_reason, "no longer needed")

    def test_assigned_job_cannot_be_cancelled(self):
        job, _ = self._assigned_job()

        with self.assertRaises(JobConflict) as ctx:
            cancel_job(job_id=job.job_id, dealer_id=job.dealer_id, now=T0)

        self.assertEqual(ctx.exception.code, "INVALID_TRANSITION")

    def test_dispute_is_a_flag_on_open_jobs(self):
        job, _ = self._assigned_job()

        raise_dispute(job_id=job.job_id, reason="work not started", now=T0)

        job.refresh_from_db()
        self.assertEqual(job.status, S.DISPUTED)
        self.assertEqual(job.dispute_reason, "work not started")

        with self.assertRaises(JobConflict):
            raise_dispute(job_id=job.job_id, now=T0)
