from datetime import timedelta
from io import StringIO

from django.core.management import call_command
from django.test import TestCase, override_settings

from jobs.disclosure import get_job_view
from jobs.factories import T0, JobFlowMixin
from jobs.models import Job, JobBid, JobEvent, TimeoutReason
from jobs.services import counter_offer, respond_to_counter_offer, soft_lock_job
from jobs.services_timeouts import due_timeout_reason, sweep_timeouts


class PaymentDeadlineTests(JobFlowMixin, TestCase):
    def test_sweep_cancels_job_after_payment_deadline(self):
        job, _, _ = self._job_waiting_for_payment()

        transitioned = sweep_timeouts(now=T0 + timedelta(minutes=31))

        job.refresh_from_db()
        self.assertEqual(transitioned, 1)
        self.assertEqual(job.status, Job.JobStatus.CANCELLED)
        self.assertEqual(job.rejected_at, T0 + timedelta(minutes=31))
        self.assertIn(TimeoutReason.PAYMENT_DEADLINE_TIMEOUT, job.timeout_reasons)
        self.assertTrue(job.rejection_reason)
        self.assertEqual(job.termination_kind, "rejected")
        self.assertTrue(
            JobEvent.objects.filter(job=job, event_type=JobEvent.EventType.TIMED_OUT).exists()
        )

    def test_sweep_leaves_jobs_inside_deadline(self):
        job, _, _ = self._job_waiting_for_payment()

        self.assertEqual(sweep_timeouts(now=T0 + timedelta(minutes=29)), 0)
        self.assertEqual(sweep_timeouts(now=T0 + timedelta(minutes=30)), 0)

        job.refresh_from_db()
        self.assertEqual(job.status, Job.JobStatus.WAITING_FOR_PAYMENT)

    def test_sweep_is_idempotent(self):
        job, _, _ = self._job_waiting_for_payment()

        self.assertEqual(sweep_timeouts(now=T0 + timedelta(minutes=31)), 1)
        self.assertEqual(sweep_timeouts(now=T0 + timedelta(minutes=45)), 0)

        job.refresh_from_db()
        self.assertEqual(job.timeout_reasons, [TimeoutReason.PAYMENT_DEADLINE_TIMEOUT])
        self.assertEqual(job.rejected_at, T0 + timedelta(minutes=31))

    def test_read_applies_timeout_lazily(self):
        job, _, _ = self._job_waiting_for_payment()

        view = get_job_view(job_id=job.job_id, requester_role="dealer", now=T0 + timedelta(minutes=31))

        self.assertEqual(view["status"], Job.JobStatus.CANCELLED)
        self.assertEqual(view["timeout_reasons"], ["PAYMENT_DEADLINE_TIMEOUT"])
        self.assertTrue(view["repost"]["can_repost"])

    @override_settings(JOB_PAYMENT_DEADLINE_MINUTES=10)
    def test_payment_window_is_configurable(self):
        job, _, _ = self._job_waiting_for_payment()

        self.assertEqual(
            due_timeout_reason(job, now=T0 + timedelta(minutes=11)),
            TimeoutReason.PAYMENT_DEADLINE_TIMEOUT,
        )


class NegotiationAndSoftLockTimeoutTests(JobFlowMixin, TestCase):
    def setUp(self):
        self.job = self._make_job()
        self.t1 = self._make_technician(1)
        self.bid1 = self._bid(self.job, self.t1, "4500")

    def test_unanswered_counter_offer_times_out(self):
        counter_offer(
            job_id=self.job.job_id,
            bid_id=self.bid1.bid_id,
            amount="4200",
            dealer_id=self.job.dealer_id,
            now=T0,
        )

        self.assertEqual(sweep_timeouts(now=T0 + timedelta(minutes=4)), 0)
        self.assertEqual(sweep_timeouts(now=T0 + timedelta(minutes=6)), 1)

        self.job.refresh_from_db()
        self.assertEqual(self.job.status, Job.JobStatus.CANCELLED)
        self.assertEqual(self.job.timeout_reasons, [TimeoutReason.NEGOTIATION_TIMEOUT])
        self.assertFalse(
            JobBid.objects.filter(job=self.job, status__in=JobBid.OPEN_STATUSES).exists()
        )

    def test_answered_counter_offer_does_not_time_out(self):
        counter = counter_offer(
            job_id=self.job.job_id,
            bid_id=self.bid1.bid_id,
            amount="4200",
            dealer_id=self.job.dealer_id,
            now=T0,
        )
        respond_to_counter_offer(
            job_id=self.job.job_id,
            bid_id=counter.bid_id,
            technician_id=self.t1.technician_id,
            accept=True,
            now=T0 + timedelta(minutes=3),
        )

        self.assertEqual(sweep_timeouts(now=T0 + timedelta(minutes=6)), 0)
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, Job.JobStatus.WAITING_FOR_PAYMENT)

    def test_unconfirmed_soft_lock_times_out(self):
        t2 = self._make_technician(2)
        soft_lock_job(job_id=self.job.job_id, technician_id=t2.technician_id, now=T0)

        self.assertEqual(sweep_timeouts(now=T0 + timedelta(seconds=46)), 1)

        self.job.refresh_from_db()
        self.assertEqual(self.job.timeout_reasons, [TimeoutReason.SOFT_LOCK_TIMEOUT])
        self.assertEqual(JobBid.objects.get(pk=self.bid1.bid_id).status, JobBid.BidStatus.REJECTED)

    def test_cancelled_job_is_not_reevaluated(self):
        self.job.status = Job.JobStatus.CANCELLED
        self.job.save(update_fields=["status"])

        self.assertIsNone(due_timeout_reason(self.job, now=T0 + timedelta(days=1)))


class SweepTimeoutsCommandTests(JobFlowMixin, TestCase):
    def test_command_reports_transitions(self):
        job, _, _ = self._job_waiting_for_payment()
        out = StringIO()

        call_command(
            "sweep_timeouts",
            now=(T0 + timedelta(minutes=31)).isoformat(),
            stdout=out,
        )

        output = out.getvalue()
        self.assertIn("DUE TIMEOUT JOBS: 1", output)
        self.assertIn(f"JOB {job.job_id} RESULT: PAYMENT_DEADLINE_TIMEOUT", output)
        self.assertIn("TRANSITIONED: 1", output)
