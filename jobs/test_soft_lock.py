from datetime import timedelta

from django.test import TestCase

from jobs.errors import JobConflict
from jobs.factories import T0, JobFlowMixin
from jobs.models import Job, JobBid, TimeoutReason
from jobs.services import confirm_soft_lock, reject_bid, soft_lock_job


class SoftLockTests(JobFlowMixin, TestCase):
    def setUp(self):
        self.job = self._make_job(estimated_cost="5000.00")
        self.t1 = self._make_technician(1)
        self.t2 = self._make_technician(2)

    def _lock(self, technician, *, now=T0):
        return soft_lock_job(job_id=self.job.job_id, technician_id=technician.technician_id, now=now)

    def test_soft_lock_creates_bid_at_estimated_cost(self):
        result = self._lock(self.t1)

        self.job.refresh_from_db()
        bid = JobBid.objects.get(pk=result.bid_id)
        self.assertEqual(self.job.status, Job.JobStatus.PENDING)
        self.assertEqual(self.job.soft_locked_at, T0)
        self.assertEqual(self.job.soft_locked_by_id, self.t1.technician_id)
        self.assertEqual(str(bid.offered_price), "5000.00")
        self.assertEqual(result.expires_at, T0 + timedelta(seconds=45))

    def test_other_technician_blocked_while_lock_is_live(self):
        self._lock(self.t1)

        with self.assertRaises(JobConflict) as ctx:
            self._lock(self.t2, now=T0 + timedelta(seconds=10))

        self.assertEqual(ctx.exception.code, "SOFT_LOCK_ACTIVE")

    def test_same_technician_gets_existing_lock(self):
        first = self._lock(self.t1)
        again = self._lock(self.t1, now=T0 + timedelta(seconds=5))

        self.assertEqual(first.bid_id, again.bid_id)
        self.assertEqual(JobBid.objects.filter(job=self.job).count(), 1)

    def test_dealer_confirms_inside_window(self):
        self._lock(self.t1)

        result = confirm_soft_lock(
            job_id=self.job.job_id,
            dealer_id=self.job.dealer_id,
            now=T0 + timedelta(seconds=45),
        )

        self.job.refresh_from_db()
        self.assertEqual(JobBid.objects.get(pk=result.bid_id).technician_id, self.t1.technician_id)
        self.assertEqual(self.job.status, Job.JobStatus.WAITING_FOR_PAYMENT)
        self.assertEqual(str(self.job.final_price), "5000.00")
        self.assertIsNone(self.job.soft_locked_at)

    def test_late_confirmation_fails_and_job_is_rejected(self):
        self._lock(self.t1)

        with self.assertRaises(JobConflict) as ctx:
            confirm_soft_lock(
                job_id=self.job.job_id,
                dealer_id=self.job.dealer_id,
                now=T0 + timedelta(seconds=46),
            )

        self.assertEqual(ctx.exception.code, "SOFT_LOCK_EXPIRED")
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, Job.JobStatus.CANCELLED)
        self.assertEqual(self.job.rejected_at, T0 + timedelta(seconds=46))
        self.assertEqual(self.job.timeout_reasons, [TimeoutReason.SOFT_LOCK_TIMEOUT])
        self.assertTrue(self.job.is_permanently_rejected)
        self.assertFalse(
            JobBid.objects.filter(job=self.job, status=JobBid.BidStatus.PENDING).exists()
        )

    def test_confirm_without_lock(self):
        with self.assertRaises(JobConflict) as ctx:
            confirm_soft_lock(job_id=self.job.job_id, dealer_id=self.job.dealer_id, now=T0)

        self.assertEqual(ctx.exception.code, "NO_SOFT_LOCK")

    def test_rejecting_the_locked_bid_releases_the_lock(self):
        result = self._lock(self.t1)

        reject_bid(
            job_id=self.job.job_id,
            bid_id=result.bid_id,
            dealer_id=self.job.dealer_id,
            now=T0 + timedelta(seconds=5),
        )

        self.job.refresh_from_db()
        self.assertIsNone(self.job.soft_locked_at)
        self.assertEqual(self.job.status, Job.JobStatus.PENDING)
        self._lock(self.t2, now=T0 + timedelta(seconds=6))
