from datetime import timedelta

from django.db.models import Q
from django.test import TestCase

from jobs.disclosure import get_job_view
from jobs.errors import JobConflict, JobPolicyError
from jobs.factories import T0, JobFlowMixin
from jobs.models import Job, TimeoutReason
from jobs.services import cancel_job, soft_lock_job
from jobs.services_repost import repost_job
from jobs.services_timeouts import sweep_timeouts

LATER = T0 + timedelta(hours=1)


class RepostPolicyTests(JobFlowMixin, TestCase):
    def _timed_out_job(self):
        job, _, _ = self._job_waiting_for_payment()
        sweep_timeouts(now=T0 + timedelta(minutes=31))
        job.refresh_from_db()
        return job

    def test_repost_creates_fresh_pending_job(self):
        source = self._timed_out_job()

        result = repost_job(job_id=source.job_id, dealer_id=source.dealer_id, now=LATER)

        new_job = Job.objects.get(pk=result.job_id)
        source.refresh_from_db()
        self.assertEqual(new_job.status, Job.JobStatus.PENDING)
        self.assertEqual(new_job.negotiation_rounds, 0)
        self.assertEqual(new_job.reposted_from_id, source.job_id)
        self.assertEqual(new_job.title, source.title)
        self.assertEqual(new_job.estimated_cost, source.estimated_cost)
        self.assertIsNone(new_job.final_price)
        self.assertIsNone(new_job.rejected_at)
        self.assertFalse(new_job.bids.exists())
        self.assertEqual(new_job.repost_count, 1)
        self.assertEqual(source.repost_count, 1)
        self.assertEqual(new_job.timeout_reasons, [TimeoutReason.PAYMENT_DEADLINE_TIMEOUT])
        self.assertEqual(result.reposts_remaining, 2)

    def test_source_can_be_reposted_only_once(self):
        source = self._timed_out_job()
        first = repost_job(job_id=source.job_id, dealer_id=source.dealer_id, now=LATER)

        with self.assertRaises(JobConflict) as ctx:
            repost_job(job_id=source.job_id, dealer_id=source.dealer_id, now=LATER)

        self.assertEqual(ctx.exception.code, "JOB_ALREADY_REPOSTED")
        source.refresh_from_db()
        self.assertEqual(source.repost_count, 1)
        self.assertEqual(list(Job.objects.filter(reposted_from=source).values_list("pk", flat=True)), [first.job_id])

        view = get_job_view(job_id=source.job_id, requester_role="dealer", now=LATER)
        self.assertFalse(view["repost"]["can_repost"])
        self.assertEqual(view["repost"]["remaining"], 2)

    def test_lineage_cannot_branch_past_the_limit(self):
        root = self._timed_out_job()
        tech = self._make_technician(9)
        now = LATER
        reposted = 0

        # Keep trying every rejected job in the lineage, old sources included.
        for _ in range(6):
            lineage = list(Job.objects.filter(Q(pk=root.pk) | Q(lineage_root=root)).order_by("job_id"))
            for job in lineage:
                try:
                    result = repost_job(job_id=job.job_id, dealer_id=root.dealer_id, now=now)
                except (JobConflict, JobPolicyError):
                    continue
                reposted += 1
                soft_lock_job(job_id=result.job_id, technician_id=tech.technician_id, now=now)
            now = now + timedelta(minutes=1)
            sweep_timeouts(now=now)

        root.refresh_from_db()
        self.assertEqual(reposted, 3)
        self.assertEqual(root.repost_count, 3)
        self.assertEqual(Job.objects.filter(lineage_root=root).count(), 3)
        for job in Job.objects.filter(Q(pk=root.pk) | Q(lineage_root=root)):
            self.assertLessEqual(job.reposts.count(), 1)

    def test_limit_holds_along_a_repost_chain(self):
        job = self._timed_out_job()
        dealer_id = job.dealer_id
        tech = self._make_technician(9)
        now = LATER

        for expected in (1, 2, 3):
            result = repost_job(job_id=job.job_id, dealer_id=dealer_id, now=now)
            self.assertEqual(result.repost_count, expected)
            job = Job.objects.get(pk=result.job_id)
            soft_lock_job(job_id=job.job_id, technician_id=tech.technician_id, now=now)
            now = now + timedelta(minutes=1)
            sweep_timeouts(now=now)
            job.refresh_from_db()
            self.assertTrue(job.is_permanently_rejected)

        with self.assertRaises(JobPolicyError) as ctx:
            repost_job(job_id=job.job_id, dealer_id=dealer_id, now=now)
        self.assertEqual(ctx.exception.code, "REPOST_LIMIT_EXCEEDED")

        # Reasons from every attempt travel with the lineage.
        self.assertEqual(
            job.timeout_reasons,
            [TimeoutReason.PAYMENT_DEADLINE_TIMEOUT, TimeoutReason.SOFT_LOCK_TIMEOUT],
        )

    def test_manual_cancellation_is_not_repostable(self):
        job = self._make_job()
        cancel_job(job_id=job.job_id, dealer_id=job.dealer_id, reason="changed plans", now=T0)

        with self.assertRaises(JobPolicyError) as ctx:
            repost_job(job_id=job.job_id, dealer_id=job.dealer_id, now=LATER)

        self.assertEqual(ctx.exception.code, "JOB_NOT_REPOSTABLE")
        job.refresh_from_db()
        self.assertEqual(job.termination_kind, "cancelled")

    def test_open_job_is_not_repostable(self):
        job = self._make_job()

        with self.assertRaises(JobPolicyError) as ctx:
            repost_job(job_id=job.job_id, dealer_id=job.dealer_id, now=T0)

        self.assertEqual(ctx.exception.code, "JOB_NOT_REPOSTABLE")

    def test_expired_but_unswept_job_is_repostable(self):
        job, _, _ = self._job_waiting_for_payment()

        result = repost_job(job_id=job.job_id, dealer_id=job.dealer_id, now=T0 + timedelta(minutes=40))

        job.refresh_from_db()
        self.assertTrue(job.is_permanently_rejected)
        self.assertEqual(result.source_job_id, job.job_id)

    def test_other_dealer_cannot_repost(self):
        job = self._timed_out_job()
        other = self._make_dealer()

        with self.assertRaises(PermissionError):
            repost_job(job_id=job.job_id, dealer_id=other.dealer_id, now=LATER)
