from datetime import timedelta

from django.db import IntegrityError, transaction
from django.test import TestCase

from jobs.errors import JobConflict, JobValidationError
from jobs.events import BidAccepted, job_event
from jobs.factories import T0, JobFlowMixin
from jobs.models import Job, JobBid, JobEvent
from jobs.services import accept_bid, place_bid


class BidAcceptanceTests(JobFlowMixin, TestCase):
    def setUp(self):
        self.job = self._make_job()
        self.t1 = self._make_technician(1)
        self.t2 = self._make_technician(2)
        self.bid1 = self._bid(self.job, self.t1, "4500")
        self.bid2 = self._bid(self.job, self.t2, "4800")

    def test_accept_moves_job_to_waiting_for_payment(self):
        result = accept_bid(
            job_id=self.job.job_id,
            bid_id=self.bid1.bid_id,
            dealer_id=self.job.dealer_id,
            now=T0 + timedelta(minutes=1),
        )

        self.job.refresh_from_db()
        self.assertEqual(result.job_status, Job.JobStatus.WAITING_FOR_PAYMENT)
        self.assertEqual(self.job.status, Job.JobStatus.WAITING_FOR_PAYMENT)
        self.assertEqual(str(self.job.final_price), "4500.00")
        self.assertEqual(self.job.payment_requested_at, T0 + timedelta(minutes=1))
        self.assertFalse(self.job.payment_locked)
        self.assertIsNone(self.job.assigned_technician_id)

        self.assertEqual(JobBid.objects.get(pk=self.bid1.bid_id).status, JobBid.BidStatus.ACCEPTED)
        self.assertEqual(JobBid.objects.get(pk=self.bid2.bid_id).status, JobBid.BidStatus.REJECTED)
        self.assertTrue(
            JobEvent.objects.filter(job=self.job, event_type=JobEvent.EventType.BID_ACCEPTED).exists()
        )

    def test_second_acceptance_is_rejected_with_conflict(self):
        accept_bid(job_id=self.job.job_id, bid_id=self.bid1.bid_id, dealer_id=self.job.dealer_id, now=T0)

        with self.assertRaises(JobConflict) as ctx:
            accept_bid(job_id=self.job.job_id, bid_id=self.bid2.bid_id, dealer_id=self.job.dealer_id, now=T0)

        self.assertEqual(ctx.exception.code, "JOB_NOT_PENDING")
        self.assertEqual(
            JobBid.objects.filter(job=self.job, status=JobBid.BidStatus.ACCEPTED).count(),
            1,
        )

    def test_existing_accepted_bid_blocks_acceptance(self):
        JobBid.objects.filter(pk=self.bid2.bid_id).update(status=JobBid.BidStatus.ACCEPTED)

        with self.assertRaises(JobConflict) as ctx:
            accept_bid(job_id=self.job.job_id, bid_id=self.bid1.bid_id, dealer_id=self.job.dealer_id, now=T0)

        self.assertEqual(ctx.exception.code, "BID_ALREADY_ACCEPTED")
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, Job.JobStatus.PENDING)

    def test_database_allows_only_one_accepted_bid_per_job(self):
        JobBid.objects.filter(pk=self.bid1.bid_id).update(status=JobBid.BidStatus.ACCEPTED)

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                JobBid.objects.filter(pk=self.bid2.bid_id).update(status=JobBid.BidStatus.ACCEPTED)

    def test_rejected_bid_cannot_be_accepted(self):
        JobBid.objects.filter(pk=self.bid1.bid_id).update(status=JobBid.BidStatus.REJECTED)

        with self.assertRaises(JobConflict) as ctx:
            accept_bid(job_id=self.job.job_id, bid_id=self.bid1.bid_id, dealer_id=self.job.dealer_id, now=T0)

        self.assertEqual(ctx.exception.code, "BID_NOT_PENDING")

    def test_other_dealer_cannot_accept(self):
        other = self._make_dealer("other")

        with self.assertRaises(PermissionError):
            accept_bid(job_id=self.job.job_id, bid_id=self.bid1.bid_id, dealer_id=other.dealer_id, now=T0)

        self.job.refresh_from_db()
        self.assertEqual(self.job.status, Job.JobStatus.PENDING)

    def test_bid_accepted_event_is_sent_after_commit(self):
        received = []

        def _collect(sender, event, **kwargs):
            received.append(event)

        job_event.connect(_collect)
        self.addCleanup(job_event.disconnect, _collect)

        with self.captureOnCommitCallbacks(execute=True):
            accept_bid(job_id=self.job.job_id, bid_id=self.bid1.bid_id, dealer_id=self.job.dealer_id, now=T0)

        accepted = [e for e in received if isinstance(e, BidAccepted)]
        self.assertEqual(len(accepted), 1)
        self.assertEqual(accepted[0].technician_id, self.t1.technician_id)


class PlaceBidTests(JobFlowMixin, TestCase):
    def test_bid_records_round_one_and_distance(self):
        job = self._make_job()
        tech = self._make_technician(1)

        result = self._bid(job, tech, "4200")

        bid = JobBid.objects.get(pk=result.bid_id)
        self.assertEqual(bid.round_number, 1)
        self.assertFalse(bid.is_counter_offer)
        self.assertEqual(bid.offered_by, JobBid.OfferedBy.TECHNICIAN)
        self.assertIsNotNone(bid.distance_km)
        self.assertGreater(bid.distance_km, 0)

    def test_one_open_bid_per_technician(self):
        job = self._make_job()
        tech = self._make_technician(1)
        self._bid(job, tech, "4200")

        with self.assertRaises(JobConflict) as ctx:
            self._bid(job, tech, "4100")

        self.assertEqual(ctx.exception.code, "BID_ALREADY_PENDING")

    def test_non_positive_price_is_rejected(self):
        job = self._make_job()
        tech = self._make_technician(1)

        for price in ("0", "-10", "abc"):
            with self.assertRaises(JobValidationError) as ctx:
                place_bid(job_id=job.job_id, technician_id=tech.technician_id, offered_price=price, now=T0)
            self.assertEqual(ctx.exception.code, "INVALID_BID_AMOUNT")

        self.assertFalse(JobBid.objects.filter(job=job).exists())

    def test_job_number_is_assigned_on_creation(self):
        job = self._make_job()
        job.refresh_from_db()
        self.assertEqual(job.job_number, f"JOB-{job.job_id:06d}")
