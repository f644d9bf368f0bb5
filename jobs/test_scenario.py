from datetime import timedelta

from django.core import mail
from django.test import TestCase

from jobs.disclosure import get_job_view
from jobs.factories import T0, JobFlowMixin
from jobs.models import Job, JobBid
from jobs.services import accept_bid, counter_offer
from payments.models import PaymentTransaction
from payments.services import lock_payment


class DealerNegotiationScenarioTests(JobFlowMixin, TestCase):
    def test_counter_accept_and_pay(self):
        job = self._make_job(estimated_cost="5000")
        t1 = self._make_technician(1)
        t2 = self._make_technician(2)
        bid_t1 = self._bid(job, t1, "4500")
        bid_t2 = self._bid(job, t2, "4800")

        counter = counter_offer(
            job_id=job.job_id,
            bid_id=bid_t1.bid_id,
            amount="4200",
            dealer_id=job.dealer_id,
            now=T0 + timedelta(minutes=1),
        )
        self.assertEqual(counter.round_number, 2)

        accept_bid(
            job_id=job.job_id,
            bid_id=counter.bid_id,
            dealer_id=job.dealer_id,
            now=T0 + timedelta(minutes=2),
        )

        job.refresh_from_db()
        self.assertEqual(job.status, Job.JobStatus.WAITING_FOR_PAYMENT)
        self.assertEqual(str(job.final_price), "4200.00")
        self.assertEqual(JobBid.objects.get(pk=bid_t2.bid_id).status, JobBid.BidStatus.REJECTED)

        with self.captureOnCommitCallbacks(execute=True):
            first = lock_payment(
                job_id=job.job_id,
                total_amount="4200",
                payment_method="ONLINE",
                external_order_id="order_1",
                external_payment_id="pay_1",
                now=T0 + timedelta(minutes=10),
            )
        sent_after_first = len(mail.outbox)

        job.refresh_from_db()
        self.assertFalse(first.already_processed)
        self.assertTrue(job.payment_locked)
        self.assertEqual(job.status, Job.JobStatus.ASSIGNED)
        self.assertEqual(job.assigned_technician_id, t1.technician_id)
        self.assertEqual(sent_after_first, 2)

        view = get_job_view(job_id=job.job_id, requester_role="customer", now=T0 + timedelta(minutes=11))
        self.assertEqual(view["technician"]["full_name"], t1.full_name)

        with self.captureOnCommitCallbacks(execute=True):
            again = lock_payment(
                job_id=job.job_id,
                total_amount="4200",
                payment_method="ONLINE",
                external_order_id="order_1",
                external_payment_id="pay_1",
                now=T0 + timedelta(minutes=12),
            )

        self.assertTrue(again.already_processed)
        self.assertEqual(again.transaction_id, first.transaction_id)
        self.assertEqual(PaymentTransaction.objects.filter(job=job).count(), 1)
        self.assertEqual(len(mail.outbox), sent_after_first)
