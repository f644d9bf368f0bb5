import json
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import stripe
from django.core import mail
from django.test import TestCase, override_settings

from jobs.errors import JobConflict, JobPolicyError, JobValidationError
from jobs.factories import T0, JobFlowMixin
from jobs.models import Job
from payments.models import PaymentTransaction, PaymentWebhookEvent
from payments.services import create_payment_order, lock_payment, to_minor_units


class LockPaymentTests(JobFlowMixin, TestCase):
    def setUp(self):
        self.job, self.tech, _ = self._job_waiting_for_payment(price="4500.00")

    def _lock(self, amount="4500.00", payment_id="pay_1", *, now=T0 + timedelta(minutes=5)):
        return lock_payment(
            job_id=self.job.job_id,
            total_amount=amount,
            payment_method="ONLINE",
            external_order_id="order_1",
            external_payment_id=payment_id,
            now=now,
        )

    def test_first_call_assigns_technician(self):
        result = self._lock()

        self.job.refresh_from_db()
        self.assertFalse(result.already_processed)
        self.assertEqual(result.job_status, Job.JobStatus.ASSIGNED)
        self.assertTrue(self.job.payment_locked)
        self.assertEqual(self.job.assigned_technician_id, self.tech.technician_id)
        txn = PaymentTransaction.objects.get(pk=result.transaction_id)
        self.assertEqual(txn.total_amount, Decimal("4500.00"))
        self.assertEqual(txn.payment_method, PaymentTransaction.PaymentMethod.ONLINE)

    def test_replay_is_idempotent_and_silent(self):
        with self.captureOnCommitCallbacks(execute=True):
            first = self._lock()
        sent = len(mail.outbox)

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            second = self._lock()

        self.assertTrue(second.already_processed)
        self.assertEqual(second.transaction_id, first.transaction_id)
        self.assertEqual(PaymentTransaction.objects.filter(job=self.job).count(), 1)
        self.assertEqual(len(callbacks), 0)
        self.assertEqual(len(mail.outbox), sent)

    def test_replay_with_different_amount_is_refused(self):
        self._lock()

        with self.assertRaises(JobConflict) as ctx:
            self._lock(amount="4400.00")

        self.assertEqual(ctx.exception.code, "DUPLICATE_PAYMENT_DIFFERENT_AMOUNT")

    def test_amount_must_match_final_price(self):
        with self.assertRaises(JobValidationError) as ctx:
            self._lock(amount="5000.00")

        self.assertEqual(ctx.exception.code, "AMOUNT_MISMATCH")
        self.job.refresh_from_db()
        self.assertFalse(self.job.payment_locked)

    def test_second_payment_id_after_lock_is_refused(self):
        self._lock()

        with self.assertRaises(JobPolicyError) as ctx:
            self._lock(payment_id="pay_2")

        self.assertEqual(ctx.exception.code, "JOB_NOT_WAITING_FOR_PAYMENT")

    def test_payment_after_deadline_fails_and_cancels(self):
        with self.assertRaises(JobPolicyError) as ctx:
            self._lock(now=T0 + timedelta(minutes=31))

        self.assertEqual(ctx.exception.code, "JOB_NOT_WAITING_FOR_PAYMENT")
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, Job.JobStatus.CANCELLED)
        self.assertIsNotNone(self.job.rejected_at)
        self.assertIn("PAYMENT_DEADLINE_TIMEOUT", self.job.timeout_reasons)
        self.assertFalse(PaymentTransaction.objects.exists())

    def test_pending_job_cannot_be_paid(self):
        job = self._make_job(estimated_cost="3000")

        with self.assertRaises(JobPolicyError):
            lock_payment(
                job_id=job.job_id,
                total_amount="3000",
                payment_method="CASH",
                external_order_id="",
                external_payment_id="cash-9",
                now=T0,
            )

    def test_unknown_payment_method(self):
        with self.assertRaises(JobValidationError) as ctx:
            lock_payment(
                job_id=self.job.job_id,
                total_amount="4500",
                payment_method="CRYPTO",
                external_order_id="o",
                external_payment_id="p",
                now=T0,
            )

        self.assertEqual(ctx.exception.code, "INVALID_PAYMENT_METHOD")


class LockPaymentApiTests(JobFlowMixin, TestCase):
    def test_lock_payment_endpoint(self):
        job, _, _ = self._job_waiting_for_payment(price="4500.00")
        url = f"/api/jobs/{job.job_id}/lock-payment/"
        payload = {
            "total_amount": "4500.00",
            "payment_method": "ONLINE",
            "external_order_id": "order_1",
            "external_payment_id": "pay_1",
        }

        with patch("payments.services.timezone.now", return_value=T0 + timedelta(minutes=1)):
            first = self.client.post(url, data=json.dumps(payload), content_type="application/json")
            second = self.client.post(url, data=json.dumps(payload), content_type="application/json")
            wrong = self.client.post(
                url,
                data=json.dumps({**payload, "total_amount": "1.00"}),
                content_type="application/json",
            )

        self.assertEqual(first.status_code, 200)
        self.assertFalse(first.json()["result"]["already_processed"])
        self.assertEqual(second.status_code, 200)
        self.assertTrue(second.json()["result"]["already_processed"])
        self.assertEqual(wrong.status_code, 409)
        self.assertEqual(wrong.json()["error"], "DUPLICATE_PAYMENT_DIFFERENT_AMOUNT")


@override_settings(STRIPE_MODE="test", STRIPE_CURRENCY="inr")
class PaymentOrderTests(JobFlowMixin, TestCase):
    def test_minor_units(self):
        self.assertEqual(to_minor_units(Decimal("4200.00")), 420000)
        self.assertEqual(to_minor_units(Decimal("10.505")), 1051)

    def test_creates_intent_for_final_price(self):
        job, _, _ = self._job_waiting_for_payment(price="4200.00")
        fake_stripe = MagicMock()
        fake_stripe.PaymentIntent.create.return_value = MagicMock(id="pi_1", client_secret="secret_1")

        with patch("payments.services.get_stripe", return_value=fake_stripe):
            order = create_payment_order(job_id=job.job_id, now=T0 + timedelta(minutes=1))

        self.assertEqual(order.order_id, "pi_1")
        self.assertEqual(order.client_secret, "secret_1")
        kwargs = fake_stripe.PaymentIntent.create.call_args.kwargs
        self.assertEqual(kwargs["amount"], 420000)
        self.assertEqual(kwargs["currency"], "inr")
        self.assertEqual(kwargs["metadata"]["job_id"], str(job.job_id))
        self.assertEqual(kwargs["idempotency_key"], f"job_{job.job_id}_payment_order_test")

    def test_refuses_job_not_waiting_for_payment(self):
        job = self._make_job()

        with patch("payments.services.get_stripe") as get_stripe:
            with self.assertRaises(JobPolicyError):
                create_payment_order(job_id=job.job_id, now=T0)

        get_stripe.assert_not_called()


@override_settings(STRIPE_WEBHOOK_SECRET="whsec_test")
class StripeWebhookTests(JobFlowMixin, TestCase):
    def setUp(self):
        self.job, self.tech, _ = self._job_waiting_for_payment(price="4500.00")

    def _event(self, event_id="evt_1", amount=450000):
        return {
            "id": event_id,
            "type": "payment_intent.succeeded",
            "data": {
                "object": {
                    "id": "pi_1",
                    "amount": amount,
                    "amount_received": amount,
                    "latest_charge": "ch_1",
                    "metadata": {"job_id": str(self.job.job_id)},
                }
            },
        }

    def _deliver(self, event):
        with patch("payments.views.stripe.Webhook.construct_event", return_value=event), patch(
            "payments.services.timezone.now", return_value=T0 + timedelta(minutes=2)
        ):
            return self.client.post(
                "/api/payments/webhook/",
                data=json.dumps(event),
                content_type="application/json",
                HTTP_STRIPE_SIGNATURE="sig",
            )

    def test_payment_intent_succeeded_locks_payment(self):
        resp = self._deliver(self._event())

        self.assertEqual(resp.status_code, 200)
        self.job.refresh_from_db()
        self.assertTrue(self.job.payment_locked)
        txn = PaymentTransaction.objects.get(job=self.job)
        self.assertEqual(txn.external_order_id, "pi_1")
        self.assertEqual(txn.external_payment_id, "pi_1")
        self.assertEqual(PaymentWebhookEvent.objects.get(event_id="evt_1").processing_status, "processed")

    def test_webhook_after_client_lock_replays(self):
        lock_payment(
            job_id=self.job.job_id,
            total_amount="4500.00",
            payment_method="ONLINE",
            external_order_id="pi_1",
            external_payment_id="pi_1",
            now=T0 + timedelta(minutes=1),
        )

        resp = self._deliver(self._event())

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(PaymentTransaction.objects.filter(job=self.job).count(), 1)
        event = PaymentWebhookEvent.objects.get(event_id="evt_1")
        self.assertEqual(event.processing_status, "processed")
        self.assertFalse(event.error_message)

    def test_duplicate_delivery_is_ignored(self):
        self._deliver(self._event())
        resp = self._deliver(self._event())

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(PaymentWebhookEvent.objects.count(), 1)
        self.assertEqual(PaymentTransaction.objects.count(), 1)

    def test_wrong_amount_is_recorded_as_error(self):
        resp = self._deliver(self._event(amount=100))

        self.assertEqual(resp.status_code, 200)
        event = PaymentWebhookEvent.objects.get(event_id="evt_1")
        self.assertEqual(event.processing_status, "error")
        self.assertIn("AMOUNT_MISMATCH", event.error_message)
        self.job.refresh_from_db()
        self.assertFalse(self.job.payment_locked)

    def test_invalid_signature(self):
        error = stripe.SignatureVerificationError("bad signature", "sig")
        with patch("payments.views.stripe.Webhook.construct_event", side_effect=error):
            resp = self.client.post("/api/payments/webhook/", data="{}", content_type="application/json")

        self.assertEqual(resp.status_code, 400)
        self.assertFalse(PaymentWebhookEvent.objects.exists())
