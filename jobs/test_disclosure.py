import json

from django.test import SimpleTestCase, TestCase

from jobs.disclosure import REQUESTER_ROLES, apply_disclosure_policy, get_bids_view, get_job_view
from jobs.errors import JobValidationError
from jobs.factories import T0, JobFlowMixin
from payments.services import lock_payment


class ApplyDisclosurePolicyTests(SimpleTestCase):
    def _payload(self, payment_locked):
        technician = {"technician_id": 7, "full_name": "A", "email": "a@x", "mobile": "1"}
        return {
            "job_id": 1,
            "payment_locked": payment_locked,
            "technician": technician,
            "technician_id": 7,
            "soft_locked_by_id": 7,
            "bids": [
                {
                    "bid_id": 3,
                    "technician": technician,
                    "technician_id": 7,
                    "distance_km": "4.10",
                    "round_number": 2,
                    "service_area_name": "Kothrud",
                    "status": "accepted",
                }
            ],
        }

    def test_strips_identity_when_unpaid(self):
        payload = self._payload(False)

        redacted = apply_disclosure_policy(payload)

        self.assertNotIn("technician", redacted)
        self.assertNotIn("technician_id", redacted)
        self.assertNotIn("soft_locked_by_id", redacted)
        bid = redacted["bids"][0]
        self.assertNotIn("technician", bid)
        self.assertNotIn("technician_id", bid)
        self.assertEqual(bid["distance_km"], "4.10")
        self.assertEqual(bid["round_number"], 2)
        self.assertEqual(bid["service_area_name"], "Kothrud")

    def test_input_is_not_mutated(self):
        payload = self._payload(False)

        apply_disclosure_policy(payload)

        self.assertIn("technician", payload)
        self.assertIn("technician", payload["bids"][0])

    def test_paid_payload_is_untouched(self):
        payload = self._payload(True)

        self.assertEqual(apply_disclosure_policy(payload), payload)


class JobViewDisclosureTests(JobFlowMixin, TestCase):
    def setUp(self):
        self.job, self.tech, _ = self._job_waiting_for_payment(price="4500.00")
        self.identity = [self.tech.full_name, self.tech.email, self.tech.mobile]

    def _assert_no_identity(self, data):
        raw = json.dumps(data)
        for value in self.identity:
            self.assertNotIn(value, raw)

    def test_no_role_sees_technician_before_payment(self):
        for role in REQUESTER_ROLES:
            with self.subTest(role=role):
                job_view = get_job_view(job_id=self.job.job_id, requester_role=role, now=T0)
                bids_view = get_bids_view(job_id=self.job.job_id, requester_role=role, now=T0)

                self._assert_no_identity(job_view)
                self._assert_no_identity(bids_view)
                self.assertEqual(bids_view[0]["status"], "accepted")
                self.assertEqual(bids_view[0]["service_area_name"], "Kothrud")

    def test_technician_visible_after_payment_lock(self):
        lock_payment(
            job_id=self.job.job_id,
            total_amount="4500.00",
            payment_method="ONLINE",
            external_order_id="order_1",
            external_payment_id="pay_1",
            now=T0,
        )

        view = get_job_view(job_id=self.job.job_id, requester_role="dealer", now=T0)

        self.assertTrue(view["payment_locked"])
        self.assertEqual(view["technician"]["email"], self.tech.email)
        self.assertEqual(view["bids"][0]["technician"]["mobile"], self.tech.mobile)

    def test_unknown_role_is_rejected(self):
        with self.assertRaises(JobValidationError) as ctx:
            get_job_view(job_id=self.job.job_id, requester_role="stranger", now=T0)

        self.assertEqual(ctx.exception.code, "INVALID_ROLE")
