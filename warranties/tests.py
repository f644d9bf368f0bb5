import json
from datetime import timedelta

from django.test import TestCase, override_settings
from django.utils import timezone

from jobs.errors import JobConflict, JobPolicyError, JobValidationError
from jobs.events import WarrantyIssueReported, job_event
from jobs.factories import T0, JobFlowMixin
from jobs.services import complete_job, start_job
from payments.services import lock_payment
from warranties.models import WarrantyRecord
from warranties.services import (
    assign_rework_technician,
    complete_rework,
    dealer_warranty_overview,
    effective_status,
    is_expiring_soon,
    remaining_days,
    report_warranty_issue,
)


class WarrantyMixin(JobFlowMixin):
    def _completed_job(self, *, completed_at=T0, dealer=None, technician=None):
        job, tech, _ = self._job_waiting_for_payment(price="4500.00", dealer=dealer, technician=technician)
        lock_payment(
            job_id=job.job_id,
            total_amount="4500.00",
            payment_method="CASH",
            external_order_id="",
            external_payment_id=f"cash-{job.job_id}",
            now=T0,
        )
        start_job(job_id=job.job_id, technician_id=tech.technician_id, now=completed_at)
        complete_job(job_id=job.job_id, technician_id=tech.technician_id, now=completed_at)
        job.refresh_from_db()
        return job, tech, WarrantyRecord.objects.get(job=job)


class WarrantyPeriodTests(WarrantyMixin, TestCase):
    def test_warranty_starts_at_completion(self):
        _, _, warranty = self._completed_job()

        self.assertEqual(warranty.start_date, T0)
        self.assertEqual(warranty.end_date, T0 + timedelta(days=30))
        self.assertEqual(remaining_days(warranty, now=T0), 30)

    @override_settings(WARRANTY_DEFAULT_DAYS=90)
    def test_period_follows_configured_default(self):
        _, _, warranty = self._completed_job()

        self.assertEqual(warranty.warranty_days, 90)
        self.assertEqual(warranty.end_date, T0 + timedelta(days=90))

    def test_partial_day_counts_as_a_day(self):
        _, _, warranty = self._completed_job()

        self.assertEqual(remaining_days(warranty, now=T0 + timedelta(days=29, hours=12)), 1)
        self.assertEqual(remaining_days(warranty, now=T0 + timedelta(days=29, hours=23, minutes=59)), 1)

    def test_expiring_soon_window(self):
        _, _, warranty = self._completed_job()

        self.assertFalse(is_expiring_soon(warranty, now=T0 + timedelta(days=22)))
        self.assertTrue(is_expiring_soon(warranty, now=T0 + timedelta(days=23)))
        self.assertTrue(is_expiring_soon(warranty, now=T0 + timedelta(days=29, hours=20)))

    def test_expiry_is_derived_on_read(self):
        _, _, warranty = self._completed_job()
        later = T0 + timedelta(days=31)

        self.assertEqual(effective_status(warranty, now=later), WarrantyRecord.Status.EXPIRED)
        self.assertEqual(remaining_days(warranty, now=later), 0)
        self.assertFalse(is_expiring_soon(warranty, now=later))
        warranty.refresh_from_db()
        self.assertEqual(warranty.status, WarrantyRecord.Status.ACTIVE)

    def test_completing_twice_keeps_one_warranty(self):
        job, tech, warranty = self._completed_job()

        with self.assertRaises(JobConflict):
            complete_job(job_id=job.job_id, technician_id=tech.technician_id, now=T0)

        self.assertEqual(WarrantyRecord.objects.filter(job=job).count(), 1)


class WarrantyIssueTests(WarrantyMixin, TestCase):
    def setUp(self):
        self.job, self.tech, self.warranty = self._completed_job()

    def _report(self, description, *, now=T0):
        return report_warranty_issue(
            warranty_id=self.warranty.warranty_id,
            description=description,
            dealer_id=self.job.dealer_id,
            now=now,
        )

    def test_report_issue_within_period(self):
        received = []

        def receiver(sender, event, **kwargs):
            received.append(event)

        job_event.connect(receiver)
        self.addCleanup(job_event.disconnect, receiver)

        with self.captureOnCommitCallbacks(execute=True):
            result = report_warranty_issue(
                warranty_id=self.warranty.warranty_id,
                description="Camera 3 lost signal",
                dealer_id=self.job.dealer_id,
                now=T0 + timedelta(days=10),
            )

        self.assertEqual(result.status, WarrantyRecord.Status.ISSUE_REPORTED)
        self.assertEqual(result.remaining_days, 20)
        self.warranty.refresh_from_db()
        self.assertEqual(self.warranty.issue_description, "Camera 3 lost signal")
        self.assertEqual([type(e) for e in received], [WarrantyIssueReported])

    def test_blank_description_is_rejected(self):
        with self.assertRaises(JobValidationError) as ctx:
            self._report("   ")

        self.assertEqual(ctx.exception.code, "EMPTY_DESCRIPTION")

    def test_expired_warranty_refuses_issue(self):
        with self.assertRaises(JobPolicyError) as ctx:
            self._report("stopped recording", now=T0 + timedelta(days=30, seconds=1))

        self.assertEqual(ctx.exception.code, "WARRANTY_EXPIRED")

    def test_second_report_conflicts(self):
        self._report("first")

        with self.assertRaises(JobConflict) as ctx:
            self._report("second")

        self.assertEqual(ctx.exception.code, "WARRANTY_NOT_ACTIVE")

    def test_other_dealer_cannot_report(self):
        other = self._make_dealer()

        with self.assertRaises(PermissionError):
            report_warranty_issue(
                warranty_id=self.warranty.warranty_id,
                description="not mine",
                dealer_id=other.dealer_id,
                now=T0,
            )

    def test_rework_flow(self):
        rework_tech = self._make_technician(7)
        self._report("DVR fault")

        assigned = assign_rework_technician(
            warranty_id=self.warranty.warranty_id,
            technician_id=rework_tech.technician_id,
            now=T0 + timedelta(days=1),
        )
        self.assertEqual(assigned.status, WarrantyRecord.Status.REWORK_IN_PROGRESS)

        with self.assertRaises(PermissionError):
            complete_rework(warranty_id=self.warranty.warranty_id, technician_id=self.tech.technician_id, now=T0)

        done = complete_rework(
            warranty_id=self.warranty.warranty_id,
            technician_id=rework_tech.technician_id,
            now=T0 + timedelta(days=2),
        )
        self.assertEqual(done.status, WarrantyRecord.Status.REWORK_COMPLETED)
        self.warranty.refresh_from_db()
        self.assertEqual(self.warranty.rework_technician_id, rework_tech.technician_id)
        self.assertEqual(self.warranty.rework_completed_at, T0 + timedelta(days=2))

    def test_rework_requires_reported_issue(self):
        with self.assertRaises(JobConflict) as ctx:
            assign_rework_technician(
                warranty_id=self.warranty.warranty_id,
                technician_id=self.tech.technician_id,
                now=T0,
            )

        self.assertEqual(ctx.exception.code, "INVALID_TRANSITION")


class DealerWarrantyOverviewTests(WarrantyMixin, TestCase):
    def test_buckets(self):
        dealer = self._make_dealer()
        tech = self._make_technician(1)

        def completed(days):
            return self._completed_job(
                completed_at=T0 + timedelta(days=days),
                dealer=dealer,
                technician=tech,
            )[2]

        fresh = completed(20)
        soon = completed(0)
        old = completed(-40)
        flagged = completed(10)
        self._completed_job(technician=tech)
        report_warranty_issue(
            warranty_id=flagged.warranty_id,
            description="noise",
            dealer_id=dealer.dealer_id,
            now=T0 + timedelta(days=24),
        )

        overview = dealer_warranty_overview(dealer_id=dealer.dealer_id, now=T0 + timedelta(days=25))

        ids = {key: [item["warranty_id"] for item in items] for key, items in overview.items()}
        self.assertEqual(ids["active"], [fresh.warranty_id])
        self.assertEqual(ids["expiring_soon"], [soon.warranty_id])
        self.assertEqual(ids["expired"], [old.warranty_id])
        self.assertEqual(ids["issues"], [flagged.warranty_id])


class WarrantyApiTests(WarrantyMixin, TestCase):
    def setUp(self):
        self.job, self.tech, self.warranty = self._completed_job(completed_at=timezone.now())

    def _post(self, url, payload):
        return self.client.post(url, data=json.dumps(payload), content_type="application/json")

    def test_detail(self):
        resp = self.client.get(f"/api/warranties/{self.warranty.warranty_id}/")

        self.assertEqual(resp.status_code, 200)
        body = resp.json()["result"]
        self.assertEqual(body["status"], WarrantyRecord.Status.ACTIVE)
        self.assertEqual(body["remaining_days"], 30)
        self.assertFalse(body["is_expiring_soon"])

    def test_issue_report_requires_owning_dealer(self):
        url = f"/api/warranties/{self.warranty.warranty_id}/issue/"
        other = self._make_dealer()

        resp = self._post(url, {"description": "Cable cut"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "dealer_id_required")

        resp = self._post(url, {"dealer_id": other.dealer_id, "description": "Cable cut"})
        self.assertEqual(resp.status_code, 403)

        self.warranty.refresh_from_db()
        self.assertEqual(self.warranty.status, WarrantyRecord.Status.ACTIVE)

    def test_issue_and_rework_endpoints(self):
        base = f"/api/warranties/{self.warranty.warranty_id}"

        resp = self._post(f"{base}/issue/", {"dealer_id": self.job.dealer_id, "description": ""})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "EMPTY_DESCRIPTION")

        resp = self._post(f"{base}/issue/", {"dealer_id": self.job.dealer_id, "description": "Cable cut"})
        self.assertEqual(resp.status_code, 200)

        resp = self._post(f"{base}/issue/", {"dealer_id": self.job.dealer_id, "description": "again"})
        self.assertEqual(resp.status_code, 409)

        resp = self._post(f"{base}/rework/", {})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "technician_id_required")

        resp = self._post(f"{base}/rework/", {"technician_id": self.tech.technician_id})
        self.assertEqual(resp.status_code, 200)

        resp = self._post(f"{base}/rework-complete/", {"technician_id": self.tech.technician_id})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["result"]["status"], WarrantyRecord.Status.REWORK_COMPLETED)

    def test_dealer_overview_and_missing_warranty(self):
        resp = self.client.get(f"/api/dealers/{self.job.dealer_id}/warranties/")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(len(resp.json()["result"]["active"]), 1)

        resp = self.client.get("/api/warranties/999999/")
        self.assertEqual(resp.status_code, 404)
