from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from math import ceil

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from jobs.errors import JobConflict, JobPolicyError, JobValidationError
from jobs.events import WarrantyIssueReported, emit
from technicians.models import Technician

from .models import WarrantyRecord

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class WarrantyResult:
    warranty_id: int
    job_id: int
    status: str
    remaining_days: int


def create_warranty_for_job(job, *, now=None) -> WarrantyRecord:
    now = now or timezone.now()
    days = job.warranty_days or getattr(settings, "WARRANTY_DEFAULT_DAYS", 30)
    warranty, _ = WarrantyRecord.objects.get_or_create(
        job=job,
        defaults={
            "warranty_days": days,
            "start_date": now,
            "end_date": now + timedelta(days=days),
            "created_at": now,
        },
    )
    return warranty


def effective_status(warranty: WarrantyRecord, *, now=None) -> str:
    now = now or timezone.now()
    if warranty.status == WarrantyRecord.Status.ACTIVE and now > warranty.end_date:
        return WarrantyRecord.Status.EXPIRED
    return warranty.status


def remaining_days(warranty: WarrantyRecord, *, now=None) -> int:
    now = now or timezone.now()
    seconds = (warranty.end_date - now).total_seconds()
    return max(ceil(seconds / SECONDS_PER_DAY), 0)


def is_expiring_soon(warranty: WarrantyRecord, *, now=None) -> bool:
    now = now or timezone.now()
    if effective_status(warranty, now=now) != WarrantyRecord.Status.ACTIVE:
        return False
    threshold = getattr(settings, "WARRANTY_EXPIRING_SOON_DAYS", 7)
    return 0 < remaining_days(warranty, now=now) <= threshold


def _result(warranty: WarrantyRecord, *, now) -> WarrantyResult:
    return WarrantyResult(
        warranty_id=warranty.warranty_id,
        job_id=warranty.job_id,
        status=effective_status(warranty, now=now),
        remaining_days=remaining_days(warranty, now=now),
    )


def report_warranty_issue(*, warranty_id: int, description: str, dealer_id: int, now=None) -> WarrantyResult:
    now = now or timezone.now()
    description = (description or "").strip()
    if not description:
        raise JobValidationError("EMPTY_DESCRIPTION", "Issue description is required.")

    with transaction.atomic():
        warranty = (
            WarrantyRecord.objects.select_for_update()
            .select_related("job")
            .get(warranty_id=warranty_id)
        )
        if warranty.job.dealer_id != dealer_id:
            raise PermissionError("dealer_not_allowed")

        status = effective_status(warranty, now=now)
        if status == WarrantyRecord.Status.EXPIRED:
            raise JobPolicyError("WARRANTY_EXPIRED", f"Warranty ended on {warranty.end_date:%Y-%m-%d}.")
        if status != WarrantyRecord.Status.ACTIVE:
            raise JobConflict("WARRANTY_NOT_ACTIVE", f"Warranty is {status}.")

        warranty.status = WarrantyRecord.Status.ISSUE_REPORTED
        warranty.issue_description = description
        warranty.issue_reported_at = now
        warranty.save(update_fields=["status", "issue_description", "issue_reported_at", "updated_at"])

        emit(
            WarrantyIssueReported(
                job_id=warranty.job_id,
                warranty_id=warranty.warranty_id,
                dealer_id=warranty.job.dealer_id,
                technician_id=warranty.job.assigned_technician_id,
            )
        )

    logger.info("warranty %s issue reported for job %s", warranty.warranty_id, warranty.job_id)
    return _result(warranty, now=now)


def assign_rework_technician(*, warranty_id: int, technician_id: int, now=None) -> WarrantyResult:
    now = now or timezone.now()
    technician = Technician.objects.get(technician_id=technician_id)

    with transaction.atomic():
        warranty = WarrantyRecord.objects.select_for_update().get(warranty_id=warranty_id)
        if warranty.status != WarrantyRecord.Status.ISSUE_REPORTED:
            raise JobConflict("INVALID_TRANSITION", f"Warranty is {warranty.status}.")

        warranty.status = WarrantyRecord.Status.REWORK_IN_PROGRESS
        warranty.rework_technician = technician
        warranty.rework_started_at = now
        warranty.save(update_fields=["status", "rework_technician", "rework_started_at", "updated_at"])

    return _result(warranty, now=now)


def complete_rework(*, warranty_id: int, technician_id=None, now=None) -> WarrantyResult:
    now = now or timezone.now()

    with transaction.atomic():
        warranty = WarrantyRecord.objects.select_for_update().get(warranty_id=warranty_id)
        if warranty.status != WarrantyRecord.Status.REWORK_IN_PROGRESS:
            raise JobConflict("INVALID_TRANSITION", f"Warranty is {warranty.status}.")
        if technician_id is not None and warranty.rework_technician_id != technician_id:
            raise PermissionError("technician_not_allowed")

        warranty.status = WarrantyRecord.Status.REWORK_COMPLETED
        warranty.rework_completed_at = now
        warranty.save(update_fields=["status", "rework_completed_at", "updated_at"])

    return _result(warranty, now=now)


def serialize_warranty(warranty: WarrantyRecord, *, now=None) -> dict:
    now = now or timezone.now()
    return {
        "warranty_id": warranty.warranty_id,
        "job_id": warranty.job_id,
        "status": effective_status(warranty, now=now),
        "warranty_days": warranty.warranty_days,
        "start_date": warranty.start_date.isoformat(),
        "end_date": warranty.end_date.isoformat(),
        "remaining_days": remaining_days(warranty, now=now),
        "is_expiring_soon": is_expiring_soon(warranty, now=now),
        "issue_description": warranty.issue_description or None,
        "rework_technician_id": warranty.rework_technician_id,
    }


def get_warranty_view(*, warranty_id: int, now=None) -> dict:
    warranty = WarrantyRecord.objects.get(warranty_id=warranty_id)
    return serialize_warranty(warranty, now=now)


def dealer_warranty_overview(*, dealer_id: int, now=None) -> dict:
    now = now or timezone.now()
    buckets = {"active": [], "expiring_soon": [], "expired": [], "issues": []}

    qs = WarrantyRecord.objects.filter(job__dealer_id=dealer_id).order_by("end_date", "warranty_id")
    for warranty in qs:
        item = serialize_warranty(warranty, now=now)
        status = item["status"]
        if status == WarrantyRecord.Status.EXPIRED:
            buckets["expired"].append(item)
        elif status == WarrantyRecord.Status.ACTIVE:
            key = "expiring_soon" if item["is_expiring_soon"] else "active"
            buckets[key].append(item)
        else:
            buckets["issues"].append(item)

    return buckets
