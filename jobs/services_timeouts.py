"""
Timeout policy for jobs.

Every deadline is a stored timestamp plus a configured window:

- soft lock: ``soft_locked_at`` + JOB_SOFT_LOCK_SECONDS
- payment: ``payment_requested_at`` + JOB_PAYMENT_DEADLINE_MINUTES
- negotiation: ``created_at`` of the open dealer counter-offer + JOB_NEGOTIATION_TIMEOUT_MINUTES

A due timeout cancels the job with ``rejected_at`` set, which is what makes
it repostable. Evaluating a job that is no longer in its pre-timeout state
is a no-op.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from django.conf import settings
from django.db import transaction
from django.db.models import Exists, OuterRef
from django.utils import timezone

from .events import JobTimedOut, emit
from .models import Job, JobBid, JobEvent, TimeoutReason
from .transitions import ensure_transition

logger = logging.getLogger(__name__)

SWEEP_BATCH_SIZE = 200

REJECTION_MESSAGES = {
    TimeoutReason.SOFT_LOCK_TIMEOUT: "Dealer did not confirm the technician in time.",
    TimeoutReason.PAYMENT_DEADLINE_TIMEOUT: "Payment was not completed before the deadline.",
    TimeoutReason.NEGOTIATION_TIMEOUT: "Technician did not answer the counter-offer in time.",
}


def soft_lock_window() -> timedelta:
    return timedelta(seconds=getattr(settings, "JOB_SOFT_LOCK_SECONDS", 45))


def payment_window() -> timedelta:
    return timedelta(minutes=getattr(settings, "JOB_PAYMENT_DEADLINE_MINUTES", 30))


def negotiation_window() -> timedelta:
    return timedelta(minutes=getattr(settings, "JOB_NEGOTIATION_TIMEOUT_MINUTES", 5))


def soft_lock_deadline(job: Job) -> datetime | None:
    if job.soft_locked_at is None:
        return None
    return job.soft_locked_at + soft_lock_window()


def payment_deadline(job: Job) -> datetime | None:
    if job.payment_requested_at is None:
        return None
    return job.payment_requested_at + payment_window()


def open_counter_offer(job: Job) -> JobBid | None:
    return (
        JobBid.objects.filter(
            job_id=job.job_id,
            status=JobBid.BidStatus.PENDING,
            offered_by=JobBid.OfferedBy.DEALER,
        )
        .order_by("created_at", "bid_id")
        .first()
    )


def negotiation_deadline(job: Job) -> datetime | None:
    counter = open_counter_offer(job)
    if counter is None:
        return None
    return counter.created_at + negotiation_window()


def due_timeout_reason(job: Job, *, now=None) -> str | None:
    now = now or timezone.now()

    if job.status == Job.JobStatus.PENDING:
        deadline = soft_lock_deadline(job)
        if deadline is not None and now > deadline:
            return TimeoutReason.SOFT_LOCK_TIMEOUT
        deadline = negotiation_deadline(job)
        if deadline is not None and now > deadline:
            return TimeoutReason.NEGOTIATION_TIMEOUT
    elif job.status == Job.JobStatus.WAITING_FOR_PAYMENT and not job.payment_locked:
        deadline = payment_deadline(job)
        if deadline is not None and now > deadline:
            return TimeoutReason.PAYMENT_DEADLINE_TIMEOUT

    return None


def apply_timeout(job: Job, reason: str, *, now) -> None:
    """Caller must hold the row lock on ``job``."""
    ensure_transition(job, Job.JobStatus.CANCELLED)

    reasons = list(job.timeout_reasons or [])
    if reason not in reasons:
        reasons.append(str(reason))

    job.status = Job.JobStatus.CANCELLED
    job.rejected_at = now
    job.rejection_reason = REJECTION_MESSAGES[reason]
    job.timeout_reasons = reasons
    job.soft_locked_at = None
    job.soft_locked_by = None
    job.soft_lock_bid = None
    job.save(
        update_fields=[
            "status",
            "rejected_at",
            "rejection_reason",
            "timeout_reasons",
            "soft_locked_at",
            "soft_locked_by",
            "soft_lock_bid",
            "updated_at",
        ]
    )

    JobBid.objects.filter(job_id=job.job_id, status__in=JobBid.OPEN_STATUSES).update(
        status=JobBid.BidStatus.REJECTED,
        responded_at=now,
    )

    JobEvent.objects.create(
        job=job,
        event_type=JobEvent.EventType.TIMED_OUT,
        note=str(reason),
        created_at=now,
    )
    emit(JobTimedOut(job_id=job.job_id, dealer_id=job.dealer_id, reason=str(reason)))
    logger.info("job %s timed out: %s", job.job_id, reason)


def expire_job_if_due(job: Job, *, now=None) -> str | None:
    """Apply a due timeout to a row-locked job. Returns the reason applied, if any."""
    now = now or timezone.now()
    reason = due_timeout_reason(job, now=now)
    if reason is None:
        return None
    apply_timeout(job, reason, now=now)
    return reason


def refresh_job_timeouts(job_id: int, *, now=None) -> str | None:
    """Lazy check used by read paths and by operations that run outside the job lock."""
    now = now or timezone.now()
    with transaction.atomic():
        job = Job.objects.select_for_update().get(job_id=job_id)
        return expire_job_if_due(job, now=now)


def due_job_ids(*, now=None, limit: int = SWEEP_BATCH_SIZE) -> list[int]:
    now = now or timezone.now()

    soft_lock_ids = Job.objects.filter(
        status=Job.JobStatus.PENDING,
        soft_locked_at__isnull=False,
        soft_locked_at__lt=now - soft_lock_window(),
    ).values_list("job_id", flat=True)

    payment_ids = Job.objects.filter(
        status=Job.JobStatus.WAITING_FOR_PAYMENT,
        payment_locked=False,
        payment_requested_at__isnull=False,
        payment_requested_at__lt=now - payment_window(),
    ).values_list("job_id", flat=True)

    stale_counter = JobBid.objects.filter(
        job_id=OuterRef("job_id"),
        status=JobBid.BidStatus.PENDING,
        offered_by=JobBid.OfferedBy.DEALER,
        created_at__lt=now - negotiation_window(),
    )
    negotiation_ids = Job.objects.filter(
        Exists(stale_counter),
        status=Job.JobStatus.PENDING,
    ).values_list("job_id", flat=True)

    ids = set(soft_lock_ids[:limit]) | set(payment_ids[:limit]) | set(negotiation_ids[:limit])
    return sorted(ids)[:limit]


def sweep_timeouts(*, now=None, limit: int = SWEEP_BATCH_SIZE) -> int:
    """Cancel every job whose deadline has passed. Returns the number of jobs transitioned."""
    now = now or timezone.now()
    transitioned = 0

    for job_id in due_job_ids(now=now, limit=limit):
        if refresh_job_timeouts(job_id, now=now):
            transitioned += 1

    if transitioned:
        logger.info("timeout sweep transitioned %s job(s)", transitioned)
    return transitioned
