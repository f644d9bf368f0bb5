from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from dealers.models import Dealer
from technicians.models import Technician
from warranties.services import create_warranty_for_job

from .errors import JobConflict, JobPolicyError, JobValidationError
from .events import BidAccepted, BidReceived, BidRejected, CounterOffered, emit
from .models import MAX_NEGOTIATION_ROUNDS, Job, JobBid, JobEvent, TimeoutReason
from .services_timeouts import expire_job_if_due, soft_lock_deadline
from .transitions import TERMINAL_STATUSES, ensure_transition

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class BidResult:
    job_id: int
    bid_id: int
    status: str


@dataclass(frozen=True)
class AcceptResult:
    job_id: int
    bid_id: int
    job_status: str
    final_price: Decimal
    payment_requested_at: datetime


@dataclass(frozen=True)
class CounterResult:
    job_id: int
    bid_id: int
    countered_bid_id: int
    amount: Decimal
    round_number: int
    negotiation_rounds: int


@dataclass(frozen=True)
class SoftLockResult:
    job_id: int
    bid_id: int
    soft_locked_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class JobResult:
    job_id: int
    job_status: str
    note: str = ""


def parse_amount(value, code: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise JobValidationError(code, f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise JobValidationError(code, f"Invalid amount: {value!r}")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def _lock_job(job_id: int) -> Job:
    return Job.objects.select_for_update().get(job_id=job_id)


def _lock_bid(job: Job, bid_id: int) -> JobBid:
    return JobBid.objects.select_for_update().get(bid_id=bid_id, job_id=job.job_id)


def _ensure_dealer(job: Job, dealer_id: int) -> None:
    if job.dealer_id != dealer_id:
        raise PermissionError("dealer_not_allowed")


def _record(job: Job, event_type: str, *, now, technician_id=None, bid_id=None, note: str = ""):
    JobEvent.objects.create(
        job=job,
        event_type=event_type,
        technician_id=technician_id,
        bid_id=bid_id,
        note=note[:255],
        created_at=now,
    )


def _clear_soft_lock(job: Job) -> None:
    job.soft_locked_at = None
    job.soft_locked_by = None
    job.soft_lock_bid = None


def _timed_out(job_id: int, reason: str) -> JobConflict:
    if reason == TimeoutReason.SOFT_LOCK_TIMEOUT:
        return JobConflict("SOFT_LOCK_EXPIRED", f"Soft lock on job {job_id} expired.")
    return JobConflict("JOB_NOT_PENDING", f"Job {job_id} was cancelled by {reason}.")


def post_job(
    *,
    dealer_id: int,
    title: str,
    estimated_cost,
    description: str = "",
    city: str = "",
    address_line1: str = "",
    latitude=None,
    longitude=None,
    warranty_days: Optional[int] = None,
    now=None,
) -> Job:
    now = now or timezone.now()
    cost = parse_amount(estimated_cost, "INVALID_AMOUNT")
    if cost < 0:
        raise JobValidationError("INVALID_AMOUNT", "estimated_cost must be zero or positive.")
    if not (title or "").strip():
        raise JobValidationError("EMPTY_TITLE", "title is required.")

    dealer = Dealer.objects.get(dealer_id=dealer_id)

    fields = {}
    if warranty_days is not None:
        fields["warranty_days"] = int(warranty_days)

    with transaction.atomic():
        job = Job.objects.create(
            dealer=dealer,
            title=title.strip(),
            description=description or "",
            city=city or "",
            address_line1=address_line1 or "",
            latitude=latitude,
            longitude=longitude,
            estimated_cost=cost,
            created_at=now,
            **fields,
        )
        _record(job, JobEvent.EventType.POSTED, now=now)

    return job


def place_bid(
    *,
    job_id: int,
    technician_id: int,
    offered_price,
    message: str = "",
    distance_km=None,
    now=None,
) -> BidResult:
    now = now or timezone.now()
    price = parse_amount(offered_price, "INVALID_BID_AMOUNT")
    if price <= 0:
        raise JobValidationError("INVALID_BID_AMOUNT", "offered_price must be positive.")

    technician = Technician.objects.get(technician_id=technician_id)

    with transaction.atomic():
        job = _lock_job(job_id)
        reason = expire_job_if_due(job, now=now)
        if not reason:
            if job.status != Job.JobStatus.PENDING:
                raise JobConflict("JOB_NOT_PENDING", f"Job {job_id} is {job.status}.")

            if JobBid.objects.filter(
                job_id=job.job_id,
                technician_id=technician.technician_id,
                status__in=JobBid.OPEN_STATUSES,
            ).exists():
                raise JobConflict("BID_ALREADY_PENDING", "Technician already has an open bid.")

            if distance_km is None:
                distance = technician.get_distance_from(job.latitude, job.longitude)
                distance_km = Decimal(str(distance)).quantize(CENTS) if distance is not None else None

            bid = JobBid.objects.create(
                job=job,
                technician=technician,
                offered_price=price,
                message=(message or "")[:500],
                round_number=1,
                offered_by=JobBid.OfferedBy.TECHNICIAN,
                distance_km=distance_km,
                created_at=now,
            )
            _record(
                job,
                JobEvent.EventType.BID_PLACED,
                now=now,
                technician_id=technician.technician_id,
                bid_id=bid.bid_id,
            )
            emit(
                BidReceived(
                    job_id=job.job_id,
                    bid_id=bid.bid_id,
                    dealer_id=job.dealer_id,
                    offered_price=price,
                )
            )
            return BidResult(job_id=job.job_id, bid_id=bid.bid_id, status=bid.status)

    raise _timed_out(job_id, reason)


def _accept_locked(job: Job, bid: JobBid, *, now) -> AcceptResult:
    """
    Acceptance on a row-locked job:
    - job must still be PENDING
    - no other bid on the job may be ACCEPTED
    - chosen bid -> ACCEPTED, every other open bid -> REJECTED
    - job PENDING -> APPROVED -> WAITING_FOR_PAYMENT, payment clock starts
    Accepting a COUNTERED bid accepts its open counter-offer.
    """
    if job.status != Job.JobStatus.PENDING:
        raise JobConflict("JOB_NOT_PENDING", f"Job {job.job_id} is {job.status}.")

    if bid.status == JobBid.BidStatus.COUNTERED:
        counter = (
            bid.counters.select_for_update()
            .filter(status=JobBid.BidStatus.PENDING)
            .order_by("-created_at", "-bid_id")
            .first()
        )
        if counter is not None:
            bid = counter

    if JobBid.objects.filter(job_id=job.job_id, status=JobBid.BidStatus.ACCEPTED).exclude(
        bid_id=bid.bid_id
    ).exists():
        raise JobConflict("BID_ALREADY_ACCEPTED", f"Job {job.job_id} already has an accepted bid.")

    if bid.status != JobBid.BidStatus.PENDING:
        raise JobConflict("BID_NOT_PENDING", f"Bid {bid.bid_id} is {bid.status}.")

    try:
        with transaction.atomic():
            bid.status = JobBid.BidStatus.ACCEPTED
            bid.responded_at = now
            bid.save(update_fields=["status", "responded_at"])
    except IntegrityError:
        raise JobConflict("BID_ALREADY_ACCEPTED", f"Job {job.job_id} already has an accepted bid.")

    JobBid.objects.filter(job_id=job.job_id, status__in=JobBid.OPEN_STATUSES).exclude(
        bid_id=bid.bid_id
    ).update(status=JobBid.BidStatus.REJECTED, responded_at=now)

    ensure_transition(job, Job.JobStatus.APPROVED)
    job.status = Job.JobStatus.APPROVED
    ensure_transition(job, Job.JobStatus.WAITING_FOR_PAYMENT)
    job.status = Job.JobStatus.WAITING_FOR_PAYMENT

    job.final_price = bid.offered_price
    job.accepted_at = now
    job.payment_requested_at = now
    _clear_soft_lock(job)
    job.save(
        update_fields=[
            "status",
            "final_price",
            "accepted_at",
            "payment_requested_at",
            "soft_locked_at",
            "soft_locked_by",
            "soft_lock_bid",
            "updated_at",
        ]
    )

    _record(
        job,
        JobEvent.EventType.BID_ACCEPTED,
        now=now,
        technician_id=bid.technician_id,
        bid_id=bid.bid_id,
    )
    emit(
        BidAccepted(
            job_id=job.job_id,
            bid_id=bid.bid_id,
            technician_id=bid.technician_id,
            final_price=bid.offered_price,
        )
    )
    logger.info("job %s accepted bid %s at %s", job.job_id, bid.bid_id, bid.offered_price)

    return AcceptResult(
        job_id=job.job_id,
        bid_id=bid.bid_id,
        job_status=job.status,
        final_price=bid.offered_price,
        payment_requested_at=now,
    )


def accept_bid(*, job_id: int, bid_id: int, dealer_id: int, now=None) -> AcceptResult:
    now = now or timezone.now()

    with transaction.atomic():
        job = _lock_job(job_id)
        _ensure_dealer(job, dealer_id)
        reason = expire_job_if_due(job, now=now)
        if not reason:
            bid = _lock_bid(job, bid_id)
            return _accept_locked(job, bid, now=now)

    raise _timed_out(job_id, reason)


def counter_offer(*, job_id: int, bid_id: int, amount, dealer_id: int, now=None) -> CounterResult:
    now = now or timezone.now()
    amount = parse_amount(amount, "INVALID_COUNTER_AMOUNT")
    if amount <= 0:
        raise JobValidationError("INVALID_COUNTER_AMOUNT", "Counter-offer must be positive.")

    with transaction.atomic():
        job = _lock_job(job_id)
        _ensure_dealer(job, dealer_id)
        reason = expire_job_if_due(job, now=now)
        if not reason:
            if job.status != Job.JobStatus.PENDING:
                raise JobConflict("JOB_NOT_PENDING", f"Job {job_id} is {job.status}.")
            if job.negotiation_rounds >= MAX_NEGOTIATION_ROUNDS:
                raise JobPolicyError(
                    "ROUND_LIMIT_EXCEEDED",
                    f"Job {job_id} already used {job.negotiation_rounds} negotiation rounds.",
                )

            bid = _lock_bid(job, bid_id)
            if bid.offered_by != JobBid.OfferedBy.TECHNICIAN:
                raise JobConflict("BID_NOT_COUNTERABLE", "Only technician bids can be countered.")
            if bid.status != JobBid.BidStatus.PENDING:
                raise JobConflict("BID_NOT_PENDING", f"Bid {bid.bid_id} is {bid.status}.")

            bid.status = JobBid.BidStatus.COUNTERED
            bid.responded_at = now
            bid.save(update_fields=["status", "responded_at"])

            counter = JobBid.objects.create(
                job=job,
                technician_id=bid.technician_id,
                offered_price=amount,
                round_number=bid.round_number + 1,
                is_counter_offer=True,
                offered_by=JobBid.OfferedBy.DEALER,
                previous_bid=bid,
                distance_km=bid.distance_km,
                created_at=now,
            )

            Job.objects.filter(job_id=job.job_id).update(
                negotiation_rounds=F("negotiation_rounds") + 1,
                updated_at=now,
            )
            job.refresh_from_db(fields=["negotiation_rounds"])

            if job.soft_lock_bid_id == bid.bid_id:
                _clear_soft_lock(job)
                job.save(update_fields=["soft_locked_at", "soft_locked_by", "soft_lock_bid"])

            _record(
                job,
                JobEvent.EventType.COUNTER_OFFERED,
                now=now,
                technician_id=bid.technician_id,
                bid_id=counter.bid_id,
                note=f"round={counter.round_number}",
            )
            emit(
                CounterOffered(
                    job_id=job.job_id,
                    bid_id=counter.bid_id,
                    technician_id=bid.technician_id,
                    amount=amount,
                    round_number=counter.round_number,
                )
            )
            return CounterResult(
                job_id=job.job_id,
                bid_id=counter.bid_id,
                countered_bid_id=bid.bid_id,
                amount=amount,
                round_number=counter.round_number,
                negotiation_rounds=job.negotiation_rounds,
            )

    raise _timed_out(job_id, reason)


def _reject_chain(bid: JobBid, *, now) -> None:
    bid.status = JobBid.BidStatus.REJECTED
    bid.responded_at = now
    bid.save(update_fields=["status", "responded_at"])
    # Open counters of a rejected bid die with it.
    bid.counters.filter(status__in=JobBid.OPEN_STATUSES).update(
        status=JobBid.BidStatus.REJECTED,
        responded_at=now,
    )


def reject_bid(*, job_id: int, bid_id: int, dealer_id: int, now=None) -> BidResult:
    now = now or timezone.now()

    with transaction.atomic():
        job = _lock_job(job_id)
        _ensure_dealer(job, dealer_id)
        reason = expire_job_if_due(job, now=now)
        if not reason:
            bid = _lock_bid(job, bid_id)
            if bid.status not in JobBid.OPEN_STATUSES:
                raise JobConflict("BID_NOT_PENDING", f"Bid {bid.bid_id} is {bid.status}.")

            _reject_chain(bid, now=now)

            if job.soft_lock_bid_id == bid.bid_id:
                _clear_soft_lock(job)
                job.save(update_fields=["soft_locked_at", "soft_locked_by", "soft_lock_bid", "updated_at"])

            _record(
                job,
                JobEvent.EventType.BID_REJECTED,
                now=now,
                technician_id=bid.technician_id,
                bid_id=bid.bid_id,
            )
            emit(BidRejected(job_id=job.job_id, bid_id=bid.bid_id, technician_id=bid.technician_id))
            return BidResult(job_id=job.job_id, bid_id=bid.bid_id, status=bid.status)

    raise _timed_out(job_id, reason)


def respond_to_counter_offer(
    *,
    job_id: int,
    bid_id: int,
    technician_id: int,
    accept: bool,
    now=None,
):
    """Technician answer to a dealer counter-offer. Accepting runs the normal acceptance."""
    now = now or timezone.now()

    with transaction.atomic():
        job = _lock_job(job_id)
        reason = expire_job_if_due(job, now=now)
        if not reason:
            bid = _lock_bid(job, bid_id)
            if bid.offered_by != JobBid.OfferedBy.DEALER or not bid.is_counter_offer:
                raise JobConflict("NOT_A_COUNTER_OFFER", f"Bid {bid.bid_id} is not a counter-offer.")
            if bid.technician_id != technician_id:
                raise PermissionError("technician_not_allowed")

            if accept:
                return _accept_locked(job, bid, now=now)

            if bid.status != JobBid.BidStatus.PENDING:
                raise JobConflict("BID_NOT_PENDING", f"Bid {bid.bid_id} is {bid.status}.")

            _reject_chain(bid, now=now)
            if bid.previous_bid_id:
                JobBid.objects.filter(
                    bid_id=bid.previous_bid_id,
                    status=JobBid.BidStatus.COUNTERED,
                ).update(status=JobBid.BidStatus.REJECTED, responded_at=now)

            _record(
                job,
                JobEvent.EventType.COUNTER_DECLINED,
                now=now,
                technician_id=technician_id,
                bid_id=bid.bid_id,
            )
            return BidResult(job_id=job.job_id, bid_id=bid.bid_id, status=bid.status)

    raise _timed_out(job_id, reason)


def soft_lock_job(*, job_id: int, technician_id: int, now=None) -> SoftLockResult:
    """
    Technician takes the job at its estimated cost.
    The dealer then has JOB_SOFT_LOCK_SECONDS to confirm before the job is
    cancelled with SOFT_LOCK_TIMEOUT.
    """
    now = now or timezone.now()
    technician = Technician.objects.get(technician_id=technician_id)

    with transaction.atomic():
        job = _lock_job(job_id)
        reason = expire_job_if_due(job, now=now)
        if not reason:
            if job.status != Job.JobStatus.PENDING:
                raise JobConflict("JOB_NOT_PENDING", f"Job {job_id} is {job.status}.")

            if job.soft_locked_at is not None:
                if job.soft_locked_by_id != technician.technician_id:
                    raise JobConflict("SOFT_LOCK_ACTIVE", f"Job {job_id} is held by another technician.")
                return SoftLockResult(
                    job_id=job.job_id,
                    bid_id=job.soft_lock_bid_id,
                    soft_locked_at=job.soft_locked_at,
                    expires_at=soft_lock_deadline(job),
                )

            if job.estimated_cost <= 0:
                raise JobValidationError("INVALID_BID_AMOUNT", "Job has no estimated cost to accept.")
            if JobBid.objects.filter(
                job_id=job.job_id,
                technician_id=technician.technician_id,
                status__in=JobBid.OPEN_STATUSES,
            ).exists():
                raise JobConflict("BID_ALREADY_PENDING", "Technician already has an open bid.")

            distance = technician.get_distance_from(job.latitude, job.longitude)
            bid = JobBid.objects.create(
                job=job,
                technician=technician,
                offered_price=job.estimated_cost,
                round_number=1,
                offered_by=JobBid.OfferedBy.TECHNICIAN,
                distance_km=Decimal(str(distance)).quantize(CENTS) if distance is not None else None,
                created_at=now,
            )

            job.soft_locked_at = now
            job.soft_locked_by = technician
            job.soft_lock_bid = bid
            job.save(update_fields=["soft_locked_at", "soft_locked_by", "soft_lock_bid", "updated_at"])

            _record(
                job,
                JobEvent.EventType.SOFT_LOCKED,
                now=now,
                technician_id=technician.technician_id,
                bid_id=bid.bid_id,
            )
            emit(
                BidReceived(
                    job_id=job.job_id,
                    bid_id=bid.bid_id,
                    dealer_id=job.dealer_id,
                    offered_price=bid.offered_price,
                )
            )
            return SoftLockResult(
                job_id=job.job_id,
                bid_id=bid.bid_id,
                soft_locked_at=now,
                expires_at=soft_lock_deadline(job),
            )

    raise _timed_out(job_id, reason)


def confirm_soft_lock(*, job_id: int, dealer_id: int, now=None) -> AcceptResult:
    now = now or timezone.now()

    with transaction.atomic():
        job = _lock_job(job_id)
        _ensure_dealer(job, dealer_id)
        reason = expire_job_if_due(job, now=now)
        if not reason:
            if job.soft_locked_at is None or job.soft_lock_bid_id is None:
                raise JobConflict("NO_SOFT_LOCK", f"Job {job_id} has no active soft lock.")
            bid = _lock_bid(job, job.soft_lock_bid_id)
            return _accept_locked(job, bid, now=now)

    raise _timed_out(job_id, reason)


def cancel_job(*, job_id: int, dealer_id: int, reason: str = "", now=None) -> JobResult:
    """Dealer-initiated cancellation. Leaves rejected_at empty, so it is never repostable."""
    now = now or timezone.now()

    with transaction.atomic():
        job = _lock_job(job_id)
        _ensure_dealer(job, dealer_id)
        timeout = expire_job_if_due(job, now=now)
        if not timeout:
            if job.status not in (
                Job.JobStatus.PENDING,
                Job.JobStatus.APPROVED,
                Job.JobStatus.WAITING_FOR_PAYMENT,
            ):
                raise JobConflict("INVALID_TRANSITION", f"Job {job_id} cannot be cancelled from {job.status}.")
            ensure_transition(job, Job.JobStatus.CANCELLED)

            job.status = Job.JobStatus.CANCELLED
            job.cancelled_at = now
            job.cancellation_reason = (reason or "")[:255]
            _clear_soft_lock(job)
            job.save(
                update_fields=[
                    "status",
                    "cancelled_at",
                    "cancellation_reason",
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
            _record(job, JobEvent.EventType.CANCELLED, now=now, note=job.cancellation_reason)
            return JobResult(job_id=job.job_id, job_status=job.status)

    raise JobConflict("INVALID_TRANSITION", f"Job {job_id} was already cancelled by {timeout}.")


def start_job(*, job_id: int, technician_id: int, now=None) -> JobResult:
    now = now or timezone.now()

    with transaction.atomic():
        job = _lock_job(job_id)
        if job.assigned_technician_id != technician_id:
            raise PermissionError("technician_not_allowed")
        ensure_transition(job, Job.JobStatus.IN_PROGRESS)

        job.status = Job.JobStatus.IN_PROGRESS
        job.started_at = now
        job.save(update_fields=["status", "started_at", "updated_at"])
        _record(job, JobEvent.EventType.STARTED, now=now, technician_id=technician_id)

    return JobResult(job_id=job.job_id, job_status=job.status)


def complete_job(*, job_id: int, technician_id: int, now=None) -> JobResult:
    """Marks the work done and opens the warranty in the same transaction."""
    now = now or timezone.now()

    with transaction.atomic():
        job = _lock_job(job_id)
        if job.assigned_technician_id != technician_id:
            raise PermissionError("technician_not_allowed")
        ensure_transition(job, Job.JobStatus.COMPLETED)

        job.status = Job.JobStatus.COMPLETED
        job.completed_at = now
        job.save(update_fields=["status", "completed_at", "updated_at"])
        warranty = create_warranty_for_job(job, now=now)
        _record(
            job,
            JobEvent.EventType.COMPLETED,
            now=now,
            technician_id=technician_id,
            note=f"warranty={warranty.pk}",
        )

    return JobResult(job_id=job.job_id, job_status=job.status, note=f"warranty={warranty.pk}")


def raise_dispute(*, job_id: int, reason: str = "", now=None) -> JobResult:
    """Flags the job as disputed. Resolution happens outside this system."""
    now = now or timezone.now()

    with transaction.atomic():
        job = _lock_job(job_id)
        timeout = expire_job_if_due(job, now=now)
        if not timeout:
            if job.status in TERMINAL_STATUSES:
                raise JobConflict("INVALID_TRANSITION", f"Job {job_id} is already {job.status}.")
            ensure_transition(job, Job.JobStatus.DISPUTED)

            job.status = Job.JobStatus.DISPUTED
            job.disputed_at = now
            job.dispute_reason = (reason or "")[:255]
            job.save(update_fields=["status", "disputed_at", "dispute_reason", "updated_at"])
            _record(job, JobEvent.EventType.DISPUTED, now=now, note=job.dispute_reason)
            return JobResult(job_id=job.job_id, job_status=job.status)

    raise JobConflict("INVALID_TRANSITION", f"Job {job_id} was already cancelled by {timeout}.")
