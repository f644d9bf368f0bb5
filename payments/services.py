from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.stripe_client import get_stripe
from jobs.errors import JobConflict, JobPolicyError, JobValidationError
from jobs.events import PaymentLocked, emit
from jobs.models import Job, JobBid, JobEvent
from jobs.services import parse_amount
from jobs.services_timeouts import expire_job_if_due, refresh_job_timeouts
from jobs.transitions import ensure_transition
from payments.models import PaymentTransaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentResult:
    job_id: int
    transaction_id: int
    job_status: str
    already_processed: bool


@dataclass(frozen=True)
class PaymentOrder:
    job_id: int
    order_id: str
    client_secret: str
    amount: Decimal
    currency: str


def _replay(existing: PaymentTransaction, amount: Decimal, job: Job) -> PaymentResult:
    if existing.total_amount != amount:
        raise JobConflict(
            "DUPLICATE_PAYMENT_DIFFERENT_AMOUNT",
            f"Payment {existing.external_payment_id} was recorded with {existing.total_amount}, got {amount}.",
        )
    return PaymentResult(
        job_id=job.job_id,
        transaction_id=existing.transaction_id,
        job_status=job.status,
        already_processed=True,
    )


def lock_payment(
    *,
    job_id: int,
    total_amount,
    payment_method: str,
    external_order_id: str,
    external_payment_id: str,
    now=None,
) -> PaymentResult:
    """
    Binds a confirmed payment to a job exactly once.

    - (job, external_payment_id) is the idempotency key: a replay with the same
      amount returns already_processed=True and has no side effects
    - a passed payment deadline is committed as a timeout before the call fails
    - on success the accepted bid's technician becomes the assigned technician
    """
    now = now or timezone.now()
    amount = parse_amount(total_amount, "INVALID_AMOUNT")
    if amount <= 0:
        raise JobValidationError("INVALID_AMOUNT", "total_amount must be positive.")

    method = (payment_method or "").strip().upper()
    if method not in PaymentTransaction.PaymentMethod.values:
        raise JobValidationError("INVALID_PAYMENT_METHOD", f"Unsupported payment method {payment_method!r}.")

    external_payment_id = (external_payment_id or "").strip()
    if not external_payment_id:
        raise JobValidationError("INVALID_PAYMENT_REFERENCE", "external_payment_id is required.")

    with transaction.atomic():
        job = Job.objects.select_for_update().get(job_id=job_id)

        existing = PaymentTransaction.objects.filter(
            job_id=job.job_id,
            external_payment_id=external_payment_id,
        ).first()
        if existing is not None:
            return _replay(existing, amount, job)

        reason = expire_job_if_due(job, now=now)
        if not reason:
            if job.status != Job.JobStatus.WAITING_FOR_PAYMENT:
                raise JobPolicyError(
                    "JOB_NOT_WAITING_FOR_PAYMENT",
                    f"Job {job_id} is {job.status}.",
                )
            if amount != job.payable_amount:
                raise JobValidationError(
                    "AMOUNT_MISMATCH",
                    f"Expected {job.payable_amount}, got {amount}.",
                )

            accepted = JobBid.objects.filter(
                job_id=job.job_id,
                status=JobBid.BidStatus.ACCEPTED,
            ).first()
            if accepted is None:
                raise JobConflict("NO_ACCEPTED_BID", f"Job {job_id} has no accepted bid.")

            try:
                with transaction.atomic():
                    txn = PaymentTransaction.objects.create(
                        job=job,
                        external_order_id=(external_order_id or "")[:255],
                        external_payment_id=external_payment_id,
                        total_amount=amount,
                        payment_method=method,
                        created_at=now,
                    )
            except IntegrityError:
                existing = PaymentTransaction.objects.get(
                    job_id=job.job_id,
                    external_payment_id=external_payment_id,
                )
                return _replay(existing, amount, job)

            ensure_transition(job, Job.JobStatus.ASSIGNED)
            job.status = Job.JobStatus.ASSIGNED
            job.payment_locked = True
            job.payment_locked_at = now
            job.assigned_technician_id = accepted.technician_id
            job.save(
                update_fields=[
                    "status",
                    "payment_locked",
                    "payment_locked_at",
                    "assigned_technician",
                    "updated_at",
                ]
            )

            JobEvent.objects.create(
                job=job,
                event_type=JobEvent.EventType.PAYMENT_LOCKED,
                technician_id=accepted.technician_id,
                bid_id=accepted.bid_id,
                note=f"{method} {external_payment_id}"[:255],
                created_at=now,
            )
            emit(
                PaymentLocked(
                    job_id=job.job_id,
                    transaction_id=txn.transaction_id,
                    technician_id=accepted.technician_id,
                    dealer_id=job.dealer_id,
                )
            )
            logger.info("job %s payment locked (%s %s)", job.job_id, method, amount)

            return PaymentResult(
                job_id=job.job_id,
                transaction_id=txn.transaction_id,
                job_status=job.status,
                already_processed=False,
            )

    raise JobPolicyError(
        "JOB_NOT_WAITING_FOR_PAYMENT",
        f"Job {job_id} was cancelled by {reason}.",
    )


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def create_payment_order(*, job_id: int, now=None) -> PaymentOrder:
    """Opens a gateway PaymentIntent for the amount the dealer has to pay."""
    refresh_job_timeouts(job_id, now=now)
    job = Job.objects.get(job_id=job_id)
    if job.status != Job.JobStatus.WAITING_FOR_PAYMENT:
        raise JobPolicyError("JOB_NOT_WAITING_FOR_PAYMENT", f"Job {job_id} is {job.status}.")

    amount = job.payable_amount
    currency = getattr(settings, "STRIPE_CURRENCY", "inr")
    stripe = get_stripe()
    intent = stripe.PaymentIntent.create(
        amount=to_minor_units(amount),
        currency=currency,
        metadata={
            "job_id": str(job.job_id),
            "job_number": job.job_number or "",
            "dgyard_env": str(settings.STRIPE_MODE),
        },
        idempotency_key=f"job_{job.job_id}_payment_order_{settings.STRIPE_MODE}",
    )

    return PaymentOrder(
        job_id=job.job_id,
        order_id=intent.id,
        client_secret=intent.client_secret,
        amount=amount,
        currency=currency,
    )
