"""
Read-side views of jobs and bids.

Technician identity is payment-gated: until ``payment_locked`` is true no
requester role sees who the technician is, on the job or on any bid.
``apply_disclosure_policy`` is the only place that rule lives; every read
path serializes first and filters last.
"""
from __future__ import annotations

from django.utils import timezone

from .errors import JobValidationError
from .models import Job, JobBid
from .services_timeouts import (
    negotiation_deadline,
    payment_deadline,
    refresh_job_timeouts,
    soft_lock_deadline,
)

REQUESTER_ROLES = ("admin", "dealer", "technician", "customer")

IDENTITY_FIELDS = ("technician", "technician_id", "soft_locked_by_id")


def _iso(value):
    return value.isoformat() if value is not None else None


def _money(value):
    return str(value) if value is not None else None


def serialize_technician(technician):
    if technician is None:
        return None
    return {
        "technician_id": technician.technician_id,
        "full_name": technician.full_name,
        "email": technician.email,
        "mobile": technician.mobile,
        "rating": str(technician.rating),
    }


def serialize_bid(bid: JobBid) -> dict:
    return {
        "bid_id": bid.bid_id,
        "job_id": bid.job_id,
        "technician": serialize_technician(bid.technician),
        "technician_id": bid.technician_id,
        "service_area_name": bid.technician.place_name,
        "offered_price": _money(bid.offered_price),
        "message": bid.message,
        "round_number": bid.round_number,
        "is_counter_offer": bid.is_counter_offer,
        "offered_by": bid.offered_by,
        "previous_bid_id": bid.previous_bid_id,
        "distance_km": _money(bid.distance_km),
        "status": bid.status,
        "created_at": _iso(bid.created_at),
    }


def serialize_job(job: Job, *, bids=None) -> dict:
    payload = {
        "job_id": job.job_id,
        "job_number": job.job_number,
        "dealer_id": job.dealer_id,
        "title": job.title,
        "description": job.description,
        "city": job.city,
        "status": job.status,
        "estimated_cost": _money(job.estimated_cost),
        "final_price": _money(job.final_price),
        "warranty_days": job.warranty_days,
        "negotiation_rounds": job.negotiation_rounds,
        "payment_locked": job.payment_locked,
        "technician": serialize_technician(job.assigned_technician),
        "technician_id": job.assigned_technician_id,
        "soft_lock": {
            "active": job.soft_locked_at is not None,
            "bid_id": job.soft_lock_bid_id,
            "expires_at": _iso(soft_lock_deadline(job)),
        },
        "soft_locked_by_id": job.soft_locked_by_id,
        "payment_deadline": _iso(payment_deadline(job))
        if job.status == Job.JobStatus.WAITING_FOR_PAYMENT
        else None,
        "negotiation_deadline": _iso(negotiation_deadline(job))
        if job.status == Job.JobStatus.PENDING
        else None,
        "termination_kind": job.termination_kind,
        "is_permanently_rejected": job.is_permanently_rejected,
        "rejected_at": _iso(job.rejected_at),
        "rejection_reason": job.rejection_reason or None,
        "timeout_reasons": list(job.timeout_reasons or []),
        "cancellation_reason": job.cancellation_reason or None,
        "repost": {
            "count": job.lineage_head.repost_count,
            "max": job.lineage_head.max_reposts,
            "remaining": job.reposts_remaining,
            "can_repost": job.can_repost,
            "reposted_from_id": job.reposted_from_id,
            "lineage_root_id": job.lineage_head.job_id,
        },
        "created_at": _iso(job.created_at),
    }
    if bids is not None:
        payload["bids"] = [serialize_bid(b) for b in bids]
    return payload


def _strip_identity(payload: dict) -> dict:
    return {k: v for k, v in payload.items() if k not in IDENTITY_FIELDS}


def apply_disclosure_policy(payload: dict) -> dict:
    """Returns a copy of a serialized job with technician identity removed unless payment is locked."""
    if payload.get("payment_locked"):
        return payload

    redacted = _strip_identity(payload)
    if "bids" in redacted:
        redacted["bids"] = [_strip_identity(b) for b in redacted["bids"]]
    return redacted


def _ensure_role(requester_role: str) -> None:
    if requester_role not in REQUESTER_ROLES:
        raise JobValidationError("INVALID_ROLE", f"Unknown requester role {requester_role!r}.")


def _load(job_id: int, *, now):
    refresh_job_timeouts(job_id, now=now)
    job = Job.objects.select_related("assigned_technician").get(job_id=job_id)
    bids = list(
        JobBid.objects.filter(job_id=job_id)
        .select_related("technician")
        .order_by("created_at", "bid_id")
    )
    return job, bids


def get_job_view(*, job_id: int, requester_role: str, now=None) -> dict:
    _ensure_role(requester_role)
    now = now or timezone.now()
    job, bids = _load(job_id, now=now)
    return apply_disclosure_policy(serialize_job(job, bids=bids))


def get_bids_view(*, job_id: int, requester_role: str, now=None) -> list[dict]:
    _ensure_role(requester_role)
    now = now or timezone.now()
    job, bids = _load(job_id, now=now)
    return apply_disclosure_policy(serialize_job(job, bids=bids))["bids"]
