"""
Domain events raised by job transitions.

Events are dispatched through the ``job_event`` signal only after the
surrounding transaction commits, so a rolled-back transition never notifies.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.dispatch import Signal

job_event = Signal()


@dataclass(frozen=True)
class BidReceived:
    job_id: int
    bid_id: int
    dealer_id: int
    offered_price: Decimal


@dataclass(frozen=True)
class CounterOffered:
    job_id: int
    bid_id: int
    technician_id: int
    amount: Decimal
    round_number: int


@dataclass(frozen=True)
class BidAccepted:
    job_id: int
    bid_id: int
    technician_id: int
    final_price: Decimal


@dataclass(frozen=True)
class BidRejected:
    job_id: int
    bid_id: int
    technician_id: int


@dataclass(frozen=True)
class PaymentLocked:
    job_id: int
    transaction_id: int
    technician_id: int
    dealer_id: int


@dataclass(frozen=True)
class JobTimedOut:
    job_id: int
    dealer_id: int
    reason: str


@dataclass(frozen=True)
class JobReposted:
    job_id: int
    source_job_id: int
    dealer_id: int


@dataclass(frozen=True)
class WarrantyIssueReported:
    job_id: int
    warranty_id: int
    dealer_id: int
    technician_id: Optional[int]


def emit(event) -> None:
    transaction.on_commit(lambda: job_event.send(sender=type(event), event=event))
