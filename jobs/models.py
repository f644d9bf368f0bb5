from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

MAX_NEGOTIATION_ROUNDS = 2


class TimeoutReason(models.TextChoices):
    SOFT_LOCK_TIMEOUT = "SOFT_LOCK_TIMEOUT", "Soft lock timeout"
    PAYMENT_DEADLINE_TIMEOUT = "PAYMENT_DEADLINE_TIMEOUT", "Payment deadline timeout"
    NEGOTIATION_TIMEOUT = "NEGOTIATION_TIMEOUT", "Negotiation timeout"


def _default_max_reposts():
    return getattr(settings, "JOB_MAX_REPOSTS", 3)


def _default_warranty_days():
    return getattr(settings, "WARRANTY_DEFAULT_DAYS", 30)


class Job(models.Model):
    class JobStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        APPROVED = "approved", "Approved"
        WAITING_FOR_PAYMENT = "waiting_for_payment", "Waiting for payment"
        ASSIGNED = "assigned", "Assigned"
        IN_PROGRESS = "in_progress", "In progress"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"
        DISPUTED = "disputed", "Disputed"

    job_id = models.AutoField(primary_key=True)
    job_number = models.CharField(max_length=20, unique=True, null=True, blank=True)

    dealer = models.ForeignKey(
        "dealers.Dealer",
        on_delete=models.PROTECT,
        related_name="jobs",
    )

    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    city = models.CharField(max_length=100, blank=True, default="")
    address_line1 = models.CharField(max_length=255, blank=True, default="")
    latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)

    estimated_cost = models.DecimalField(max_digits=12, decimal_places=2)
    final_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    warranty_days = models.PositiveIntegerField(default=_default_warranty_days)

    status = models.CharField(
        max_length=30,
        choices=JobStatus.choices,
        default=JobStatus.PENDING,
        db_index=True,
    )

    # Only ever set together with payment_locked.
    assigned_technician = models.ForeignKey(
        "technicians.Technician",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="assigned_jobs",
    )

    negotiation_rounds = models.PositiveSmallIntegerField(default=0)

    soft_locked_at = models.DateTimeField(null=True, blank=True, db_index=True)
    soft_locked_by = models.ForeignKey(
        "technicians.Technician",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="soft_locked_jobs",
    )
    soft_lock_bid = models.ForeignKey(
        "jobs.JobBid",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    accepted_at = models.DateTimeField(null=True, blank=True)
    payment_requested_at = models.DateTimeField(null=True, blank=True, db_index=True)
    payment_locked = models.BooleanField(default=False)
    payment_locked_at = models.DateTimeField(null=True, blank=True)

    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    disputed_at = models.DateTimeField(null=True, blank=True)
    dispute_reason = models.CharField(max_length=255, blank=True, default="")

    # Rejection trail. rejected_at is only set by a system timeout.
    rejected_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.CharField(max_length=255, blank=True, default="")
    timeout_reasons = models.JSONField(default=list, blank=True)

    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True, default="")

    # The lineage counter lives on the root job; reposts copy it as a snapshot.
    repost_count = models.PositiveSmallIntegerField(default=0)
    max_reposts = models.PositiveSmallIntegerField(default=_default_max_reposts)
    reposted_from = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reposts",
    )
    lineage_root = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="lineage",
    )

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "job"
        constraints = [
            models.CheckConstraint(
                condition=Q(assigned_technician__isnull=True) | Q(payment_locked=True),
                name="ck_job_technician_requires_payment_lock",
            ),
            models.CheckConstraint(
                condition=Q(negotiation_rounds__lte=MAX_NEGOTIATION_ROUNDS),
                name="ck_job_negotiation_rounds_bounded",
            ),
            models.CheckConstraint(
                condition=Q(estimated_cost__gte=0),
                name="ck_job_estimated_cost_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(final_price__isnull=True) | Q(final_price__gte=0),
                name="ck_job_final_price_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(repost_count__lte=F("max_reposts")),
                name="ck_job_repost_count_bounded",
            ),
            models.UniqueConstraint(
                fields=["reposted_from"],
                name="uq_job_one_repost_per_source",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "payment_requested_at"], name="job_status_pay_req_idx"),
        ]

    def __str__(self):
        return self.job_number or f"Job {self.job_id}"

    @property
    def is_permanently_rejected(self) -> bool:
        return self.status == self.JobStatus.CANCELLED and self.rejected_at is not None

    @property
    def termination_kind(self):
        if self.status != self.JobStatus.CANCELLED:
            return None
        return "rejected" if self.rejected_at is not None else "cancelled"

    @property
    def lineage_head(self) -> "Job":
        return self.lineage_root if self.lineage_root_id else self

    @property
    def reposts_remaining(self) -> int:
        head = self.lineage_head
        return max(head.max_reposts - head.repost_count, 0)

    @property
    def can_repost(self) -> bool:
        return self.is_permanently_rejected and self.reposts_remaining > 0 and not self.reposts.exists()

    @property
    def payable_amount(self):
        return self.final_price if self.final_price is not None else self.estimated_cost


class JobBid(models.Model):
    class BidStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        ACCEPTED = "accepted", "Accepted"
        REJECTED = "rejected", "Rejected"
        COUNTERED = "countered", "Countered"

    class OfferedBy(models.TextChoices):
        TECHNICIAN = "technician", "Technician"
        DEALER = "dealer", "Dealer"

    OPEN_STATUSES = (BidStatus.PENDING, BidStatus.COUNTERED)

    bid_id = models.BigAutoField(primary_key=True)

    job = models.ForeignKey(
        "jobs.Job",
        on_delete=models.CASCADE,
        related_name="bids",
    )
    technician = models.ForeignKey(
        "technicians.Technician",
        on_delete=models.PROTECT,
        related_name="bids",
    )

    offered_price = models.DecimalField(max_digits=12, decimal_places=2)
    message = models.CharField(max_length=500, blank=True, default="")

    round_number = models.PositiveSmallIntegerField(default=1)
    is_counter_offer = models.BooleanField(default=False)
    offered_by = models.CharField(
        max_length=20,
        choices=OfferedBy.choices,
        default=OfferedBy.TECHNICIAN,
    )
    previous_bid = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="counters",
    )

    distance_km = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)

    status = models.CharField(
        max_length=20,
        choices=BidStatus.choices,
        default=BidStatus.PENDING,
        db_index=True,
    )

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    responded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "job_bid"
        ordering = ["created_at", "bid_id"]
        constraints = [
            models.UniqueConstraint(
                fields=["job"],
                condition=Q(status="accepted"),
                name="uq_job_bid_one_accepted_per_job",
            ),
            models.CheckConstraint(
                condition=Q(offered_price__gt=0),
                name="ck_job_bid_offered_price_positive",
            ),
            models.CheckConstraint(
                condition=Q(round_number__gte=1),
                name="ck_job_bid_round_number_positive",
            ),
        ]
        indexes = [
            models.Index(fields=["job", "status", "created_at"], name="job_bid_job_status_idx"),
        ]

    def __str__(self):
        return f"Bid {self.bid_id} job={self.job_id} {self.status}"


class JobEvent(models.Model):
    class EventType(models.TextChoices):
        POSTED = "posted", "posted"
        BID_PLACED = "bid_placed", "bid_placed"
        SOFT_LOCKED = "soft_locked", "soft_locked"
        BID_ACCEPTED = "bid_accepted", "bid_accepted"
        COUNTER_OFFERED = "counter_offered", "counter_offered"
        COUNTER_DECLINED = "counter_declined", "counter_declined"
        BID_REJECTED = "bid_rejected", "bid_rejected"
        PAYMENT_LOCKED = "payment_locked", "payment_locked"
        TIMED_OUT = "timed_out", "timed_out"
        REPOSTED = "reposted", "reposted"
        CANCELLED = "cancelled", "cancelled"
        STARTED = "started", "started"
        COMPLETED = "completed", "completed"
        DISPUTED = "disputed", "disputed"

    job = models.ForeignKey(
        "jobs.Job",
        on_delete=models.CASCADE,
        related_name="events",
        db_index=True,
    )

    event_type = models.CharField(max_length=40, choices=EventType.choices, db_index=True)

    technician_id = models.IntegerField(null=True, blank=True, db_index=True)
    bid_id = models.BigIntegerField(null=True, blank=True)

    note = models.CharField(max_length=255, blank=True, default="")

    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        db_table = "job_event"
        indexes = [
            models.Index(fields=["job", "event_type", "created_at"], name="job_event_job_type_idx"),
        ]

    def __str__(self):
        return f"{self.job_id} {self.event_type} {self.created_at}"
