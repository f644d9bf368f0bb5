from django.db import models
from django.utils import timezone


class WarrantyRecord(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "ACTIVE", "Active"
        EXPIRED = "EXPIRED", "Expired"
        ISSUE_REPORTED = "ISSUE_REPORTED", "Issue reported"
        REWORK_IN_PROGRESS = "REWORK_IN_PROGRESS", "Rework in progress"
        REWORK_COMPLETED = "REWORK_COMPLETED", "Rework completed"

    warranty_id = models.BigAutoField(primary_key=True)

    job = models.OneToOneField(
        "jobs.Job",
        on_delete=models.PROTECT,
        related_name="warranty",
    )

    # EXPIRED is derived from end_date on read; only the workflow states are stored.
    status = models.CharField(
        max_length=30,
        choices=Status.choices,
        default=Status.ACTIVE,
        db_index=True,
    )

    warranty_days = models.PositiveIntegerField()
    start_date = models.DateTimeField()
    end_date = models.DateTimeField(db_index=True)

    issue_description = models.TextField(blank=True, default="")
    issue_reported_at = models.DateTimeField(null=True, blank=True)

    rework_technician = models.ForeignKey(
        "technicians.Technician",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="rework_warranties",
    )
    rework_started_at = models.DateTimeField(null=True, blank=True)
    rework_completed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "warranty_record"

    def __str__(self):
        return f"Warranty {self.warranty_id} job={self.job_id} {self.status}"
