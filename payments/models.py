from django.db import models
from django.db.models import Q
from django.utils import timezone


class PaymentTransaction(models.Model):
    class PaymentMethod(models.TextChoices):
        ONLINE = "ONLINE", "Online"
        CASH = "CASH", "Cash"

    class Status(models.TextChoices):
        SUCCEEDED = "succeeded", "Succeeded"

    transaction_id = models.BigAutoField(primary_key=True)

    job = models.ForeignKey(
        "jobs.Job",
        on_delete=models.PROTECT,
        related_name="payment_transactions",
    )

    external_order_id = models.CharField(max_length=255, blank=True, default="", db_index=True)
    external_payment_id = models.CharField(max_length=255)

    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=10, choices=PaymentMethod.choices)

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.SUCCEEDED,
        db_index=True,
    )

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "payment_transaction"
        constraints = [
            models.UniqueConstraint(
                fields=["job", "external_payment_id"],
                name="uq_payment_txn_job_external_payment",
            ),
            models.CheckConstraint(
                condition=Q(total_amount__gte=0),
                name="ck_payment_txn_amount_non_negative",
            ),
        ]

    def __str__(self):
        return f"{self.job_id} {self.external_payment_id} {self.total_amount}"


class PaymentWebhookEvent(models.Model):
    event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=255)

    payload = models.JSONField()

    processing_status = models.CharField(
        max_length=50,
        default="received",
    )

    error_message = models.TextField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "payment_webhook_event"
        indexes = [
            models.Index(fields=["event_type"], name="payment_webhook_type_idx"),
        ]
