import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("jobs", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="PaymentWebhookEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event_id", models.CharField(max_length=255, unique=True)),
                ("event_type", models.CharField(max_length=255)),
                ("payload", models.JSONField()),
                ("processing_status", models.CharField(default="received", max_length=50)),
                ("error_message", models.TextField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "payment_webhook_event",
                "indexes": [
                    models.Index(fields=["event_type"], name="payment_webhook_type_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentTransaction",
            fields=[
                ("transaction_id", models.BigAutoField(primary_key=True, serialize=False)),
                ("external_order_id", models.CharField(blank=True, db_index=True, default="", max_length=255)),
                ("external_payment_id", models.CharField(max_length=255)),
                ("total_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "payment_method",
                    models.CharField(choices=[("ONLINE", "Online"), ("CASH", "Cash")], max_length=10),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("succeeded", "Succeeded")],
                        db_index=True,
                        default="succeeded",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_transactions",
                        to="jobs.job",
                    ),
                ),
            ],
            options={
                "db_table": "payment_transaction",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("job", "external_payment_id"),
                        name="uq_payment_txn_job_external_payment",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("total_amount__gte", 0)),
                        name="ck_payment_txn_amount_non_negative",
                    ),
                ],
            },
        ),
    ]
