import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models

import jobs.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("dealers", "0001_initial"),
        ("technicians", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Job",
            fields=[
                ("job_id", models.AutoField(primary_key=True, serialize=False)),
                ("job_number", models.CharField(blank=True, max_length=20, null=True, unique=True)),
                ("title", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("city", models.CharField(blank=True, default="", max_length=100)),
                ("address_line1", models.CharField(blank=True, default="", max_length=255)),
                ("latitude", models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True)),
                ("longitude", models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True)),
                ("estimated_cost", models.DecimalField(decimal_places=2, max_digits=12)),
                ("final_price", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("warranty_days", models.PositiveIntegerField(default=jobs.models._default_warranty_days)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("approved", "Approved"),
                            ("waiting_for_payment", "Waiting for payment"),
                            ("assigned", "Assigned"),
                            ("in_progress", "In progress"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                            ("disputed", "Disputed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=30,
                    ),
                ),
                ("negotiation_rounds", models.PositiveSmallIntegerField(default=0)),
                ("soft_locked_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("accepted_at", models.DateTimeField(blank=True, null=True)),
                ("payment_requested_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("payment_locked", models.BooleanField(default=False)),
                ("payment_locked_at", models.DateTimeField(blank=True, null=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("disputed_at", models.DateTimeField(blank=True, null=True)),
                ("dispute_reason", models.CharField(blank=True, default="", max_length=255)),
                ("rejected_at", models.DateTimeField(blank=True, null=True)),
                ("rejection_reason", models.CharField(blank=True, default="", max_length=255)),
                ("timeout_reasons", models.JSONField(blank=True, default=list)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancellation_reason", models.CharField(blank=True, default="", max_length=255)),
                ("repost_count", models.PositiveSmallIntegerField(default=0)),
                ("max_reposts", models.PositiveSmallIntegerField(default=jobs.models._default_max_reposts)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "dealer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="jobs",
                        to="dealers.dealer",
                    ),
                ),
                (
                    "assigned_technician",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="assigned_jobs",
                        to="technicians.technician",
                    ),
                ),
                (
                    "soft_locked_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="soft_locked_jobs",
                        to="technicians.technician",
                    ),
                ),
                (
                    "reposted_from",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="reposts",
                        to="jobs.job",
                    ),
                ),
                (
                    "lineage_root",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="lineage",
                        to="jobs.job",
                    ),
                ),
            ],
            options={
                "db_table": "job",
                "indexes": [
                    models.Index(fields=["status", "payment_requested_at"], name="job_status_pay_req_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("assigned_technician__isnull", True), ("payment_locked", True), _connector="OR"),
                        name="ck_job_technician_requires_payment_lock",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("negotiation_rounds__lte", 2)),
                        name="ck_job_negotiation_rounds_bounded",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("estimated_cost__gte", 0)),
                        name="ck_job_estimated_cost_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("final_price__isnull", True), ("final_price__gte", 0), _connector="OR"),
                        name="ck_job_final_price_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("repost_count__lte", models.F("max_reposts"))),
                        name="ck_job_repost_count_bounded",
                    ),
                    models.UniqueConstraint(fields=("reposted_from",), name="uq_job_one_repost_per_source"),
                ],
            },
        ),
        migrations.CreateModel(
            name="JobBid",
            fields=[
                ("bid_id", models.BigAutoField(primary_key=True, serialize=False)),
                ("offered_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("message", models.CharField(blank=True, default="", max_length=500)),
                ("round_number", models.PositiveSmallIntegerField(default=1)),
                ("is_counter_offer", models.BooleanField(default=False)),
                (
                    "offered_by",
                    models.CharField(
                        choices=[("technician", "Technician"), ("dealer", "Dealer")],
                        default="technician",
                        max_length=20,
                    ),
                ),
                ("distance_km", models.DecimalField(blank=True, decimal_places=2, max_digits=8, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("accepted", "Accepted"),
                            ("rejected", "Rejected"),
                            ("countered", "Countered"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("responded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bids",
                        to="jobs.job",
                    ),
                ),
                (
                    "technician",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bids",
                        to="technicians.technician",
                    ),
                ),
                (
                    "previous_bid",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="counters",
                        to="jobs.jobbid",
                    ),
                ),
            ],
            options={
                "db_table": "job_bid",
                "ordering": ["created_at", "bid_id"],
                "indexes": [
                    models.Index(fields=["job", "status", "created_at"], name="job_bid_job_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "accepted")),
                        fields=("job",),
                        name="uq_job_bid_one_accepted_per_job",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("offered_price__gt", 0)),
                        name="ck_job_bid_offered_price_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("round_number__gte", 1)),
                        name="ck_job_bid_round_number_positive",
                    ),
                ],
            },
        ),
        # Job and JobBid point at each other; the soft-lock bid is added once both tables exist.
        migrations.AddField(
            model_name="job",
            name="soft_lock_bid",
            field=models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="+",
                to="jobs.jobbid",
            ),
        ),
        migrations.CreateModel(
            name="JobEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "event_type",
                    models.CharField(
                        choices=[
                            ("posted", "posted"),
                            ("bid_placed", "bid_placed"),
                            ("soft_locked", "soft_locked"),
                            ("bid_accepted", "bid_accepted"),
                            ("counter_offered", "counter_offered"),
                            ("counter_declined", "counter_declined"),
                            ("bid_rejected", "bid_rejected"),
                            ("payment_locked", "payment_locked"),
                            ("timed_out", "timed_out"),
                            ("reposted", "reposted"),
                            ("cancelled", "cancelled"),
                            ("started", "started"),
                            ("completed", "completed"),
                            ("disputed", "disputed"),
                        ],
                        db_index=True,
                        max_length=40,
                    ),
                ),
                ("technician_id", models.IntegerField(blank=True, db_index=True, null=True)),
                ("bid_id", models.BigIntegerField(blank=True, null=True)),
                ("note", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="events",
                        to="jobs.job",
                    ),
                ),
            ],
            options={
                "db_table": "job_event",
                "indexes": [
                    models.Index(fields=["job", "event_type", "created_at"], name="job_event_job_type_idx"),
                ],
            },
        ),
    ]
