import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("jobs", "0001_initial"),
        ("technicians", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="WarrantyRecord",
            fields=[
                ("warranty_id", models.BigAutoField(primary_key=True, serialize=False)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("ACTIVE", "Active"),
                            ("EXPIRED", "Expired"),
                            ("ISSUE_REPORTED", "Issue reported"),
                            ("REWORK_IN_PROGRESS", "Rework in progress"),
                            ("REWORK_COMPLETED", "Rework completed"),
                        ],
                        db_index=True,
                        default="ACTIVE",
                        max_length=30,
                    ),
                ),
                ("warranty_days", models.PositiveIntegerField()),
                ("start_date", models.DateTimeField()),
                ("end_date", models.DateTimeField(db_index=True)),
                ("issue_description", models.TextField(blank=True, default="")),
                ("issue_reported_at", models.DateTimeField(blank=True, null=True)),
                ("rework_started_at", models.DateTimeField(blank=True, null=True)),
                ("rework_completed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "job",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="warranty",
                        to="jobs.job",
                    ),
                ),
                (
                    "rework_technician",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="rework_warranties",
                        to="technicians.technician",
                    ),
                ),
            ],
            options={
                "db_table": "warranty_record",
            },
        ),
    ]
