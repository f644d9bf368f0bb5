# jobs/signals.py

from django.db.models.signals import post_save
from django.dispatch import receiver

from .models import Job


@receiver(post_save, sender=Job)
def assign_job_number(sender, instance: Job, created: bool, **kwargs):
    # Display number depends on the PK, so it is set right after insert
    if not created or instance.job_number:
        return

    instance.job_number = f"JOB-{instance.job_id:06d}"
    Job.objects.filter(pk=instance.pk).update(job_number=instance.job_number)
