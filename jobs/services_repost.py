from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import transaction
from django.utils import timezone

from .errors import JobConflict, JobPolicyError
from .events import JobReposted, emit
from .models import Job, JobEvent
from .services_timeouts import refresh_job_timeouts

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepostResult:
    job_id: int
    job_number: str
    source_job_id: int
    repost_count: int
    reposts_remaining: int


def repost_job(*, job_id: int, dealer_id: int, now=None) -> RepostResult:
    """
    Recreates a timed-out job as a fresh PENDING job.

    - only jobs with rejected_at set qualify; manual cancellations never do
    - a job is reposted at most once, so a lineage is a single chain
    - repost_count on the lineage root is bounded by max_reposts
    - the new job starts with no bids and zero negotiation rounds
    """
    now = now or timezone.now()

    # A deadline that passed but was never swept still counts as a rejection.
    refresh_job_timeouts(job_id, now=now)

    with transaction.atomic():
        root_id = Job.objects.values_list("lineage_root_id", flat=True).get(job_id=job_id) or job_id
        # Root first, so every repost in one lineage serializes on the same row.
        root = Job.objects.select_for_update().get(job_id=root_id)
        source = root if root_id == job_id else Job.objects.select_for_update().get(job_id=job_id)
        if source.dealer_id != dealer_id:
            raise PermissionError("dealer_not_allowed")

        if source.rejected_at is None:
            raise JobPolicyError(
                "JOB_NOT_REPOSTABLE",
                f"Job {job_id} was not rejected by a timeout (status={source.status}).",
            )
        if source.reposts.exists():
            raise JobConflict("JOB_ALREADY_REPOSTED", f"Job {job_id} was already reposted.")
        if root.repost_count >= root.max_reposts:
            raise JobPolicyError(
                "REPOST_LIMIT_EXCEEDED",
                f"Job {root.job_id} reached the limit of {root.max_reposts} reposts.",
            )

        root.repost_count += 1
        root.save(update_fields=["repost_count", "updated_at"])

        new_job = Job.objects.create(
            dealer_id=source.dealer_id,
            title=source.title,
            description=source.description,
            city=source.city,
            address_line1=source.address_line1,
            latitude=source.latitude,
            longitude=source.longitude,
            estimated_cost=source.estimated_cost,
            warranty_days=source.warranty_days,
            max_reposts=root.max_reposts,
            repost_count=root.repost_count,
            timeout_reasons=list(source.timeout_reasons or []),
            reposted_from=source,
            lineage_root=root,
            created_at=now,
        )

        JobEvent.objects.create(
            job=source,
            event_type=JobEvent.EventType.REPOSTED,
            note=f"new_job={new_job.job_id}",
            created_at=now,
        )
        JobEvent.objects.create(
            job=new_job,
            event_type=JobEvent.EventType.POSTED,
            note=f"repost_of={source.job_id}",
            created_at=now,
        )
        emit(JobReposted(job_id=new_job.job_id, source_job_id=source.job_id, dealer_id=source.dealer_id))

    logger.info(
        "job %s reposted as %s (lineage %s: %s/%s)",
        job_id,
        new_job.job_id,
        root.job_id,
        root.repost_count,
        root.max_reposts,
    )

    return RepostResult(
        job_id=new_job.job_id,
        job_number=new_job.job_number or "",
        source_job_id=source.job_id,
        repost_count=root.repost_count,
        reposts_remaining=root.reposts_remaining,
    )
