from .errors import JobConflict
from .models import Job

S = Job.JobStatus

ALLOWED_TRANSITIONS = {
    S.PENDING: {S.APPROVED, S.CANCELLED, S.DISPUTED},
    S.APPROVED: {S.WAITING_FOR_PAYMENT, S.CANCELLED, S.DISPUTED},
    S.WAITING_FOR_PAYMENT: {S.ASSIGNED, S.CANCELLED, S.DISPUTED},
    S.ASSIGNED: {S.IN_PROGRESS, S.DISPUTED},
    S.IN_PROGRESS: {S.COMPLETED, S.DISPUTED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
    S.DISPUTED: set(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)


def can_transition(from_status, to_status) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def ensure_transition(job: Job, to_status) -> None:
    if not can_transition(job.status, to_status):
        raise JobConflict(
            "INVALID_TRANSITION",
            f"Cannot move job {job.job_id} from {job.status} to {to_status}.",
        )
