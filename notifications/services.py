import logging

from django.conf import settings
from django.core.mail import send_mail

from dealers.models import Dealer
from jobs.events import (
    BidAccepted,
    BidReceived,
    BidRejected,
    CounterOffered,
    JobReposted,
    JobTimedOut,
    PaymentLocked,
    WarrantyIssueReported,
)
from jobs.models import Job
from technicians.models import Technician

logger = logging.getLogger(__name__)

SUBJECTS = {
    "BidReceived": "New bid on {job}",
    "CounterOffered": "Counter-offer on {job}",
    "BidAccepted": "Your bid on {job} was accepted",
    "BidRejected": "Your bid on {job} was declined",
    "PaymentLocked": "Payment confirmed for {job}",
    "JobTimedOut": "{job} was cancelled",
    "JobReposted": "{job} is open for bids again",
    "WarrantyIssueReported": "Warranty issue reported on {job}",
}


def _dealer_email(dealer_id):
    return Dealer.objects.filter(dealer_id=dealer_id).values_list("email", flat=True).first()


def _technician_email(technician_id):
    if technician_id is None:
        return None
    return Technician.objects.filter(technician_id=technician_id).values_list("email", flat=True).first()


def recipients_for(event) -> list[str]:
    if isinstance(event, (BidReceived, JobTimedOut, JobReposted)):
        emails = [_dealer_email(event.dealer_id)]
    elif isinstance(event, (CounterOffered, BidAccepted, BidRejected)):
        emails = [_technician_email(event.technician_id)]
    elif isinstance(event, (PaymentLocked, WarrantyIssueReported)):
        emails = [_dealer_email(event.dealer_id), _technician_email(event.technician_id)]
    else:
        emails = []
    return [e for e in emails if e]


def notify(event_name: str, job_id: int, recipient: str) -> bool:
    """Fire-and-forget: a delivery failure is logged and never reaches the caller."""
    job = Job.objects.filter(job_id=job_id).only("job_id", "job_number", "title").first()
    label = job.job_number if job and job.job_number else f"job {job_id}"
    subject = SUBJECTS.get(event_name, "Update on {job}").format(job=label)

    message = f"""
{subject}.

Job: {label}
Title: {job.title if job else "-"}

Open the D.G.Yard app for details.

Thank you,
D.G.Yard Team
"""

    try:
        send_mail(
            subject,
            message,
            settings.DEFAULT_FROM_EMAIL,
            [recipient],
            fail_silently=False,
        )
    except Exception:
        logger.exception("notification %s for job %s to %s failed", event_name, job_id, recipient)
        return False
    return True


def dispatch_job_event(sender, event, **kwargs):
    event_name = type(event).__name__
    for recipient in recipients_for(event):
        notify(event_name, event.job_id, recipient)
