from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from jobs.services_timeouts import SWEEP_BATCH_SIZE, due_job_ids, refresh_job_timeouts


class Command(BaseCommand):
    help = "Cancels jobs whose soft lock, payment deadline or negotiation window has expired."

    def add_arguments(self, parser):
        parser.add_argument("--now", help="ISO timestamp to evaluate deadlines against.")
        parser.add_argument("--limit", type=int, default=SWEEP_BATCH_SIZE)

    def handle(self, *args, **options):
        now = timezone.now()
        if options.get("now"):
            now = parse_datetime(options["now"])
            if now is None:
                raise CommandError(f"Invalid --now value: {options['now']}")
            if timezone.is_naive(now):
                now = timezone.make_aware(now)

        due_ids = due_job_ids(now=now, limit=options["limit"])
        self.stdout.write(f"NOW: {now.isoformat()}")
        self.stdout.write(f"DUE TIMEOUT JOBS: {len(due_ids)}")

        transitioned = 0
        for job_id in due_ids:
            reason = refresh_job_timeouts(job_id, now=now)
            if reason:
                transitioned += 1
            self.stdout.write(f"JOB {job_id} RESULT: {reason or 'skipped'}")

        self.stdout.write(f"TRANSITIONED: {transitioned}")
