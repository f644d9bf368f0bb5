from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from itertools import count

from dealers.models import Dealer
from jobs.models import Job
from jobs.services import accept_bid, place_bid, post_job
from technicians.models import Technician

T0 = datetime(2026, 3, 2, 10, 0, tzinfo=dt_timezone.utc)

_dealer_seq = count(1)


class JobFlowMixin:
    """Shared builders for job flow tests."""

    def _make_dealer(self, suffix: str = "") -> Dealer:
        suffix = suffix or f"d{next(_dealer_seq)}"
        return Dealer.objects.create(
            business_name=f"Yard Motors {suffix}",
            contact_name="Ravi Dealer",
            phone_number="9800000000",
            email=f"dealer.{suffix}@test.local",
            city="Pune",
        )

    def _make_technician(self, n: int = 1, **extra) -> Technician:
        fields = {
            "full_name": f"Tech Person {n}",
            "email": f"tech{n}@test.local",
            "mobile": f"98111000{n:02d}",
            "place_name": "Kothrud",
            "latitude": Decimal("18.507400"),
            "longitude": Decimal("73.807700"),
        }
        fields.update(extra)
        return Technician.objects.create(**fields)

    def _make_job(self, dealer=None, *, estimated_cost="5000.00", now=T0, **extra) -> Job:
        dealer = dealer or self._make_dealer()
        return post_job(
            dealer_id=dealer.dealer_id,
            title="CCTV installation",
            estimated_cost=estimated_cost,
            description="4 camera install at showroom",
            city="Pune",
            latitude=Decimal("18.520400"),
            longitude=Decimal("73.856700"),
            now=now,
            **extra,
        )

    def _bid(self, job: Job, technician: Technician, price, *, now=T0):
        return place_bid(
            job_id=job.job_id,
            technician_id=technician.technician_id,
            offered_price=price,
            now=now,
        )

    def _job_waiting_for_payment(self, *, price="4500.00", now=T0, dealer=None, technician=None):
        job = self._make_job(dealer, now=now)
        technician = technician or self._make_technician(1)
        bid = self._bid(job, technician, price, now=now)
        accept_bid(job_id=job.job_id, bid_id=bid.bid_id, dealer_id=job.dealer_id, now=now)
        job.refresh_from_db()
        return job, technician, bid
