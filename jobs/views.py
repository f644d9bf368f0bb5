from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from core.http import body_or_error, error_response, int_field, run_service

from .disclosure import get_bids_view, get_job_view
from .services import (
    accept_bid,
    cancel_job,
    complete_job,
    confirm_soft_lock,
    counter_offer,
    place_bid,
    post_job,
    raise_dispute,
    reject_bid,
    respond_to_counter_offer,
    soft_lock_job,
    start_job,
)
from .services_repost import repost_job


def _role(request):
    return (request.GET.get("role") or "customer").strip().lower()


def _posted_job(**kwargs):
    job = post_job(**kwargs)
    return {"job_id": job.job_id, "job_number": job.job_number, "status": job.status}


@csrf_exempt
@require_POST
def api_job_create(request):
    data, err = body_or_error(request, "dealer_id")
    if err:
        return err

    return run_service(
        _posted_job,
        dealer_id=int_field(data, "dealer_id"),
        title=data.get("title") or "",
        estimated_cost=data.get("estimated_cost"),
        description=data.get("description") or "",
        city=data.get("city") or "",
        address_line1=data.get("address_line1") or "",
        latitude=data.get("latitude"),
        longitude=data.get("longitude"),
        warranty_days=data.get("warranty_days"),
    )


@require_GET
def api_job_detail(request, job_id: int):
    return run_service(get_job_view, job_id=job_id, requester_role=_role(request))


@csrf_exempt
@require_http_methods(["GET", "POST"])
def api_job_bids(request, job_id: int):
    if request.method == "GET":
        return run_service(get_bids_view, job_id=job_id, requester_role=_role(request))

    data, err = body_or_error(request, "technician_id")
    if err:
        return err

    return run_service(
        place_bid,
        job_id=job_id,
        technician_id=int_field(data, "technician_id"),
        offered_price=data.get("offered_price"),
        message=data.get("message") or "",
        distance_km=data.get("distance_km"),
    )


@csrf_exempt
@require_POST
def api_bid_accept(request, job_id: int, bid_id: int):
    data, err = body_or_error(request, "dealer_id")
    if err:
        return err
    return run_service(accept_bid, job_id=job_id, bid_id=bid_id, dealer_id=int_field(data, "dealer_id"))


@csrf_exempt
@require_POST
def api_bid_counter(request, job_id: int, bid_id: int):
    data, err = body_or_error(request, "dealer_id")
    if err:
        return err
    return run_service(
        counter_offer,
        job_id=job_id,
        bid_id=bid_id,
        amount=data.get("amount"),
        dealer_id=int_field(data, "dealer_id"),
    )


@csrf_exempt
@require_POST
def api_bid_reject(request, job_id: int, bid_id: int):
    data, err = body_or_error(request, "dealer_id")
    if err:
        return err
    return run_service(reject_bid, job_id=job_id, bid_id=bid_id, dealer_id=int_field(data, "dealer_id"))


@csrf_exempt
@require_POST
def api_bid_respond(request, job_id: int, bid_id: int):
    data, err = body_or_error(request, "technician_id")
    if err:
        return err
    if not isinstance(data.get("accept"), bool):
        return error_response("accept_required", 400)
    return run_service(
        respond_to_counter_offer,
        job_id=job_id,
        bid_id=bid_id,
        technician_id=int_field(data, "technician_id"),
        accept=data["accept"],
    )


@csrf_exempt
@require_POST
def api_job_soft_lock(request, job_id: int):
    data, err = body_or_error(request, "technician_id")
    if err:
        return err
    return run_service(soft_lock_job, job_id=job_id, technician_id=int_field(data, "technician_id"))


@csrf_exempt
@require_POST
def api_job_confirm_soft_lock(request, job_id: int):
    data, err = body_or_error(request, "dealer_id")
    if err:
        return err
    return run_service(confirm_soft_lock, job_id=job_id, dealer_id=int_field(data, "dealer_id"))


@csrf_exempt
@require_POST
def api_job_cancel(request, job_id: int):
    data, err = body_or_error(request, "dealer_id")
    if err:
        return err
    return run_service(
        cancel_job,
        job_id=job_id,
        dealer_id=int_field(data, "dealer_id"),
        reason=data.get("reason") or "",
    )


@csrf_exempt
@require_POST
def api_job_start(request, job_id: int):
    data, err = body_or_error(request, "technician_id")
    if err:
        return err
    return run_service(start_job, job_id=job_id, technician_id=int_field(data, "technician_id"))


@csrf_exempt
@require_POST
def api_job_complete(request, job_id: int):
    data, err = body_or_error(request, "technician_id")
    if err:
        return err
    return run_service(complete_job, job_id=job_id, technician_id=int_field(data, "technician_id"))


@csrf_exempt
@require_POST
def api_job_dispute(request, job_id: int):
    data, err = body_or_error(request)
    if err:
        return err
    return run_service(raise_dispute, job_id=job_id, reason=data.get("reason") or "")


@csrf_exempt
@require_POST
def api_job_repost(request, job_id: int):
    data, err = body_or_error(request, "dealer_id")
    if err:
        return err
    return run_service(repost_job, job_id=job_id, dealer_id=int_field(data, "dealer_id"))
