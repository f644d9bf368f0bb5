from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from core.http import body_or_error, error_response, int_field, json_body, run_service

from .services import (
    assign_rework_technician,
    complete_rework,
    dealer_warranty_overview,
    get_warranty_view,
    report_warranty_issue,
)


@require_GET
def api_warranty_detail(request, warranty_id: int):
    return run_service(get_warranty_view, warranty_id=warranty_id)


@require_GET
def api_dealer_warranties(request, dealer_id: int):
    return run_service(dealer_warranty_overview, dealer_id=dealer_id)


@csrf_exempt
@require_POST
def api_warranty_report_issue(request, warranty_id: int):
    data, err = body_or_error(request, "dealer_id")
    if err:
        return err

    return run_service(
        report_warranty_issue,
        warranty_id=warranty_id,
        description=data.get("description") or "",
        dealer_id=int_field(data, "dealer_id"),
    )


@csrf_exempt
@require_POST
def api_warranty_assign_rework(request, warranty_id: int):
    data = json_body(request)
    if data is None:
        return error_response("invalid_json", 400)
    technician_id = int_field(data, "technician_id")
    if technician_id is None:
        return error_response("technician_id_required", 400)

    return run_service(assign_rework_technician, warranty_id=warranty_id, technician_id=technician_id)


@csrf_exempt
@require_POST
def api_warranty_complete_rework(request, warranty_id: int):
    data = json_body(request)
    if data is None:
        return error_response("invalid_json", 400)

    return run_service(
        complete_rework,
        warranty_id=warranty_id,
        technician_id=int_field(data, "technician_id"),
    )
