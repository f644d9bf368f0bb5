import json
from dataclasses import asdict, is_dataclass

from django.core.exceptions import ObjectDoesNotExist
from django.http import JsonResponse

from jobs.errors import JobFlowError

ERROR_STATUS = {
    "validation": 400,
    "conflict": 409,
    "policy": 422,
}


def json_body(request):
    if not request.body:
        return {}
    try:
        data = json.loads(request.body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def int_field(data: dict, name: str):
    try:
        return int(data.get(name))
    except (TypeError, ValueError):
        return None


def error_response(error: str, status: int, **extra) -> JsonResponse:
    return JsonResponse({"ok": False, "error": error, **extra}, status=status)


def run_service(func, **kwargs) -> JsonResponse:
    """Call a service and translate its outcome into the API envelope."""
    try:
        result = func(**kwargs)
    except JobFlowError as e:
        return error_response(
            e.code,
            ERROR_STATUS.get(e.kind, 400),
            kind=e.kind,
            detail=e.detail,
        )
    except PermissionError as e:
        return error_response(str(e) or "not_allowed", 403)
    except ObjectDoesNotExist:
        return error_response("not_found", 404)

    if is_dataclass(result):
        result = asdict(result)
    return JsonResponse({"ok": True, "result": result}, safe=False)


def body_or_error(request, *required):
    """Parse the JSON body and require integer ids; returns (data, error_response)."""
    data = json_body(request)
    if data is None:
        return None, error_response("invalid_json", 400)
    for name in required:
        if int_field(data, name) is None:
            return None, error_response(f"{name}_required", 400)
    return data, None
