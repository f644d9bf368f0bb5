import logging
from decimal import Decimal

import stripe
from django.conf import settings
from django.core.exceptions import ObjectDoesNotExist
from django.http import HttpResponse, HttpResponseBadRequest
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from core.http import error_response, json_body, run_service
from jobs.errors import JobFlowError
from payments.models import PaymentTransaction, PaymentWebhookEvent
from payments.services import create_payment_order, lock_payment

logger = logging.getLogger(__name__)


def _event_payload(event):
    if hasattr(event, "to_dict_recursive"):
        return event.to_dict_recursive()
    if hasattr(event, "to_dict"):
        return event.to_dict()
    return dict(event)


@csrf_exempt
@require_POST
def api_lock_payment(request, job_id: int):
    data = json_body(request)
    if data is None:
        return error_response("invalid_json", 400)
    if not data.get("external_payment_id"):
        return error_response("external_payment_id_required", 400)

    return run_service(
        lock_payment,
        job_id=job_id,
        total_amount=data.get("total_amount"),
        payment_method=data.get("payment_method") or PaymentTransaction.PaymentMethod.ONLINE,
        external_order_id=data.get("external_order_id") or "",
        external_payment_id=str(data["external_payment_id"]),
    )


@csrf_exempt
@require_POST
def api_create_payment_order(request, job_id: int):
    return run_service(create_payment_order, job_id=job_id)


def _handle_payment_intent_succeeded(intent) -> None:
    metadata = intent.get("metadata") or {}
    job_id = int(metadata["job_id"])
    minor = intent.get("amount_received") or intent.get("amount") or 0
    # The PaymentIntent id is the payment reference on every path, client locks included.
    lock_payment(
        job_id=job_id,
        total_amount=Decimal(minor) / 100,
        payment_method=PaymentTransaction.PaymentMethod.ONLINE,
        external_order_id=intent["id"],
        external_payment_id=intent["id"],
    )


@csrf_exempt
def stripe_webhook(request):
    payload = request.body
    sig_header = request.META.get("HTTP_STRIPE_SIGNATURE")

    try:
        event = stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=settings.STRIPE_WEBHOOK_SECRET,
        )
    except stripe.SignatureVerificationError:
        return HttpResponseBadRequest("Invalid signature")
    except ValueError:
        return HttpResponseBadRequest("Invalid payload")

    try:
        event_id = event["id"]
        event_type = event["type"]
    except KeyError:
        return HttpResponseBadRequest("Invalid payload")

    webhook_event, created = PaymentWebhookEvent.objects.get_or_create(
        event_id=event_id,
        defaults={
            "event_type": event_type,
            "payload": _event_payload(event),
        },
    )
    if not created:
        logger.warning("duplicate webhook event %s ignored", event_id)
        return HttpResponse(status=200)

    try:
        if event_type == "payment_intent.succeeded":
            _handle_payment_intent_succeeded(event["data"]["object"])

        webhook_event.processing_status = "processed"
        webhook_event.save(update_fields=["processing_status"])
    except (JobFlowError, ObjectDoesNotExist, KeyError, ValueError) as exc:
        # Rejected payments are kept for manual reconciliation; the gateway must not retry them.
        logger.warning("webhook event %s rejected: %s", event_id, exc)
        webhook_event.processing_status = "error"
        webhook_event.error_message = str(exc)
        webhook_event.save(update_fields=["processing_status", "error_message"])

    return HttpResponse(status=200)
