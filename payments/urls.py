from django.urls import path

from . import views

urlpatterns = [
    path("api/jobs/<int:job_id>/payment-order/", views.api_create_payment_order, name="api_create_payment_order"),
    path("api/jobs/<int:job_id>/lock-payment/", views.api_lock_payment, name="api_lock_payment"),
    path("api/payments/webhook/", views.stripe_webhook, name="stripe_webhook"),
]
