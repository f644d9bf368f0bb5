from django.contrib import admin

from .models import PaymentTransaction, PaymentWebhookEvent


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(admin.ModelAdmin):
    list_display = ("transaction_id", "job", "total_amount", "payment_method", "external_payment_id", "created_at")
    list_filter = ("payment_method", "status")
    search_fields = ("external_order_id", "external_payment_id")


@admin.register(PaymentWebhookEvent)
class PaymentWebhookEventAdmin(admin.ModelAdmin):
    list_display = ("event_id", "event_type", "processing_status", "created_at")
    list_filter = ("event_type", "processing_status")
