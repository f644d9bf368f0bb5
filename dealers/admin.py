from django.contrib import admin

from .models import Dealer


@admin.register(Dealer)
class DealerAdmin(admin.ModelAdmin):
    list_display = ("dealer_id", "business_name", "email", "city", "is_active", "created_at")
    list_filter = ("is_active", "city")
    search_fields = ("business_name", "contact_name", "email", "phone_number")
    ordering = ("-created_at",)
