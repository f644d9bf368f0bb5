from django.contrib import admin

from .models import WarrantyRecord


@admin.register(WarrantyRecord)
class WarrantyRecordAdmin(admin.ModelAdmin):
    list_display = ("warranty_id", "job", "status", "start_date", "end_date", "rework_technician")
    list_filter = ("status",)
    search_fields = ("job__job_number", "job__title")
    ordering = ("-end_date",)
