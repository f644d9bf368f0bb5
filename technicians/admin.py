from django.contrib import admin

from .models import Technician


@admin.register(Technician)
class TechnicianAdmin(admin.ModelAdmin):
    list_display = ("technician_id", "full_name", "place_name", "rating", "is_active")
    list_filter = ("is_active", "place_name")
    search_fields = ("full_name", "email", "mobile")
    ordering = ("full_name",)
