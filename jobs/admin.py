from django.contrib import admin

from .models import Job, JobBid, JobEvent


class JobBidInline(admin.TabularInline):
    model = JobBid
    fk_name = "job"
    extra = 0
    fields = ("technician", "offered_price", "round_number", "offered_by", "status", "created_at")
    readonly_fields = fields


@admin.register(Job)
class JobAdmin(admin.ModelAdmin):
    list_display = (
        "job_id",
        "job_number",
        "status",
        "dealer",
        "city",
        "estimated_cost",
        "final_price",
        "payment_locked",
        "termination_display",
        "created_at",
    )

    list_filter = (
        "status",
        "payment_locked",
        "city",
    )

    search_fields = (
        "job_id",
        "job_number",
        "title",
        "dealer__business_name",
        "city",
    )

    ordering = ("-created_at",)
    inlines = [JobBidInline]

    @admin.display(description="Termination")
    def termination_display(self, obj: Job) -> str:
        kind = obj.termination_kind
        if kind is None:
            return "-"
        if kind == "rejected":
            reasons = ", ".join(obj.timeout_reasons or [])
            head = obj.lineage_head
            return f"Rejected ({reasons}) {head.repost_count}/{head.max_reposts}"
        return "Cancelled by dealer"


@admin.register(JobEvent)
class JobEventAdmin(admin.ModelAdmin):
    list_display = ("job", "event_type", "technician_id", "bid_id", "note", "created_at")
    list_filter = ("event_type",)
    ordering = ("-created_at",)
