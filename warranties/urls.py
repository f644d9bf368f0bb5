from django.urls import path

from . import views

urlpatterns = [
    path("api/warranties/<int:warranty_id>/", views.api_warranty_detail, name="api_warranty_detail"),
    path(
        "api/warranties/<int:warranty_id>/issue/",
        views.api_warranty_report_issue,
        name="api_warranty_report_issue",
    ),
    path(
        "api/warranties/<int:warranty_id>/rework/",
        views.api_warranty_assign_rework,
        name="api_warranty_assign_rework",
    ),
    path(
        "api/warranties/<int:warranty_id>/rework-complete/",
        views.api_warranty_complete_rework,
        name="api_warranty_complete_rework",
    ),
    path("api/dealers/<int:dealer_id>/warranties/", views.api_dealer_warranties, name="api_dealer_warranties"),
]
