from django.urls import path
from . import views

urlpatterns = [
    path("api/jobs/", views.api_job_create, name="api_job_create"),
    path("api/jobs/<int:job_id>/", views.api_job_detail, name="api_job_detail"),
    path("api/jobs/<int:job_id>/bids/", views.api_job_bids, name="api_job_bids"),
    path("api/jobs/<int:job_id>/bids/<int:bid_id>/accept/", views.api_bid_accept, name="api_bid_accept"),
    path("api/jobs/<int:job_id>/bids/<int:bid_id>/counter/", views.api_bid_counter, name="api_bid_counter"),
    path("api/jobs/<int:job_id>/bids/<int:bid_id>/reject/", views.api_bid_reject, name="api_bid_reject"),
    path("api/jobs/<int:job_id>/bids/<int:bid_id>/respond/", views.api_bid_respond, name="api_bid_respond"),
    path("api/jobs/<int:job_id>/soft-lock/", views.api_job_soft_lock, name="api_job_soft_lock"),
    path(
        "api/jobs/<int:job_id>/confirm-soft-lock/",
        views.api_job_confirm_soft_lock,
        name="api_job_confirm_soft_lock",
    ),
    path("api/jobs/<int:job_id>/cancel/", views.api_job_cancel, name="api_job_cancel"),
    path("api/jobs/<int:job_id>/start/", views.api_job_start, name="api_job_start"),
    path("api/jobs/<int:job_id>/complete/", views.api_job_complete, name="api_job_complete"),
    path("api/jobs/<int:job_id>/dispute/", views.api_job_dispute, name="api_job_dispute"),
    path("api/jobs/<int:job_id>/repost/", views.api_job_repost, name="api_job_repost"),
]
