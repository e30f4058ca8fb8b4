from django.urls import path

from hires import views

urlpatterns = [
    path("", views.api_root, name="api_root"),
    path("health/", views.health_check, name="health_check"),
    path("pricing/quote/", views.price_quote, name="price_quote"),
    path("checkout/", views.create_checkout, name="create_checkout"),
    path("job-status/<str:job_id>/", views.job_status, name="job_status"),
    path("download/<str:token>/", views.download_file, name="download_file"),
    path("webhook/<slug:service>/", views.webhook, name="webhook"),
]
