from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/", include("hires.urls")),
]

# Catalog uploads must be publicly reachable so Upsampler can fetch them.
urlpatterns += static(settings.MEDIA_URL + "sources/", document_root=settings.MEDIA_ROOT / "sources")
