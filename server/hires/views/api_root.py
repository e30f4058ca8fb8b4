from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.reverse import reverse


@api_view(["GET"])
@permission_classes([AllowAny])
def api_root(request, format=None):
    """
    API root endpoint to make the browsable API navigable.
    """
    return Response(
        {
            "health": reverse("health_check", request=request, format=format),
            "schema": reverse("schema", request=request, format=format),
            "pricing_quote": reverse("price_quote", request=request, format=format),
            "checkout": reverse("create_checkout", request=request, format=format),
            "job_status_template": "/api/job-status/{job_id}/",
            "download_template": "/api/download/{token}/",
            "webhook_template": "/api/webhook/{service}/",
        }
    )
