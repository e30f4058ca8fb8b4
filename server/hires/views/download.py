import logging

from django_ratelimit.decorators import ratelimit
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from hires.services.downloads import DownloadService
from hires.utils import format_error
from hires.utils.exceptions import DownloadError

logger = logging.getLogger(__name__)


@ratelimit(group="download_file", key="ip", rate="30/m", block=True)
@api_view(["GET"])
@permission_classes([AllowAny])
def download_file(request, token):
    """
    Stream a processed image for a valid, unexpired download token.
    """
    try:
        return DownloadService().serve(token)
    except DownloadError as exc:
        logger.info(f"Download refused ({exc.code}): {exc}")
        return Response(
            format_error(code=exc.code, message=exc.public_message),
            status=exc.status_code,
        )
