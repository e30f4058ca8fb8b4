from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from hires.serializers import JobStatusSerializer
from hires.services import jobs
from hires.utils import format_error
from hires.utils.exceptions import JobNotFound


@api_view(["GET"])
@permission_classes([AllowAny])
def job_status(request, job_id):
    """
    Get upscale job status.
    """
    try:
        job = jobs.get_job(job_id)
    except JobNotFound:
        return Response(
            format_error(code="not_found", message="Job not found"),
            status=status.HTTP_404_NOT_FOUND,
        )

    return Response(JobStatusSerializer(job).data)
