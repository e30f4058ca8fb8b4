from rest_framework.views import exception_handler as drf_exception_handler
from rest_framework.response import Response


def exception_handler(exc, context):
    """
    Custom exception handler for DRF that returns consistent error format.
    """
    if isinstance(exc, HiresError):
        return Response(
            format_error(code=exc.code, message=exc.public_message, details=exc.details),
            status=exc.status_code,
        )

    response = drf_exception_handler(exc, context)

    if response:
        response.data = format_error(
            code=getattr(exc, "default_code", "error"),
            message=str(exc),
            details=(
                response.data
                if isinstance(response.data, dict)
                else {"detail": response.data}
            ),
        )

    return response


def format_error(code: str, message: str, details=None):
    return {
        "error": {
            "code": str(code).upper(),
            "message": message,
            "details": details if details is not None else {},
        }
    }


class HiresError(Exception):
    """Base class for errors raised by the hires workflow.

    `public_message` is what callers outside the service may see; the full
    message (``str(exc)``) may carry provider details and is meant for logs.
    """

    code = "error"
    status_code = 500
    public_message = "Request failed"

    def __init__(self, message=None, details=None, public_message=None):
        self.details = details if details is not None else {}
        if public_message is not None:
            self.public_message = public_message
        super().__init__(message or self.public_message)


class JobValidationError(HiresError):
    """Raised when job data fails validation on create"""
    code = "validation_error"
    status_code = 400
    public_message = "Invalid job data"


class JobNotFound(HiresError):
    code = "job_not_found"
    status_code = 404
    public_message = "Job not found"


class InvalidTransition(HiresError):
    """Raised when a status change is not an edge of the lifecycle graph"""
    code = "invalid_transition"
    status_code = 409
    public_message = "Invalid job state"

    def __init__(self, job_id, old_status, new_status, field="status"):
        self.job_id = job_id
        self.old_status = old_status
        self.new_status = new_status
        self.field = field
        super().__init__(
            f"Job {job_id}: {field} cannot move from {old_status} to {new_status}",
            details={"from": old_status, "to": new_status},
        )


class UpscaleNotAllowed(HiresError):
    """Raised when upscaling is requested for a job that has not been paid"""
    code = "payment_required"
    status_code = 409
    public_message = "Job has not been paid"


class PricingError(HiresError):
    """Raised when a quote is zero or no longer matches the job snapshot"""
    code = "pricing_error"
    status_code = 500
    public_message = "Unable to calculate price"


class InvalidPrice(PricingError):
    code = "invalid_price"
    status_code = 400
    public_message = "Unable to price this image"


class ProviderError(HiresError):
    """Raised when an outbound provider call fails"""
    code = "provider_error"
    status_code = 502
    public_message = "Upstream service error"


class UpsamplerError(ProviderError):
    code = "upscale_submit_failed"


class PaymentUnavailable(ProviderError):
    code = "payment_unavailable"
    status_code = 503
    public_message = "Payment service temporarily unavailable"


class RefundError(ProviderError):
    code = "refund_failed"
    public_message = "Refund could not be issued"


class ArtifactError(HiresError):
    """Raised when a processed file fails download or integrity checks"""
    code = "artifact_error"
    status_code = 500
    public_message = "Processed file could not be stored"


class DownloadError(HiresError):
    code = "download_error"
    status_code = 400


class InvalidTokenFormat(DownloadError):
    code = "invalid_token"
    status_code = 400
    public_message = "Invalid download token"


class TokenNotFound(DownloadError):
    code = "token_not_found"
    status_code = 404
    public_message = "Download link not found"


class TokenExpired(DownloadError):
    code = "token_expired"
    status_code = 410
    public_message = "Download link has expired"


class ProcessingIncomplete(DownloadError):
    code = "processing_incomplete"
    status_code = 425
    public_message = "Image processing not complete"


class FileNotAvailable(DownloadError):
    code = "file_not_found"
    status_code = 404
    public_message = "File not available"


class ArtifactPathError(DownloadError):
    code = "access_denied"
    status_code = 403
    public_message = "Access denied"


class WebhookError(Exception):
    """Raised by webhook handlers to answer with a specific HTTP status"""

    def __init__(self, status_code, message):
        self.status_code = status_code
        self.message = message
        super().__init__(message)
