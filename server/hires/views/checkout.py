import logging

from django_ratelimit.decorators import ratelimit
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from hires.models import SourceImage
from hires.serializers import CheckoutRequestSerializer, QuoteRequestSerializer
from hires.services import jobs
from hires.services.payment import PaymentService
from hires.utils import CostCalculator, format_error
from hires.utils.exceptions import HiresError, JobValidationError

logger = logging.getLogger(__name__)


def _get_image(image_id):
    try:
        return SourceImage.objects.get(pk=image_id, active=True)
    except SourceImage.DoesNotExist:
        return None


def _image_not_found():
    return Response(
        format_error(code="image_not_found", message="Image not found"),
        status=status.HTTP_404_NOT_FOUND,
    )


@ratelimit(group="price_quote", key="ip", rate="60/m", block=True)
@api_view(["POST"])
@permission_classes([AllowAny])
def price_quote(request):
    """
    Quote the price of every available resolution for an image.
    """
    serializer = QuoteRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(
            format_error(
                code="validation_error",
                message="Invalid quote request",
                details=serializer.errors,
            ),
            status=status.HTTP_400_BAD_REQUEST,
        )

    image = _get_image(serializer.validated_data["image_id"])
    if image is None:
        return _image_not_found()

    quotes = CostCalculator().quote_all(image.width, image.height)
    prices = {
        resolution: {
            "price": str(quote.customer_price),
            "output_width": quote.output_width,
            "output_height": quote.output_height,
        }
        for resolution, quote in quotes.items()
        if not quote.is_zero
    }
    return Response(
        {
            "image_id": image.pk,
            "width": image.width,
            "height": image.height,
            "prices": prices,
        }
    )


@ratelimit(group="create_checkout", key="ip", rate="10/m", block=True)
@api_view(["POST"])
@permission_classes([AllowAny])
def create_checkout(request):
    """
    Create an upscale job and a Stripe checkout session for it.
    """
    serializer = CheckoutRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(
            format_error(
                code="validation_error",
                message="Invalid checkout request",
                details=serializer.errors,
            ),
            status=status.HTTP_400_BAD_REQUEST,
        )

    data = serializer.validated_data
    image = _get_image(data["image_id"])
    if image is None:
        return _image_not_found()

    resolution = data["resolution"]
    calculator = CostCalculator()
    quote = calculator.price(image.width, image.height, resolution)
    if quote.is_zero:
        return Response(
            format_error(code="invalid_price", message="Unable to price this image"),
            status=status.HTTP_400_BAD_REQUEST,
        )

    try:
        job = jobs.create_job(
            {
                "source_image": image,
                "source_type": image.source_type,
                "image_url": image.image_url,
                "upload_file_path": image.upload_file_path,
                "image_width": image.width,
                "image_height": image.height,
                "post_id": data.get("post_id", image.post_id),
                "resolution": resolution,
                "email": data.get("email", ""),
                "amount_charged": quote.customer_price,
                "amount_cost": quote.provider_cost,
                "credits_used": quote.credits,
            }
        )
    except JobValidationError as exc:
        return Response(
            format_error(code=exc.code, message=exc.public_message, details=exc.details),
            status=status.HTTP_400_BAD_REQUEST,
        )

    try:
        checkout = PaymentService(calculator=calculator).create_checkout(job, email=job.email)
    except HiresError as exc:
        logger.error(f"Checkout failed for job {job.job_id}: {exc}")
        jobs.delete_job(job.job_id)
        return Response(
            format_error(code=exc.code, message=exc.public_message),
            status=exc.status_code,
        )

    return Response(
        {
            "job_id": job.job_id,
            "checkout_url": checkout.checkout_url,
            "amount": str(checkout.amount),
        },
        status=status.HTTP_201_CREATED,
    )
