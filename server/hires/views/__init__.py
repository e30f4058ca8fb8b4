from hires.views.api_root import api_root
from hires.views.checkout import create_checkout, price_quote
from hires.views.download import download_file
from hires.views.health import health_check
from hires.views.jobs import job_status
from hires.views.webhook import webhook

__all__ = [
    "api_root",
    "create_checkout",
    "price_quote",
    "download_file",
    "health_check",
    "job_status",
    "webhook",
]
