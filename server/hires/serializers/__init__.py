"""Serializer package for the `hires` Django app.

This package re-exports the public DRF serializer classes used by views.
"""

from .checkout import CheckoutRequestSerializer, JobStatusSerializer, QuoteRequestSerializer

__all__ = [
    "CheckoutRequestSerializer",
    "JobStatusSerializer",
    "QuoteRequestSerializer",
]
