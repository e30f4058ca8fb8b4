"""Database models exposed by the `hires` Django app."""

from .job import UpscaleJob
from .source_image import SourceImage

__all__ = [
    "SourceImage",
    "UpscaleJob",
]
