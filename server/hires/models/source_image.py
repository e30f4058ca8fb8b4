"""Catalog of images the owner offers as high-resolution purchases.

A `SourceImage` stands in for the CMS attachment: it carries the authoritative
dimensions used for pricing and the public location handed to the upscaling
provider.
"""

from django.core.exceptions import ValidationError
from django.db import models


class SourceImage(models.Model):
    """Sellable image registered by the content owner"""

    title = models.CharField(max_length=255, blank=True)
    image_url = models.URLField(
        max_length=500,
        blank=True,
        help_text="Public URL of the original image"
    )
    image_file = models.ImageField(
        upload_to="sources/",
        width_field="width",
        height_field="height",
        blank=True,
        help_text="Locally stored original, used when no URL is given"
    )
    width = models.PositiveIntegerField(default=0)
    height = models.PositiveIntegerField(default=0)
    post_id = models.PositiveBigIntegerField(
        default=0,
        help_text="Identifier of the content the image is published in"
    )
    active = models.BooleanField(
        default=True,
        help_text="Whether this image can currently be purchased"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'source_images'
        ordering = ['-created_at']

    def __str__(self):
        return self.title or f"Image {self.pk} ({self.width}x{self.height})"

    def clean(self):
        if not self.image_url and not self.image_file:
            raise ValidationError("Provide either an image URL or an image file")

    @property
    def source_type(self):
        return "url" if self.image_url else "upload"

    @property
    def upload_file_path(self):
        if self.image_file:
            return self.image_file.path
        return ""

    def public_url(self, site_url: str) -> str:
        """Return an absolute URL the upscaling provider can fetch."""
        if self.image_url:
            return self.image_url
        if self.image_file:
            return f"{site_url.rstrip('/')}{self.image_file.url}"
        return ""
