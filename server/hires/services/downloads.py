"""Secure delivery of processed images.

Processed files live under ``HIRES_STORAGE_ROOT`` and are only reachable
through a random 64-character token that expires after
``DOWNLOAD_EXPIRY_HOURS``. Files are fetched from the provider, verified as
real images of an allowed type and moved into place atomically; nothing
partial is ever left under the storage root.
"""

import logging
import os
import re
import string
import tempfile
import threading
import time
from datetime import timedelta
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import requests
from django.conf import settings
from django.http import FileResponse
from django.utils import timezone
from django.utils.crypto import get_random_string
from PIL import Image, UnidentifiedImageError

from hires import notifications
from hires.models import UpscaleJob
from hires.services import jobs
from hires.utils.pricing import CostCalculator
from hires.utils.exceptions import (
    ArtifactError,
    ArtifactPathError,
    FileNotAvailable,
    InvalidTokenFormat,
    JobNotFound,
    ProcessingIncomplete,
    TokenExpired,
    TokenNotFound,
)

logger = logging.getLogger(__name__)

TOKEN_LENGTH = 64
TOKEN_ALPHABET = string.ascii_letters + string.digits
TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9]{64}$")

ALLOWED_MIME_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}

EXTENSION_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}

# Headroom over the expected output size for provider rounding.
OUTPUT_PIXEL_MARGIN = 1.25

_pixel_guard_lock = threading.Lock()


def _open_image(path):
    """Open `path` without Pillow's process-wide pixel limit; callers apply their own."""
    with _pixel_guard_lock:
        previous = Image.MAX_IMAGE_PIXELS
        Image.MAX_IMAGE_PIXELS = None
        try:
            return Image.open(path)
        finally:
            Image.MAX_IMAGE_PIXELS = previous


class DownloadService:
    def __init__(
        self,
        storage_root=None,
        expiry_hours: Optional[int] = None,
        max_bytes: Optional[int] = None,
        timeout=None,
        chunk_size: Optional[int] = None,
        max_pixels: Optional[int] = None,
    ):
        self.storage_root = Path(storage_root or settings.HIRES_STORAGE_ROOT)
        self.expiry_hours = expiry_hours or settings.DOWNLOAD_EXPIRY_HOURS
        self.max_bytes = max_bytes or settings.ARTIFACT_MAX_BYTES
        self.timeout = timeout or settings.ARTIFACT_DOWNLOAD_TIMEOUT
        self.chunk_size = chunk_size or settings.DOWNLOAD_CHUNK_SIZE
        self.max_pixels = max_pixels or settings.HIRES_MAX_OUTPUT_PIXELS

    # --- Tokens --------------------------------------------------------------

    def generate_token(self) -> str:
        return get_random_string(TOKEN_LENGTH, TOKEN_ALPHABET)

    def validate_token(self, token) -> UpscaleJob:
        """
        Return the job owning `token`.

        The format check runs before any lookup so malformed input never
        reaches the database.
        """
        if not isinstance(token, str) or not TOKEN_PATTERN.match(token):
            raise InvalidTokenFormat("Malformed download token")

        try:
            job = jobs.get_job_by_token(token)
        except JobNotFound:
            raise TokenNotFound("Unknown download token")

        if job.download_expires_at is None or job.download_expires_at <= timezone.now():
            raise TokenExpired(f"Download token for job {job.job_id} expired")
        return job

    def authorize(self, job: UpscaleJob) -> None:
        if job.status != UpscaleJob.STATUS_COMPLETED:
            raise ProcessingIncomplete(f"Job {job.job_id} is {job.status}")
        if not job.artifact_path:
            raise FileNotAvailable(f"Job {job.job_id} has no stored file")

    def _real_root(self) -> str:
        return os.path.realpath(self.storage_root)

    def _contained(self, path) -> Optional[str]:
        """Return the real path when it lies under the storage root."""
        root = self._real_root()
        real = os.path.realpath(path)
        if os.path.commonpath([root, real]) != root:
            return None
        return real

    def resolve_artifact_path(self, job: UpscaleJob) -> Path:
        real = self._contained(job.artifact_path)
        if real is None:
            logger.error(f"Job {job.job_id}: artifact path {job.artifact_path} outside storage root")
            raise ArtifactPathError(f"Artifact for job {job.job_id} outside storage root")
        if not os.path.isfile(real):
            raise FileNotAvailable(f"Artifact for job {job.job_id} missing on disk")
        return Path(real)

    def serve(self, token) -> FileResponse:
        job = self.validate_token(token)
        self.authorize(job)
        path = self.resolve_artifact_path(job)

        ext = path.suffix.lower()
        content_type = EXTENSION_MIME_TYPES.get(ext, "application/octet-stream")
        response = FileResponse(
            open(path, "rb"),
            as_attachment=True,
            filename=path.name,
            content_type=content_type,
        )
        response.block_size = self.chunk_size
        response["Cache-Control"] = "no-cache, must-revalidate"
        response["Pragma"] = "no-cache"
        response["Expires"] = "0"
        response["X-Content-Type-Options"] = "nosniff"
        logger.info(f"Serving download for job {job.job_id}")
        return response

    # --- Storage -------------------------------------------------------------

    def store_processed_file(self, remote_url: str, job_id: str) -> Path:
        """
        Download `remote_url`, verify it and issue a download token for `job_id`.

        Raises `ArtifactError` on any transport or integrity failure, after
        removing whatever was written.
        """
        max_pixels = self.pixel_ceiling(jobs.get_job(job_id))
        self.storage_root.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".partial_", dir=self.storage_root)
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "wb") as handle:
                self._download(remote_url, handle)
            mime = self._verify_image(tmp_path, max_pixels)
            self._check_extension(remote_url, mime)

            final_path = self.storage_root / (
                f"hires_{job_id}_{int(time.time())}.{ALLOWED_MIME_TYPES[mime]}"
            )
            os.replace(tmp_path, final_path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise

        logger.info(f"Stored processed file for job {job_id} at {final_path}")
        try:
            job = self.issue_download(job_id, final_path)
        except Exception:
            final_path.unlink(missing_ok=True)
            raise
        notifications.send_download_notification(job)
        return final_path

    def pixel_ceiling(self, job: UpscaleJob) -> int:
        """Largest pixel count accepted for `job`'s output."""
        multiplier = CostCalculator().multiplier(job.resolution)
        if not multiplier or not job.image_width or not job.image_height:
            return self.max_pixels
        expected = job.image_width * multiplier * job.image_height * multiplier
        return int(expected * OUTPUT_PIXEL_MARGIN)

    def _download(self, remote_url, handle):
        try:
            with requests.get(remote_url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                written = 0
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if not chunk:
                        continue
                    written += len(chunk)
                    if written > self.max_bytes:
                        raise ArtifactError(
                            f"Processed file exceeds {self.max_bytes} bytes: {remote_url}"
                        )
                    handle.write(chunk)
        except requests.RequestException as exc:
            raise ArtifactError(f"Failed to download processed file {remote_url}: {exc}")

        if written == 0:
            raise ArtifactError(f"Processed file is empty: {remote_url}")

    def _verify_image(self, path, max_pixels: int) -> str:
        try:
            with _open_image(path) as img:
                width, height = img.size
                if width * height > max_pixels:
                    raise ArtifactError(
                        f"Processed image is {width}x{height}, above {max_pixels} pixels"
                    )
                img.verify()
                image_format = img.format
        except (UnidentifiedImageError, OSError, SyntaxError) as exc:
            raise ArtifactError(f"Processed file is not a valid image: {exc}")

        mime = Image.MIME.get(image_format or "")
        if mime not in ALLOWED_MIME_TYPES:
            raise ArtifactError(f"Processed file type {mime or image_format} not allowed")
        return mime

    def _check_extension(self, remote_url, mime):
        ext = os.path.splitext(urlparse(remote_url).path)[1].lower()
        if not ext:
            return
        if EXTENSION_MIME_TYPES.get(ext) != mime:
            raise ArtifactError(f"Extension {ext} does not match detected type {mime}")

    def issue_download(self, job_id, path) -> UpscaleJob:
        return jobs.update_job(
            job_id,
            artifact_path=str(path),
            download_token=self.generate_token(),
            download_expires_at=timezone.now() + timedelta(hours=self.expiry_hours),
        )

    def revoke(self, job_id) -> UpscaleJob:
        """
        Invalidate the download link and delete the stored file.

        A file that cannot be deleted keeps its path with an expiry of now so
        the next cleanup run reclaims it.
        """
        job = jobs.get_job(job_id)
        if not job.artifact_path:
            return jobs.update_job(job_id, download_token=None, download_expires_at=None)
        if self._delete_artifact(job):
            return jobs.update_job(
                job_id, artifact_path="", download_token=None, download_expires_at=None
            )
        return jobs.update_job(job_id, download_token=None, download_expires_at=timezone.now())

    def _delete_artifact(self, job: UpscaleJob) -> bool:
        real = self._contained(job.artifact_path)
        if real is None:
            logger.error(f"Job {job.job_id}: refusing to delete {job.artifact_path} outside storage root")
            return False
        try:
            os.unlink(real)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.error(f"Could not delete file for job {job.job_id}: {exc}")
            return False
        return True

    # --- Maintenance ---------------------------------------------------------

    def cleanup_expired(self) -> int:
        """
        Delete files whose download window has passed and clear their tokens.

        The job rows stay. A file that cannot be deleted leaves its row as is
        so the next run retries it.
        """
        expired = UpscaleJob.objects.filter(
            download_expires_at__lt=timezone.now(),
        ).exclude(artifact_path="", download_token__isnull=True)

        count = 0
        for job in expired:
            if job.artifact_path and not self._delete_artifact(job):
                continue

            jobs.update_job(
                job.job_id,
                artifact_path="",
                download_token=None,
                download_expires_at=None,
            )
            count += 1

        logger.info(f"Cleaned up {count} expired downloads")
        return count
