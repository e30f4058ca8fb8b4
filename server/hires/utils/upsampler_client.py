import logging
from typing import Dict, Optional

import requests
from django.conf import settings

from hires.utils.exceptions import UpsamplerError

logger = logging.getLogger(__name__)


class UpsamplerClient:
    """Client for interacting with the Upsampler API"""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key or settings.UPSAMPLER_API_KEY
        self.base_url = (base_url or settings.UPSAMPLER_API_URL).rstrip("/")
        self.timeout = settings.UPSAMPLER_TIMEOUT
        self.headers = {
            'Content-Type': 'application/json',
            'Authorization': f'Bearer {self.api_key}'
        }

    def precise_upscale(self, image_url: str, upscale_factor: int, webhook_url: str) -> Dict:
        """
        Submit a precise upscale job

        Args:
            image_url: Publicly reachable URL of the source image
            upscale_factor: Integer scale factor (4 or 8)
            webhook_url: URL Upsampler calls when the job finishes

        Returns:
            dict with the provider job ``id``
        """
        if not self.api_key:
            raise UpsamplerError("Upsampler API key not configured")

        url = f"{self.base_url}/precise-upscale"
        payload = {
            'webhook': webhook_url,
            'input': {
                'imageUrl': image_url,
                'inputImageType': 'universal',
                'upscaleFactor': upscale_factor,
                'globalCreativity': 7,
                'detail': 8,
            }
        }

        try:
            response = requests.post(url, headers=self.headers, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise UpsamplerError(f"Upsampler request failed: {exc}")

        if response.status_code != 200:
            raise UpsamplerError(
                f"Upsampler API error (HTTP {response.status_code}): {response.text[:500]}"
            )

        try:
            result = response.json()
        except ValueError:
            raise UpsamplerError("Invalid JSON response from Upsampler")

        if not isinstance(result, dict) or not result.get('id'):
            raise UpsamplerError(f"Upsampler response missing job id: {result}")

        logger.debug(f"Upsampler accepted job {result['id']} for {image_url}")
        return result
