"""Webhook ingress routing.

A single URL (``/api/webhook/<service>/``) receives callbacks from every
external provider. The router owns the transport checks shared by all of
them (method, content type, payload size) and hands the raw body to the
service-specific handler. Handlers authenticate and parse the payload
themselves, since each provider signs differently.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

from django.http import HttpRequest, JsonResponse

from hires.utils.exceptions import WebhookError

logger = logging.getLogger(__name__)

WebhookHandler = Callable[[HttpRequest, bytes], JsonResponse]


def webhook_ack(**extra) -> JsonResponse:
    """The 200 response every provider expects for an accepted callback."""
    return JsonResponse({"status": "received", **extra}, status=200)


def webhook_error(status_code: int, message: str) -> JsonResponse:
    return JsonResponse({"error": message}, status=status_code)


@dataclass(frozen=True)
class WebhookEndpoint:
    tag: str
    handler: WebhookHandler
    method: str = "POST"
    content_type: Optional[str] = None


class WebhookRouter:
    """Dispatch webhook requests to the handler registered for their tag."""

    def __init__(self, endpoints: Iterable[WebhookEndpoint], max_payload_bytes: int):
        self._endpoints: Dict[str, WebhookEndpoint] = {}
        for endpoint in endpoints:
            if endpoint.tag in self._endpoints:
                raise ValueError(f"Duplicate webhook endpoint: {endpoint.tag}")
            self._endpoints[endpoint.tag] = endpoint
        self.max_payload_bytes = max_payload_bytes

    @property
    def tags(self):
        return sorted(self._endpoints)

    def dispatch(self, request: HttpRequest, service: str) -> JsonResponse:
        endpoint = self._endpoints.get(service)
        if endpoint is None:
            logger.warning(f"Webhook for unknown service '{service}'")
            return webhook_error(404, "Unknown webhook endpoint")

        if request.method != endpoint.method:
            return webhook_error(405, "Method not allowed")

        if endpoint.content_type:
            content_type = (request.content_type or "").lower()
            if content_type != endpoint.content_type:
                logger.warning(
                    f"Webhook {service}: unexpected content type '{request.content_type}'"
                )
                return webhook_error(415, "Unsupported content type")

        payload = self._read_payload(request)
        if payload is None:
            logger.warning(
                f"Webhook {service}: payload exceeds {self.max_payload_bytes} bytes"
            )
            return webhook_error(413, "Payload too large")

        try:
            return endpoint.handler(request, payload)
        except WebhookError as exc:
            logger.warning(f"Webhook {service} rejected ({exc.status_code}): {exc.message}")
            return webhook_error(exc.status_code, exc.message)
        except Exception:
            logger.exception(f"Webhook {service} handler failed")
            return webhook_error(500, "Webhook processing failed")

    def _read_payload(self, request: HttpRequest) -> Optional[bytes]:
        """Read at most `max_payload_bytes`; None when the body is larger."""
        declared = request.META.get("CONTENT_LENGTH")
        if declared:
            try:
                if int(declared) > self.max_payload_bytes:
                    return None
            except ValueError:
                pass
        payload = request.read(self.max_payload_bytes + 1)
        if len(payload) > self.max_payload_bytes:
            return None
        return payload
