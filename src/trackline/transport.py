"""Transport collaborator: submits serialized batches to the endpoint.

Provides:
- Transport protocol consumed by the delivery engine
- AckInfo success record
- classify_status() deciding retryable vs permanent HTTP rejections
- RequestsTransport, the default gzip/JSON over HTTPS implementation
"""

from __future__ import annotations

import gzip
import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from urllib.parse import urlparse

import requests

from .errors import TransportError

logger = logging.getLogger(__name__)

TRACK_PATH = "/track/"

# Statuses that signal a temporary condition on the server side
RETRYABLE_STATUSES = frozenset({401, 403, 408, 425, 429})


@dataclass(frozen=True)
class AckInfo:
    """Server acknowledgement of a delivered batch."""

    status_code: int
    body: str = ""


@runtime_checkable
class Transport(Protocol):
    """Submits one serialized batch per call.

    Returns ``AckInfo`` on success and raises ``TransportError`` otherwise.
    Timeouts are enforced by the transport and surface as retryable
    ``TransportError``.
    """

    def submit(self, endpoint_url: str, payload: bytes) -> AckInfo: ...


def normalize_server_url(server_url: str) -> str:
    """Strip trailing slashes and default to https when no scheme is given."""
    url = server_url.strip().rstrip("/")
    if not urlparse(url).scheme:
        url = f"https://{url}"
    return url


def endpoint_for(server_url: str) -> str:
    """Return the batch ingestion URL for *server_url*."""
    return f"{normalize_server_url(server_url)}{TRACK_PATH}"


def is_retryable_status(status_code: int) -> bool:
    """Classify a non-2xx HTTP status.

    5xx, rate limiting, request timeouts and auth failures are retryable;
    every other 4xx means the server will never accept the payload.
    """
    if status_code >= 500:
        return True
    return status_code in RETRYABLE_STATUSES


def classify_status(status_code: int, body: str = "") -> AckInfo:
    """Return ``AckInfo`` for 2xx statuses, raise ``TransportError`` otherwise."""
    if 200 <= status_code < 300:
        return AckInfo(status_code=status_code, body=body)
    retryable = is_retryable_status(status_code)
    kind = "retryable" if retryable else "permanent"
    raise TransportError(
        f"Server rejected batch with HTTP {status_code} ({kind})",
        status_code=status_code,
        retryable=retryable,
    )


class RequestsTransport:
    """HTTP transport based on ``requests``.

    Posts the payload gzip-compressed with ``Content-Encoding: gzip``.
    """

    def __init__(
        self,
        timeout: float = 60.0,
        session: requests.Session | None = None,
    ) -> None:
        self.timeout = timeout
        self._session = session or requests.Session()

    def submit(self, endpoint_url: str, payload: bytes) -> AckInfo:
        headers = {
            "Content-Encoding": "gzip",
            "Content-Type": "application/json",
        }
        try:
            response = self._session.post(
                endpoint_url,
                data=gzip.compress(payload),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise TransportError(f"Request timeout: {exc}") from exc
        except requests.exceptions.ConnectionError as exc:
            raise TransportError(f"Connection error: {exc}") from exc
        except requests.exceptions.RequestException as exc:
            raise TransportError(f"Request failed: {exc}") from exc

        logger.debug("POST %s -> HTTP %d", endpoint_url, response.status_code)
        return classify_status(response.status_code, response.text)

    def close(self) -> None:
        self._session.close()
