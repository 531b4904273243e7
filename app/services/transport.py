"""HTTP transport used by the tracker integrations"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import requests
from requests.structures import CaseInsensitiveDict

from app.services.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportResponse:
    status_code: int
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=CaseInsensitiveDict)


def decode_body(response: requests.Response) -> Any:
    """JSON body of a response, its text if it is not JSON, None if empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def error_detail(body: Any, default: str = "") -> str:
    """Best-effort human-readable error from an API error body."""
    if isinstance(body, dict):
        for key in ("message", "error_description", "error", "errorMessages"):
            value = body.get(key)
            if isinstance(value, dict):
                value = value.get("message")
            if isinstance(value, list):
                value = "; ".join(str(v) for v in value)
            if value:
                return str(value)
    if isinstance(body, str) and body.strip():
        return body.strip()[:500]
    return default


class Transport(ABC):
    """Sends one HTTP request. Implementations must bound every call with a timeout."""

    @abstractmethod
    def send_request(
        self,
        url: str,
        headers: Mapping[str, str],
        body: Optional[Any] = None,
        method: str = "GET",
    ) -> TransportResponse:
        """Send the request and return the decoded response.

        Raises:
            TransportError: on network failure, timeout or a non-2xx status
        """


class RequestsTransport(Transport):
    """Transport on top of a requests session"""

    def __init__(self, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def send_request(self, url, headers, body=None, method="GET"):
        try:
            response = self.session.request(
                method,
                url,
                headers=dict(headers),
                json=body,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise TransportError(504, f"Request timed out after {self.timeout}s", url=url) from e
        except requests.exceptions.RequestException as e:
            raise TransportError(502, f"Request failed: {e}", url=url) from e

        payload = decode_body(response)
        if not 200 <= response.status_code < 300:
            detail = error_detail(payload, response.reason or "")
            raise TransportError(response.status_code, f"HTTP {response.status_code}: {detail}", url=url)
        return TransportResponse(response.status_code, payload, CaseInsensitiveDict(response.headers))
