"""Error kinds raised by the tracker integrations"""

from typing import Optional

from app.services.results import RequestResult


class IssueLinksError(Exception):
    """Base class for all integration errors"""


class ConfigurationError(IssueLinksError):
    """Credentials or URL of a backend are missing or rejected"""


class TransportError(IssueLinksError):
    """Network failure or non-2xx answer from a remote API.

    ``status_code`` is HTTP-like: the remote status for HTTP errors, 504 for
    timeouts and 502 for connection failures.
    """

    def __init__(self, status_code: int, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = int(status_code)
        self.message = message
        self.url = url

    def __repr__(self):
        return f"<TransportError(status_code={self.status_code}, message={self.message!r})>"


class MappingError(IssueLinksError, ValueError):
    """A remote record lacks a field required by the normalized Issue (summary/status)"""


class ValidationError(IssueLinksError):
    """Malformed or unauthentic webhook delivery.

    Never leaves the webhook flow: it is converted to a RequestResult.
    """

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def to_result(self) -> RequestResult:
        return RequestResult(self.status_code, self.message)
