"""Dispatch of inbound webhook deliveries to the owning service"""

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Sequence

from requests.structures import CaseInsensitiveDict

from app.services.errors import ValidationError
from app.services.results import RequestResult

if TYPE_CHECKING:
    from app.services.base import AbstractService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookRequest:
    """Raw inbound delivery: headers and the undecoded body (needed for signatures)"""

    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return CaseInsensitiveDict(self.headers).get(name, default)

    def json(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.body or b"")
        except (ValueError, UnicodeDecodeError) as e:
            raise ValidationError(400, f"Malformed webhook body: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError(400, "Malformed webhook body: expected a JSON object")
        return data


class WebhookRouter:
    """Hand a delivery to the first service that recognizes it"""

    def __init__(self, services: Sequence["AbstractService"]):
        self.services = list(services)

    def find_service(self, request: WebhookRequest) -> Optional["AbstractService"]:
        for service in self.services:
            if type(service).is_our_webhook(request.headers):
                return service
        return None

    def dispatch(self, request: WebhookRequest) -> RequestResult:
        service = self.find_service(request)
        if service is None:
            logger.warning("Received a webhook no service recognizes")
            return RequestResult(400, "Unrecognized webhook")

        validation = service.validate_webhook(request)
        if validation is not True:
            logger.warning(f"Rejected {service.DISPLAY_NAME} webhook: {validation.message}")
            return validation

        result = service.handle_webhook(request)
        logger.info(f"{service.DISPLAY_NAME} webhook handled: {result.status_code} {result.message}")
        return result
