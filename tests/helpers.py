"""Shared fakes for the service tests"""
from types import SimpleNamespace

from requests.structures import CaseInsensitiveDict
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.services.errors import TransportError
from app.services.transport import Transport, TransportResponse

WEBHOOK_URL = "https://links.example/webhook"


def make_session_factory():
    """Sessions on a fresh in-memory SQLite database"""
    from app.models.base import init_db

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def make_store():
    from app.services.store import IssueStore

    return IssueStore(make_session_factory()())


def make_settings(**overrides):
    values = {
        "webhook_url": WEBHOOK_URL,
        "http_timeout_seconds": 5.0,
        "import_max_pages": 20,
        "import_interval_minutes": 60,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def make_service(service_class, store, transport, **config):
    from app.services.base import ServiceConfig

    return service_class(ServiceConfig(webhook_url=WEBHOOK_URL, **config), store, transport)


class FakeTransport(Transport):
    """Answers requests from a table of (method, url) -> response or error"""

    def __init__(self):
        self.responses = {}
        self.requests = []

    def add(self, method, url, body=None, status_code=200, headers=None):
        self.responses[(method, url)] = TransportResponse(status_code, body, CaseInsensitiveDict(headers or {}))

    def fail(self, method, url, status_code, message="boom"):
        self.responses[(method, url)] = TransportError(status_code, f"HTTP {status_code}: {message}", url=url)

    def send_request(self, url, headers, body=None, method="GET"):
        self.requests.append(SimpleNamespace(url=url, headers=dict(headers), body=body, method=method))
        response = self.responses.get((method, url))
        if response is None:
            raise TransportError(404, f"HTTP 404: no fake response for {method} {url}", url=url)
        if isinstance(response, Exception):
            raise response
        return response

    def calls(self, method=None):
        return [r for r in self.requests if method is None or r.method == method]
