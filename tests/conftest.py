"""
Shared fixtures: a SQLite database per test, a fake webhook endpoint,
a recording mail sender and an in-process ASGI client.
"""
import httpx
import pytest

from mvl_leads.config import Settings
from mvl_leads.database import create_all, create_engine, create_session_factory
from mvl_leads.dependencies.services import build_services
from mvl_leads.main import create_app
from mvl_leads.services.backup_store import BackupStore
from mvl_leads.services.spam_guard import RateLimiter

WEBHOOK_URL = "https://hooks.example.test/contact"
OPEN_HOUSE_WEBHOOK_URL = "https://hooks.example.test/open-house"


class FakeWebhook:
    """MockTransport handler answering every request with one status code."""

    def __init__(self, status_code: int = 200, connect_error: bool = False):
        self.status_code = status_code
        self.connect_error = connect_error
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.connect_error:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(self.status_code)

    def fail_with(self, status_code: int) -> None:
        self.status_code = status_code
        self.connect_error = False


class FakeMailer:
    """Email sender that records messages instead of talking SMTP."""

    def __init__(self):
        self.messages = []

    async def __call__(self, message, config):
        self.messages.append(message)

    def subjects(self) -> list[str]:
        return [m["Subject"] for m in self.messages]


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "sqlite+aiosqlite://",
        "IP_GEOLOCATION_ENABLED": False,
        "EMAIL_FALLBACK_ENABLED": False,
        "CONTACT_WEBHOOK_URL": WEBHOOK_URL,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


EMAIL_SETTINGS = {
    "EMAIL_FALLBACK_ENABLED": True,
    "GMAIL_USER": "leads@mtvernonlofts.com",
    "GMAIL_APP_PASSWORD": "app-password",
    "EMAIL_RECIPIENTS_TECHNICAL": "tech@mtvernonlofts.com",
    "EMAIL_RECIPIENTS_SALES": "sales@mtvernonlofts.com, agent@mtvernonlofts.com",
}


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'leads.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def backup_store(session_factory):
    return BackupStore(session_factory)


@pytest.fixture
def webhook():
    return FakeWebhook()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
async def make_services(session_factory, webhook, mailer, sleep):
    """Factory building a service container around the test database and fakes."""
    clients = []

    def factory(**setting_overrides):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(webhook))
        clients.append(http_client)
        return build_services(
            make_settings(**setting_overrides),
            session_factory=session_factory,
            http_client=http_client,
            email_sender=mailer,
            sleep=sleep,
            rate_limiter=RateLimiter(),
        )

    yield factory

    for http_client in clients:
        await http_client.aclose()


@pytest.fixture
async def make_client(make_services):
    """Factory returning an ASGI client for an app built with the given settings."""
    opened = []

    async def factory(**setting_overrides):
        services = make_services(**setting_overrides)
        app = create_app(services.settings, services=services)
        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
        opened.append((client, services))
        return client, services

    yield factory

    for client, _ in opened:
        await client.aclose()


@pytest.fixture
async def client(make_client):
    client, _ = await make_client()
    return client
