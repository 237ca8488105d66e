"""
Service container for the lead pipeline.

Built once per process (application lifespan or worker startup) and
handed to request handlers through `get_services`.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from mvl_leads.config import Settings
from mvl_leads.database import create_engine, create_session_factory
from mvl_leads.logging_config import get_logger
from mvl_leads.services.backup_store import BackupStore
from mvl_leads.services.email_fallback import EmailFallback, EmailSender
from mvl_leads.services.ip_anonymizer import IPAnonymizer
from mvl_leads.services.spam_guard import RateLimiter
from mvl_leads.services.webhook_service import WebhookService

log = get_logger(component="services")


@dataclass
class LeadServices:
    settings: Settings
    backup_store: BackupStore
    rate_limiter: RateLimiter
    webhook_service: WebhookService
    email_fallback: EmailFallback
    ip_anonymizer: IPAnonymizer
    http_client: httpx.AsyncClient
    engine: Optional[AsyncEngine] = None

    async def aclose(self) -> None:
        await self.http_client.aclose()
        if self.engine is not None:
            await self.engine.dispose()
        log.info("services_closed")


def build_services(
    settings: Settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    engine: Optional[AsyncEngine] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    email_sender: Optional[EmailSender] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rate_limiter: Optional[RateLimiter] = None,
) -> LeadServices:
    """
    Wire the lead services together.

    Args:
        settings: Application settings
        session_factory: Database sessions; built from DATABASE_URL if omitted
        engine: Engine owned by the container (disposed on close)
        http_client: Shared client for webhook and geolocation calls
        email_sender: Replaces the SMTP transport (tests)
        sleep: Replaces asyncio.sleep between webhook retries (tests)
        rate_limiter: Replaces the default 5-per-15-minutes limiter

    Returns:
        LeadServices container
    """
    if session_factory is None:
        engine = engine or create_engine(settings.DATABASE_URL, echo=settings.DEBUG)
        session_factory = create_session_factory(engine)

    http_client = http_client or httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
    backup_store = BackupStore(session_factory)

    return LeadServices(
        settings=settings,
        backup_store=backup_store,
        rate_limiter=rate_limiter or RateLimiter(),
        webhook_service=WebhookService(
            http_client=http_client,
            backup_store=backup_store,
            sleep=sleep,
            timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
            circuit_breaker_threshold=settings.CIRCUIT_BREAKER_THRESHOLD,
        ),
        email_fallback=EmailFallback(settings, sender=email_sender),
        ip_anonymizer=IPAnonymizer(http_client, geolocation_enabled=settings.IP_GEOLOCATION_ENABLED),
        http_client=http_client,
        engine=engine,
    )


def get_services(request: Request) -> LeadServices:
    """
    Dependency returning the container stored on the application.

    Usage:
        @router.post("")
        async def submit(services: LeadServices = Depends(get_services)):
            ...
    """
    return request.app.state.services
