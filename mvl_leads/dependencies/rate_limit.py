"""
Rate limit dependency for the lead form routes.
"""
from fastapi import Depends, Request

from mvl_leads.dependencies.services import LeadServices, get_services
from mvl_leads.errors import APIError
from mvl_leads.logging_config import get_logger
from mvl_leads.routes.metrics import track_rate_limit_exceeded
from mvl_leads.services.spam_guard import get_client_ip

log = get_logger(component="rate_limit")

RATE_LIMIT_MESSAGE = "Too many requests. Please try again later."


def rate_limited(form_type: str):
    """
    Build a dependency that counts the request against the client IP.

    Raises 429 once the IP has used up its window.

    Usage:
        @router.post("", dependencies=[Depends(rate_limited("contact"))])
    """

    async def check_rate_limit(
        request: Request,
        services: LeadServices = Depends(get_services),
    ) -> None:
        client_ip = get_client_ip(request.headers)
        result = services.rate_limiter.check(client_ip)

        if not result.allowed:
            track_rate_limit_exceeded(form_type)
            log.warning("rate_limit_exceeded", form_type=form_type, retry_after=result.retry_after)
            raise APIError(
                429,
                RATE_LIMIT_MESSAGE,
                headers={"Retry-After": str(result.retry_after)},
            )

    return check_rate_limit
