"""
Admin key dependency for the operational status and export routes.

When ADMIN_API_KEY is unset the routes stay open, matching a
single-site deployment behind the host's own access controls.
"""
import secrets
from typing import Optional

from fastapi import Depends, status
from fastapi.security import APIKeyHeader

from mvl_leads.dependencies.services import LeadServices, get_services
from mvl_leads.errors import APIError

# Security scheme
admin_key_header = APIKeyHeader(name="X-Admin-Key", auto_error=False)


async def require_admin_key(
    api_key: Optional[str] = Depends(admin_key_header),
    services: LeadServices = Depends(get_services),
) -> None:
    """
    Dependency that requires the admin key when one is configured.

    Raises 401 on a missing or wrong key.
    """
    expected = services.settings.ADMIN_API_KEY
    if not expected:
        return

    if not api_key or not secrets.compare_digest(api_key, expected):
        raise APIError(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
