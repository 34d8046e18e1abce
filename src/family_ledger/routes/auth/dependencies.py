"""
FastAPI dependencies that resolve the authenticated principal.

Two credential carriers are accepted: the browser session cookie and an ``Authorization: Bearer`` header used by
the mobile client. The session is consulted first; a valid session is never shadowed by a header, and an invalid
or missing session falls through to the bearer token.
"""

from typing import List, Optional, Protocol

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from family_ledger.managers.logging_manager import get_logger
from family_ledger.managers.security_manager import security_manager
from family_ledger.models.auth_models import Principal
from family_ledger.routes.auth.services.tokens import verify_bearer_token
from family_ledger.routes.auth.session_manager import SessionManager, session_manager
from family_ledger.utils.error_handling import Unauthenticated, http_exception_from
from family_ledger.utils.logging_utils import log_security_event

logger = get_logger(prefix="[Auth Dependencies]")

bearer_scheme = HTTPBearer(auto_error=False)


class AuthStrategy(Protocol):
    name: str

    async def resolve(self, request: Request) -> Optional[Principal]: ...


class SessionStrategy:
    name = "session"

    def __init__(self, manager: Optional[SessionManager] = None):
        self.manager = manager or session_manager

    async def resolve(self, request: Request) -> Optional[Principal]:
        return await self.manager.get_session_user(request)


class BearerStrategy:
    name = "bearer"

    async def resolve(self, request: Request) -> Optional[Principal]:
        header = request.headers.get("authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        claims = verify_bearer_token(token.strip())
        if claims is None:
            return None
        return Principal(id=claims.id, email=claims.email, name=claims.name)


class AuthResolver:
    """Tries each strategy in order and returns the first principal found."""

    def __init__(self, strategies: List[AuthStrategy]):
        self.strategies = strategies

    async def resolve(self, request: Request) -> Optional[Principal]:
        for strategy in self.strategies:
            principal = await strategy.resolve(request)
            if principal is not None:
                logger.debug("Request authenticated via %s for user %s", strategy.name, principal.id)
                return principal
        return None


auth_resolver = AuthResolver([SessionStrategy(), BearerStrategy()])


async def get_optional_principal(
    request: Request,
    _credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Principal]:
    """Resolve the principal if any credential is present and valid, else None."""
    return await auth_resolver.resolve(request)


async def get_current_principal(
    request: Request,
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> Principal:
    """
    Require an authenticated principal.

    Raises:
        HTTPException: 401 with a ``WWW-Authenticate: Bearer`` header when no credential resolves.
    """
    if principal is None:
        log_security_event(
            event_type="authentication_required",
            ip_address=security_manager.get_client_ip(request),
            success=False,
            details={"path": request.url.path, "method": request.method},
        )
        raise http_exception_from(Unauthenticated("Authentication required"))
    return principal
