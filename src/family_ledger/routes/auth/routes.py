"""
Authentication routes for Family Ledger.

Defines endpoints for registration, mobile (bearer token) login, browser (session cookie) login and logout, and
the current-principal lookup. Business logic lives in the service modules; every credential endpoint is rate
limited per client IP.
"""

from fastapi import APIRouter, Depends, Request, Response, status
from pymongo.errors import PyMongoError

from family_ledger.config import settings
from family_ledger.managers.logging_manager import get_logger
from family_ledger.managers.security_manager import security_manager
from family_ledger.models.auth_models import (
    LoginRequest,
    LoginResponse,
    MobileLoginResponse,
    Principal,
    RegisterRequest,
    RegisterResponse,
    UserResponse,
)
from family_ledger.models.ledger_models import MessageResponse
from family_ledger.routes.auth.dependencies import get_current_principal
from family_ledger.routes.auth.services.registration import authenticate_user, register_user
from family_ledger.routes.auth.services.tokens import issue_bearer_token
from family_ledger.routes.auth.session_manager import session_manager
from family_ledger.utils.error_handling import LedgerError, Unauthenticated, http_exception_from, internal_error
from family_ledger.utils.logging_utils import log_error_with_context, log_performance, log_security_event

logger = get_logger(prefix="[Auth Routes]")

router = APIRouter(prefix="/auth", tags=["Authentication"])

INVALID_CREDENTIALS_MSG = "Invalid email or password"


def _user_response(user: dict) -> UserResponse:
    return UserResponse(id=str(user["_id"]), email=user["email"], name=user["name"])


async def _check_auth_rate_limit(request: Request, action: str) -> None:
    await security_manager.check_rate_limit(
        request, action, rate_limit_requests=settings.AUTH_RATE_LIMIT, rate_limit_period=settings.AUTH_RATE_PERIOD
    )


async def _authenticate_or_401(request: Request, payload: LoginRequest, channel: str) -> dict:
    ip_address = security_manager.get_client_ip(request)
    try:
        user = await authenticate_user(payload.email, payload.password)
    except PyMongoError as e:
        log_error_with_context(e, context={"channel": channel}, operation="authenticate_user")
        raise internal_error() from e
    if user is None:
        log_security_event(
            event_type=f"{channel}_login", ip_address=ip_address, success=False, details={"email": payload.email}
        )
        raise http_exception_from(Unauthenticated(INVALID_CREDENTIALS_MSG, "INVALID_CREDENTIALS"))
    log_security_event(event_type=f"{channel}_login", user_id=str(user["_id"]), ip_address=ip_address, success=True)
    return user


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_200_OK,
    summary="Register a new account",
    description="""
    Create an account with a display name, email and password.

    - Email is stored lowercased; a second registration with the same address in any case is refused (409).
    - Password must be 8 to 72 characters.
    - The account starts with a set of default categories.
    """,
)
@log_performance("register_endpoint")
async def register(payload: RegisterRequest, request: Request) -> RegisterResponse:
    await _check_auth_rate_limit(request, "register")
    try:
        user = await register_user(payload.name, payload.email, payload.password)
    except LedgerError as e:
        logger.warning("Registration failed for %s: %s", payload.email, e.message)
        raise http_exception_from(e) from e
    except PyMongoError as e:
        log_error_with_context(e, context={"email": payload.email}, operation="register")
        raise internal_error() from e
    return RegisterResponse(success=True, user=_user_response(user))


@router.post("/mobile", response_model=MobileLoginResponse, summary="Log in and receive a bearer token")
@log_performance("mobile_login_endpoint")
async def mobile_login(payload: LoginRequest, request: Request) -> MobileLoginResponse:
    """Exchange credentials for a 7-day bearer token, for clients that cannot hold cookies."""
    await _check_auth_rate_limit(request, "mobile_login")
    user = await _authenticate_or_401(request, payload, "mobile")
    user_response = _user_response(user)
    token = issue_bearer_token(user_response.model_dump())
    return MobileLoginResponse(user=user_response, access_token=token)


@router.post("/login", response_model=LoginResponse, summary="Log in with a browser session")
@log_performance("browser_login_endpoint")
async def browser_login(payload: LoginRequest, request: Request, response: Response) -> LoginResponse:
    """Validate credentials and set the session cookie on the response."""
    await _check_auth_rate_limit(request, "browser_login")
    user = await _authenticate_or_401(request, payload, "browser")
    await session_manager.create_session(user, request, response)
    return LoginResponse(user=_user_response(user))


@router.post("/logout", response_model=MessageResponse, summary="End the browser session")
async def logout(request: Request, response: Response) -> MessageResponse:
    destroyed = await session_manager.destroy_session(request, response)
    if destroyed:
        log_security_event(event_type="logout", ip_address=security_manager.get_client_ip(request), success=True)
    return MessageResponse(message="Logged out")


@router.get("/me", response_model=UserResponse, summary="Current principal")
async def me(principal: Principal = Depends(get_current_principal)) -> UserResponse:
    return UserResponse(id=principal.id, email=principal.email, name=principal.name)
