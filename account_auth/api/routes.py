"""HTTP route definitions for account creation and authentication."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, EmailStr, ValidationError
from starlette.concurrency import run_in_threadpool

from ..config import get_settings
from ..domain.account import Account, User
from ..domain.contracts import CreateAccountInput, CreateUserInput, RequestContext
from ..domain.errors import AuthError, UsernameTaken
from ..domain.service import AuthenticationService
from ..security.credentials import HeaderNames, session_token_from
from .dependencies import (
    authenticate_request,
    get_header_names,
    get_request_context,
    get_service,
    require_account,
)

logger = logging.getLogger(__name__)

settings = get_settings()

router = APIRouter(prefix=f"/{settings.accounts_prefix}")

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


class ApiResponse(BaseModel):
    """Generic envelope returned by the account routes."""

    code: int
    message: str = ""
    result: Any = None
    data: dict[str, Any] | None = None


class AccountResponse(BaseModel):
    """Serialised representation of an `Account`."""

    account_id: str
    name: str
    slug: str
    active: bool
    created_at: datetime | None = None
    api_key: str | None = None

    @classmethod
    def from_domain(cls, account: Account, *, include_key: bool = False) -> "AccountResponse":
        """Build a response model; the API key is only revealed when the account is created."""
        return cls(
            account_id=account.account_id,
            name=account.name,
            slug=account.slug,
            active=account.active,
            created_at=account.created_at,
            api_key=account.api_key if include_key else None,
        )


class UserResponse(BaseModel):
    user_id: int | None
    username: str
    email: str
    first_name: str
    last_name: str
    account: str | None
    created_at: datetime | None = None
    last_login: datetime | None = None

    @classmethod
    def from_domain(cls, user: User) -> "UserResponse":
        return cls(
            user_id=user.key,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            account=user.account_key,
            created_at=user.created_at,
            last_login=user.last_login,
        )


class NewAccountRequest(BaseModel):
    """JSON body accepted when creating an account."""

    name: str = ""
    active: bool = True


class CreateUserRequest(BaseModel):
    """Payload accepted when adding a user to the authenticated account."""

    password: str
    username: str = ""
    email: EmailStr | None = None
    first_name: str = ""
    last_name: str = ""


class CurrentIdentityResponse(BaseModel):
    account: AccountResponse
    user: UserResponse | None = None


def _missing_account_name(response: Response) -> ApiResponse:
    response.status_code = status.HTTP_400_BAD_REQUEST
    return ApiResponse(code=status.HTTP_400_BAD_REQUEST, message="Account name must be provided")


@router.post("/new", response_model=ApiResponse)
async def new_account(
    request: Request,
    response: Response,
    service: AuthenticationService = Depends(get_service),
    ctx: RequestContext = Depends(get_request_context),
) -> ApiResponse:
    """Create an account named by the ``account`` form field or by a JSON body."""
    name = request.query_params.get("account")
    if not name and request.headers.get("content-type", "").startswith(_FORM_TYPES):
        form = await request.form()
        value = form.get("account")
        name = value if isinstance(value, str) else None
        if not name:
            return _missing_account_name(response)
    if name:
        payload = CreateAccountInput(name=name, active=True)
    else:
        body = await request.body()
        if not body.strip():
            return _missing_account_name(response)
        try:
            parsed = NewAccountRequest.model_validate_json(body)
        except ValidationError as exc:
            response.status_code = status.HTTP_400_BAD_REQUEST
            return ApiResponse(code=status.HTTP_400_BAD_REQUEST, message=str(exc))
        payload = CreateAccountInput(name=parsed.name, active=parsed.active)

    account = await run_in_threadpool(service.create_account, ctx, payload)
    return ApiResponse(
        code=status.HTTP_200_OK,
        result=AccountResponse.from_domain(account, include_key=True).model_dump(mode="json"),
    )


@router.post("/authenticate", response_model=ApiResponse)
def authenticate(
    request: Request,
    response: Response,
    service: AuthenticationService = Depends(get_service),
    ctx: RequestContext = Depends(get_request_context),
    names: HeaderNames = Depends(get_header_names),
) -> ApiResponse:
    """Authenticate by any credential path and return the session token."""
    with service.identities.scope(ctx.request_id):
        try:
            result = authenticate_request(request, response, service, ctx, names)
            session = result.session or service.current_session(ctx)
        except AuthError as exc:
            logger.warning("authentication rejected: %s", exc.message)
            response.status_code = status.HTTP_403_FORBIDDEN
            return ApiResponse(code=status.HTTP_403_FORBIDDEN, message=exc.message)
    return ApiResponse(code=status.HTTP_200_OK, data={"session": session.key})


@router.post("/logout", response_model=ApiResponse)
def logout(
    request: Request,
    response: Response,
    service: AuthenticationService = Depends(get_service),
    ctx: RequestContext = Depends(get_request_context),
    names: HeaderNames = Depends(get_header_names),
) -> ApiResponse:
    """Invalidate the session presented on the request."""
    token = session_token_from(request.headers, request.cookies, names)
    existed = service.logout(ctx, token)
    response.delete_cookie(names.session, path="/")
    return ApiResponse(code=status.HTTP_200_OK, data={"existed": existed})


@router.get("/me", response_model=CurrentIdentityResponse)
def current_identity(
    account: Account = Depends(require_account),
    service: AuthenticationService = Depends(get_service),
    ctx: RequestContext = Depends(get_request_context),
) -> CurrentIdentityResponse:
    """Return the account (and user, when signed in as one) behind this request."""
    user = service.current_identity(ctx).user
    return CurrentIdentityResponse(
        account=AccountResponse.from_domain(account),
        user=UserResponse.from_domain(user) if user is not None else None,
    )


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: CreateUserRequest,
    account: Account = Depends(require_account),
    service: AuthenticationService = Depends(get_service),
    ctx: RequestContext = Depends(get_request_context),
) -> UserResponse:
    """Create a user owned by the authenticated account."""
    try:
        user = service.create_user(
            ctx,
            CreateUserInput(
                password=payload.password,
                username=payload.username,
                email=payload.email or "",
                first_name=payload.first_name,
                last_name=payload.last_name,
            ),
        )
    except UsernameTaken as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return UserResponse.from_domain(user)
