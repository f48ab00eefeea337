"""FastAPI dependencies gating routes behind account authentication.

``require_account`` injects the authenticated :class:`Account`;
``require_authentication`` only enforces it, for router-level use. Both clear
the request's identity cache entry once the route has finished, whether it
returned or raised.
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterator
from urllib.parse import urlsplit

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import PlainTextResponse

from ..config import get_settings
from ..domain.account import Account, Session
from ..domain.contracts import RequestContext
from ..domain.errors import AuthError, Unauthenticated
from ..domain.service import AuthenticationService, AuthResult
from ..security.credentials import HeaderNames, resolve_credentials

logger = logging.getLogger(__name__)


def get_service(request: Request) -> AuthenticationService:
    """Resolve the `AuthenticationService` stored on the FastAPI application state."""
    service: AuthenticationService = request.app.state.auth_service
    return service


def get_header_names() -> HeaderNames:
    return HeaderNames.from_settings(get_settings())


def get_request_context(request: Request) -> RequestContext:
    """Return the context identifying this request, minting its id on first use."""
    ctx = getattr(request.state, "auth_context", None)
    if ctx is None:
        ctx = RequestContext(request_id=uuid.uuid4().hex)
        request.state.auth_context = ctx
    return ctx


def send_session(request: Request, response: Response, session: Session, header_name: str) -> None:
    """Echo a new session token as a header, an exposed CORS header and a cookie."""
    domain = None
    origin = request.headers.get("origin")
    if origin:
        domain = urlsplit(origin).hostname
    response.headers[header_name] = session.key
    response.headers.append("Access-Control-Expose-Headers", header_name)
    response.set_cookie(header_name, session.key, domain=domain, path="/")


def authenticate_request(
    request: Request,
    response: Response,
    service: AuthenticationService,
    ctx: RequestContext,
    names: HeaderNames,
) -> AuthResult:
    if service.mocked_account is not None:
        return AuthResult(account=service.mocked_account)
    credentials = resolve_credentials(request.headers, request.cookies, names)
    result = service.authenticate(ctx, credentials)
    if result.session_created and result.session is not None:
        send_session(request, response, result.session, names.session)
    return result


def require_account(
    request: Request,
    response: Response,
    service: AuthenticationService = Depends(get_service),
    ctx: RequestContext = Depends(get_request_context),
    names: HeaderNames = Depends(get_header_names),
) -> Iterator[Account]:
    with service.identities.scope(ctx.request_id):
        result = authenticate_request(request, response, service, ctx, names)
        yield result.account


def require_authentication(
    request: Request,
    response: Response,
    service: AuthenticationService = Depends(get_service),
    ctx: RequestContext = Depends(get_request_context),
    names: HeaderNames = Depends(get_header_names),
) -> Iterator[None]:
    with service.identities.scope(ctx.request_id):
        authenticate_request(request, response, service, ctx, names)
        yield


def auth_error_handler(request: Request, exc: AuthError) -> Response:
    """401 with no body for missing credentials, 500 carrying the message otherwise."""
    if isinstance(exc, Unauthenticated):
        return Response(status_code=status.HTTP_401_UNAUTHORIZED)
    logger.info("authentication failed for %s: %s", request.url.path, exc.message)
    return PlainTextResponse(exc.message, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


def install_auth_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthError, auth_error_handler)
