"""
OAuth 2.0 authorization server endpoints.

Provides endpoints for:
- Authorization requests (browser redirect, code grant)
- Token exchange (authorization_code and refresh_token grants)
- Token introspection (RFC 7662) and revocation (RFC 7009)
- Authorization server metadata (RFC 8414)

Protocol decisions live in broker.services.authorization; handlers only
parse the request and shape the response. Handlers that touch the
database or check client secrets (bcrypt) are plain functions, which
FastAPI runs in its threadpool instead of on the event loop.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Form, Header, Request, Response, status
from fastapi.responses import RedirectResponse

from broker.api.deps import IssuerDep, SessionDep
from broker.api.responses import NO_STORE_HEADERS, plain_error_response
from broker.core.config import settings
from broker.core.errors import ClientError, OAuthError
from broker.core.urls import build_redirect_url
from broker.models import (
    AuthorizationServerMetadata,
    IntrospectionResponse,
    TokenResponse,
)
from broker.services.authorization import (
    build_metadata,
    exchange_token,
    validate_authorization_request,
    validate_client_redirect,
)
from broker.services.federation import get_provider
from broker.services.session_broker import (
    ClientAuthorizationRequest,
    start_federation,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["oauth"])


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


def _redirect_error(redirect_uri: str, exc: OAuthError, state: str | None) -> RedirectResponse:
    """Report an error to a verified redirect URI (RFC 6749 section 4.1.2.1)."""
    return _redirect(
        build_redirect_url(
            redirect_uri,
            {
                "error": exc.error,
                "error_description": exc.description,
                "state": state,
            },
        )
    )


@router.get("/oauth/authorize")
def authorize(
    request: Request,
    session: SessionDep,
    issuer: IssuerDep,
    response_type: str | None = None,
    client_id: str | None = None,
    redirect_uri: str | None = None,
    scope: str | None = None,
    state: str | None = None,
    code_challenge: str | None = None,
    code_challenge_method: str | None = None,
    provider: str | None = None,
):
    """
    Start an authorization code grant.

    The client and redirect URI are checked first; failures there are shown
    to the user and never redirected. With a live first-party session the
    code is issued right away, otherwise the user is sent to the upstream
    provider and the code is issued from the federation callback.
    """
    try:
        client = validate_client_redirect(
            session=session,
            client_id=client_id,
            redirect_uri=redirect_uri,
        )
    except ClientError as e:
        return plain_error_response(e)

    try:
        granted_scope, pkce_method = validate_authorization_request(
            client=client,
            response_type=response_type,
            scope=scope,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )
    except OAuthError as e:
        return _redirect_error(redirect_uri, e, state)

    session_id = request.cookies.get(issuer.config.SESSION_COOKIE_NAME)
    record = issuer.get_session_record(session_id) if session_id else None
    if record is not None:
        code = issuer.issue_authorization_code(
            client.id,
            record.subject,
            granted_scope,
            redirect_uri,
            code_challenge,
            pkce_method,
            provider=record.provider,
        )
        logger.info("Issued authorization code to %s from existing session", client.id)
        return _redirect(build_redirect_url(redirect_uri, {"code": code, "state": state}))

    try:
        upstream = get_provider(provider or issuer.config.DEFAULT_PROVIDER, issuer.config)
    except OAuthError as e:
        return _redirect_error(redirect_uri, e, state)

    url = start_federation(
        issuer=issuer,
        provider=upstream,
        client_request=ClientAuthorizationRequest(
            client_id=client.id,
            redirect_uri=redirect_uri,
            scope=granted_scope,
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=pkce_method,
        ),
    )
    return _redirect(url)


@router.post(
    "/oauth/token",
    response_model=TokenResponse,
    response_model_exclude_none=True,
)
def token(
    response: Response,
    session: SessionDep,
    issuer: IssuerDep,
    grant_type: Annotated[str | None, Form()] = None,
    code: Annotated[str | None, Form()] = None,
    redirect_uri: Annotated[str | None, Form()] = None,
    code_verifier: Annotated[str | None, Form()] = None,
    refresh_token: Annotated[str | None, Form()] = None,
    scope: Annotated[str | None, Form()] = None,
    client_id: Annotated[str | None, Form()] = None,
    client_secret: Annotated[str | None, Form()] = None,
    authorization: Annotated[str | None, Header()] = None,
) -> TokenResponse:
    """
    Token endpoint.

    Errors are raised as OAuthError and rendered as JSON by the app's
    exception handler.
    """
    result = exchange_token(
        session=session,
        issuer=issuer,
        grant_type=grant_type,
        client_id=client_id,
        client_secret=client_secret,
        authorization=authorization,
        code=code,
        redirect_uri=redirect_uri,
        code_verifier=code_verifier,
        refresh_token=refresh_token,
        scope=scope,
    )
    response.headers.update(NO_STORE_HEADERS)
    return result


@router.post(
    "/oauth/introspect",
    response_model=IntrospectionResponse,
    response_model_exclude_none=True,
)
def introspect(
    response: Response,
    issuer: IssuerDep,
    token: Annotated[str | None, Form()] = None,
    token_type_hint: Annotated[str | None, Form()] = None,
) -> IntrospectionResponse:
    """Unknown, expired, revoked or malformed tokens are {"active": false}."""
    response.headers.update(NO_STORE_HEADERS)
    return IntrospectionResponse(**issuer.introspect(token or "", token_type_hint))


@router.post("/oauth/revoke")
def revoke(
    issuer: IssuerDep,
    token: Annotated[str | None, Form()] = None,
    token_type_hint: Annotated[str | None, Form()] = None,
) -> Response:
    """Always 200 with an empty body, whether or not the token existed."""
    issuer.revoke(token or "", token_type_hint)
    return Response(status_code=status.HTTP_200_OK)


@router.get(
    "/.well-known/oauth-authorization-server",
    response_model=AuthorizationServerMetadata,
    response_model_exclude_none=True,
)
async def authorization_server_metadata() -> AuthorizationServerMetadata:
    return build_metadata(settings)
