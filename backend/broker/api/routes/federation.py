"""
Federation login and first-party session routes.

Provides endpoints for:
- Listing upstream providers and whether they are configured
- Starting a login with GitHub or Google
- Handling the provider callback
- Looking up and ending first-party sessions

The callback is browser-facing: failures are shown as plain-text pages,
never as redirects carrying partial state.
"""

import logging

from fastapi import APIRouter, HTTPException, Response, status
from fastapi.responses import RedirectResponse

from broker.api.deps import IssuerDep, SessionDep
from broker.api.responses import NO_STORE_HEADERS, plain_error_response
from broker.core.errors import OAuthError, ProviderError
from broker.models import ProvidersResponse, ProviderStatus, SessionInfo
from broker.services.federation import (
    get_provider,
    get_supported_providers,
    is_provider_configured,
)
from broker.services.session_broker import (
    complete_federation,
    end_session,
    get_session_info,
    start_federation,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["federation"])


@router.get("/providers", response_model=ProvidersResponse)
async def list_providers(issuer: IssuerDep) -> ProvidersResponse:
    """
    List supported upstream providers.

    Only reports whether credentials are present, never their values.
    """
    base = issuer.config.issuer
    return ProvidersResponse(
        providers=[
            ProviderStatus(
                name=name,
                configured=is_provider_configured(name, issuer.config),
                login_url=f"{base}/auth/{name}",
            )
            for name in get_supported_providers()
        ]
    )


@router.get("/session/{session_id}", response_model=SessionInfo)
def read_session(
    session_id: str,
    response: Response,
    issuer: IssuerDep,
) -> SessionInfo:
    """
    Session lookup for first-party clients (dashboard, CLI, tool server).
    """
    info = get_session_info(issuer=issuer, session_id=session_id)
    if info is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found or expired",
        )
    response.headers.update(NO_STORE_HEADERS)
    return info


@router.delete("/session/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_session(session_id: str, issuer: IssuerDep) -> Response:
    """Log out. Idempotent."""
    end_session(issuer=issuer, session_id=session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{provider}")
def start_login(provider: str, issuer: IssuerDep):
    """
    Start a first-party login with an upstream provider.

    Unknown providers are 404 and unconfigured ones 500; neither redirects.
    """
    try:
        upstream = get_provider(provider, issuer.config)
    except OAuthError as e:
        return plain_error_response(e)

    url = start_federation(issuer=issuer, provider=upstream)
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.get("/{provider}/callback")
async def login_callback(
    provider: str,
    session: SessionDep,
    issuer: IssuerDep,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
):
    """
    Handle the upstream provider's redirect.

    On success the browser goes to the client that started the flow (with
    a code) or to the first-party destination (with a session id). The
    session id is also set as an HttpOnly cookie.
    """
    try:
        upstream = get_provider(provider, issuer.config)
        if error:
            logger.warning("%s returned error on callback: %s", provider, error)
            raise ProviderError(
                provider,
                f"{provider} OAuth error: {error_description or error}",
                upstream_error=error,
            )
        result = await complete_federation(
            session=session,
            issuer=issuer,
            provider=upstream,
            code=code,
            state_token=state,
        )
    except OAuthError as e:
        return plain_error_response(e)

    config = issuer.config
    redirect = RedirectResponse(url=result.redirect_url, status_code=status.HTTP_302_FOUND)
    redirect.set_cookie(
        key=config.SESSION_COOKIE_NAME,
        value=result.session_id,
        max_age=config.SESSION_TTL_SECONDS,
        httponly=True,
        secure=config.issuer.startswith("https://"),
        samesite="lax",
    )
    return redirect


# Login routes are also reachable under /api/auth for deployments that proxy only /api
api_alias_router = APIRouter(prefix="/api/auth", include_in_schema=False)
api_alias_router.add_api_route("/{provider}", start_login, methods=["GET"])
api_alias_router.add_api_route("/{provider}/callback", login_callback, methods=["GET"])
