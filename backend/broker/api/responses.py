"""
Error responses for the two kinds of callers.

Machine-facing endpoints (/oauth/token, /oauth/introspect, ...) get the
RFC 6749 JSON error body. Browser-facing endpoints (/oauth/authorize
before the redirect URI is trusted, /auth/{provider}/callback) get a
plain-text page with the same status code.
"""

from fastapi.responses import JSONResponse, PlainTextResponse

from broker.core.errors import OAuthError

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def oauth_error_response(exc: OAuthError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=NO_STORE_HEADERS,
    )


def plain_error_response(exc: OAuthError) -> PlainTextResponse:
    return PlainTextResponse(
        exc.description or exc.error,
        status_code=exc.status_code,
        headers=NO_STORE_HEADERS,
    )
