"""
Main FastAPI application entry point.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from broker.api.responses import oauth_error_response
from broker.api.router import router
from broker.core.config import settings
from broker.core.db import get_session, init_db
from broker.core.errors import OAuthError
from broker.crud.client import provision_clients_from_file
from broker.services.federation import get_unconfigured_providers
from broker.services.store_cleanup import run_purge_task

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, seed clients, check providers and run the store purge task."""
    logger.info("Starting %s %s", settings.PROJECT_NAME, settings.APP_VERSION)
    init_db()

    if settings.OAUTH_CLIENTS_FILE:
        with get_session() as session:
            clients = provision_clients_from_file(session=session, path=settings.OAUTH_CLIENTS_FILE)
        logger.info("Seeded %d client(s) from %s", len(clients), settings.OAUTH_CLIENTS_FILE)

    unconfigured = get_unconfigured_providers(settings)
    if unconfigured:
        logger.warning(
            "Providers without credentials (login will fail with 500): %s",
            ", ".join(unconfigured),
        )

    stop_event = asyncio.Event()
    purge_task = asyncio.create_task(
        run_purge_task(
            get_session=get_session,
            interval_seconds=settings.STORE_PURGE_INTERVAL_SECONDS,
            stop_event=stop_event,
        )
    )
    yield
    stop_event.set()
    await purge_task
    logger.info("Shut down")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.APP_VERSION,
    description="OAuth 2.0 authorization server federating logins to GitHub and Google",
    lifespan=lifespan,
)

if settings.all_cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.all_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(OAuthError)
async def oauth_error_handler(request: Request, exc: OAuthError):
    return oauth_error_response(exc)


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("broker.main:app", host="0.0.0.0", port=settings.PORT)
