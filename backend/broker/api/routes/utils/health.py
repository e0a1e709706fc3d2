import logging

from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from broker.api.deps import SessionDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["utils"])


@router.get("/health")
async def health_check(session: SessionDep):
    """
    Health check endpoint that verifies the state store is reachable.

    Every replica shares the store, so a replica that cannot reach it
    cannot serve any flow.
    """
    try:
        session.exec(select(1)).first()
        db_status = "healthy"
        db_message = "Database connection successful"
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", type(e).__name__)
        db_status = "unhealthy"
        db_message = "Database connection failed"

    overall_status = "healthy" if db_status == "healthy" else "unhealthy"

    return {
        "status": overall_status,
        "message": "Broker is running",
        "database": {"status": db_status, "message": db_message},
    }
