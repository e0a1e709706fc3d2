import logging
from contextlib import contextmanager
from typing import Generator

from sqlmodel import Session, SQLModel, create_engine

from broker.core.config import settings

logger = logging.getLogger(__name__)

# Create database engine
engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI), pool_pre_ping=True)

# make sure all SQLModel models are imported (broker.models) before initializing DB
# otherwise, SQLModel might fail to register the tables in its metadata
from broker.models import FederatedIdentity, OAuthClient, StoreEntry  # noqa: E402,F401


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Get a database session context manager.

    This is used for background tasks that need database access
    outside of FastAPI's dependency injection.

    Usage:
        with get_session() as session:
            session.exec(select(StoreEntry)).all()
    """
    with Session(engine) as session:
        yield session


def init_db() -> None:
    """Create all tables that do not exist yet."""
    SQLModel.metadata.create_all(engine)
    logger.info("Database tables ready")
