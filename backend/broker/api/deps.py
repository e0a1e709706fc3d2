from collections.abc import Generator
from typing import Annotated

from fastapi import Depends
from sqlmodel import Session

from broker.core.clock import Clock, utcnow
from broker.core.db import engine
from broker.services.token_issuer import TokenIssuer


def get_db() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]


def get_clock() -> Clock:
    """Time source for token and store expiry. Overridden in tests."""
    return utcnow


ClockDep = Annotated[Clock, Depends(get_clock)]


def get_token_issuer(session: SessionDep, clock: ClockDep) -> TokenIssuer:
    return TokenIssuer(session, clock=clock)


IssuerDep = Annotated[TokenIssuer, Depends(get_token_issuer)]
