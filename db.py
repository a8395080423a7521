from collections.abc import Generator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

import config


def build_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine, adjusting connection options for SQLite."""
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # every session must see the same in-memory database
        kwargs["poolclass"] = StaticPool
    return create_engine(url, echo=echo, **kwargs)


engine = build_engine(config.DATABASE_URL, echo=config.SQL_ECHO)


def create_db_and_tables(bind: Engine = engine) -> None:
    """Create all tables in the database if they don't exist."""
    # table models register themselves on import
    import models  # noqa: F401

    SQLModel.metadata.create_all(bind)


def get_session() -> Generator[Session, None, None]:
    """Yield a database session for dependency injection."""
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_session)]
