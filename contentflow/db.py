from __future__ import annotations

import logging
from collections.abc import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from contentflow.config import settings
from contentflow.models import Base
from contentflow.repositories import SqlKeyValueStore

logger = logging.getLogger(__name__)


def create_store_engine(db_url: str) -> Engine:
    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
    return create_engine(db_url, future=True, connect_args=connect_args)


engine: Engine = create_store_engine(settings.CONTENTFLOW_DB_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def init_db() -> None:
    """Create the key-value table and drop run records that already expired."""
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        purged = SqlKeyValueStore(session).purge_expired()
    if purged:
        logger.info("Purged expired key-value records", extra={"purged": purged})


def get_session() -> Iterator[Session]:
    with SessionLocal() as session:
        yield session
