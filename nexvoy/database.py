# nexvoy/database.py
from contextlib import contextmanager
from datetime import datetime
from functools import lru_cache
import logging
from typing import Any, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .core.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    """Create an engine suited to the URL's dialect."""
    if database_url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            # One shared connection, otherwise each checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)
    else:
        engine = create_engine(
            database_url,
            pool_size=10,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=3600,
            pool_pre_ping=True,
        )

    @event.listens_for(engine, "connect")
    def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
        connection_record.info["connect_time"] = datetime.now()
        logger.debug("Database connection established")

    return engine


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return build_engine(settings.database_url)


def build_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine or get_engine(),
        expire_on_commit=False,
    )


def init_db(engine: Optional[Engine] = None) -> None:
    """Create the booking tables if they do not exist."""
    from .models import records  # noqa: F401  (registers tables on Base)

    Base.metadata.create_all(bind=engine or get_engine())


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
