from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
import logging

from metersync.core.config import settings
from metersync.db.base import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """Create an engine for the local record store.

    SQLite is the normal backing store on a field device; an in-memory URL
    shares one connection so every session sees the same tables.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, **kwargs)

    return create_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_timeout=30,
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = build_engine(settings.DATABASE_URL)

# Create SessionLocal class
SessionLocal = build_session_factory(engine)


def test_connection(bind: Engine = None) -> bool:
    """Test database connection - NON-BLOCKING."""
    bind = bind or engine
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return True
    except Exception as e:
        logger.warning(f"[database] Connection check failed: {e}")
        return False


def init_db(bind: Engine = None) -> None:
    """Create the record store tables if they do not exist."""
    # Import all models so they're registered with Base
    from metersync.models import meter, serial, sync  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("[database] Tables initialized")


def close_db_connection() -> None:
    """Close database connections."""
    engine.dispose()
    logger.info("[database] Connections closed")
