import os
import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_engine_from_url(database_url: str):
    """
    Creates a SQLAlchemy engine from a database URL.

    PostgreSQL uses pool_pre_ping=True to detect dropped connections.
    SQLite connections are shared across threads because account creation
    runs in a worker thread.
    """
    is_postgres = "postgresql" in database_url.lower() or "postgres" in database_url.lower()

    if is_postgres:
        engine = create_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
        )
        logger.info("PostgreSQL engine created with pool_pre_ping=True")
    elif database_url in ("sqlite://", "sqlite:///:memory:"):
        # a single connection, otherwise every checkout sees an empty database
        engine = create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        logger.info("In-memory SQLite engine created")
    else:
        engine = create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False} if database_url.startswith("sqlite") else {},
        )
        logger.info("SQLite engine created")

    return engine


def create_session_factory(database_url: str, create_tables: bool = False):
    """
    Creates a SQLAlchemy session factory.

    Args:
        database_url: database connection URL
        create_tables: create tables on startup (dev/test only).
                       In production, use Alembic migrations.
    """
    engine = create_engine_from_url(database_url)

    if create_tables:
        env = os.getenv("ENV", "dev").lower()
        if env == "prod":
            logger.warning(
                "create_tables=True in production! "
                "Use Alembic migrations instead of creating tables automatically."
            )
        else:
            logger.info("Creating tables automatically (dev/test mode)")
            # models must be imported so their tables are registered on Base
            from . import models  # noqa: F401
            Base.metadata.create_all(bind=engine)

    return sessionmaker(bind=engine, expire_on_commit=False)
