"""Database connection setup using SQLAlchemy (SQLite by default, MariaDB when DB_* vars are set)."""

import os
import logging
from fastapi import HTTPException
from sqlalchemy import create_engine, exc
from sqlalchemy.orm import sessionmaker, declarative_base
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()


def build_database_url() -> str:
    """
    DATABASE_URL wins. Otherwise, if the MariaDB credentials are all present,
    build a pymysql URL from them. Falls back to a local SQLite file.
    """
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    required_db_vars = {"DB_USER", "DB_PASS", "DB_HOST", "DB_NAME"}
    missing_vars = required_db_vars - set(os.environ)
    if not missing_vars:
        return (
            f"mysql+pymysql://{os.getenv('DB_USER')}:{os.getenv('DB_PASS')}"
            f"@{os.getenv('DB_HOST')}/{os.getenv('DB_NAME')}"
        )

    logger.warning(f"Missing database environment variables ({', '.join(sorted(missing_vars))}). Using local SQLite.")
    return "sqlite:///./video_service.db"


SQLALCHEMY_DATABASE_URL = build_database_url()


def make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    # pool_pre_ping handles connections dropped by the server while idle in the pool.
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


try:
    engine = make_engine(SQLALCHEMY_DATABASE_URL)
    with engine.connect() as connection:
        logger.info("Database connection established.")
except exc.SQLAlchemyError as e:
    logger.error(f"Could not connect to the database: {e}", exc_info=True)
    engine = None


# Each request (and each background continuation) gets its own session from this factory.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine) if engine else None

Base = declarative_base()


def get_db():
    """
    FastAPI dependency that yields a database session and always closes it.
    Database errors are rolled back and surfaced as a generic 500.
    """
    if SessionLocal is None:
        logger.error("Database session factory is not initialized.")
        raise HTTPException(status_code=503, detail="Database service unavailable.")

    db = SessionLocal()
    try:
        yield db
    except exc.SQLAlchemyError as e:
        logger.error(f"Database error during request: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal database error.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_session_factory():
    """
    FastAPI dependency returning the session factory itself.
    Background continuations outlive the request session, so they open their own.
    """
    if SessionLocal is None:
        raise HTTPException(status_code=503, detail="Database service unavailable.")
    return SessionLocal
