# db_sql.py
import logging
import os
from urllib.parse import quote_plus

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from utils.errors import Unavailable

logger = logging.getLogger(__name__)

DB_HOST = os.getenv("DB_HOST", "localhost").strip()
DB_PORT = os.getenv("DB_PORT", "3306").strip()
DB_USER = os.getenv("DB_USER", "root").strip()
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
DB_NAMES = os.getenv("DB_NAMES", "grievance_portal")
PORTAL_DB = DB_NAMES.split(",")[-1].strip()
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "10"))

SQL_URL = os.getenv("DATABASE_URL") or (
    f"mysql+pymysql://{DB_USER}:{quote_plus(DB_PASSWORD)}@{DB_HOST}:{DB_PORT}/{PORTAL_DB}"
)

if SQL_URL.startswith("sqlite"):
    # single shared connection so the in-memory database survives across threads
    engine = create_engine(
        SQL_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
else:
    engine = create_engine(SQL_URL, pool_pre_ping=True, pool_timeout=DB_POOL_TIMEOUT, future=True)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def commit(db):
    """Commit the unit of work, or roll it back and report the store as unavailable."""
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("commit failed: %s", e.__class__.__name__)
        raise Unavailable("The service is temporarily unavailable. Please try again.") from e
