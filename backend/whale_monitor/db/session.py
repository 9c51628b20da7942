"""
Database Session Management

SQLAlchemy setup for SQLite (development, tests) or PostgreSQL (production)
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
import os
from dotenv import load_dotenv
from whale_monitor.core.logging_config import get_logger

# Load environment variables
load_dotenv()

logger = get_logger()

# Get database URL from environment or use SQLite as fallback
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./whale_monitor.db")


def build_engine(database_url: str) -> Engine:
    """
    Create an engine with settings appropriate for the backend

    SQLite gets check_same_thread=False so the scheduler and request
    handlers can share the engine.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False
        )

    return create_engine(
        database_url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        echo=False
    )


engine = build_engine(DATABASE_URL)
if DATABASE_URL.startswith("sqlite"):
    logger.info(f"Using SQLite database: {DATABASE_URL}")
else:
    logger.info("Using PostgreSQL database")

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """
    Dependency for FastAPI endpoints

    Usage:
        @router.get("/wallets")
        async def list_wallets(db: Session = Depends(get_db)):
            return db.query(MonitoredWallet).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """
    Initialize database

    Creates all tables from models
    """
    from whale_monitor.db.models import Base

    logger.info("Creating database tables", extra={"database_url": DATABASE_URL})
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")


__all__ = ["engine", "SessionLocal", "build_engine", "get_db", "init_db"]
