"""
Dependencies for database sessions and the send queue.
"""
from typing import Generator

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from broadcaster.database import SessionLocal
from broadcaster.utils import get_logger

logger = get_logger(__name__)


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


def get_send_queue(request: Request):
    """Send queue started by the application lifespan."""
    queue = getattr(request.app.state, "send_queue", None)
    if queue is None:
        raise HTTPException(status_code=503, detail="Send queue not available")
    return queue
