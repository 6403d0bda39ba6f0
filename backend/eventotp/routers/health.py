import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from eventotp.core.deps import get_db

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
def health_check(db: Session = Depends(get_db)):
    """Health check; includes challenge store connectivity."""
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as e:
        logger.warning("Health check database query failed: %s", e)
        db_ok = False
    return {
        "status": "ok",
        "database": "connected" if db_ok else "disconnected",
    }
