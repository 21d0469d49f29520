from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from daycare.config import settings
from daycare.infrastructure.cache.redis_store import redis_is_available


def get_health_status(db: Session, redis_client) -> dict:
    db_connected = False
    try:
        db.execute(text("SELECT 1"))
        db_connected = True
    except SQLAlchemyError:
        db_connected = False

    return {
        "message": f"Hello from {settings.app_name}",
        "db_connected": db_connected,
        "redis_connected": redis_is_available(redis_client),
    }
