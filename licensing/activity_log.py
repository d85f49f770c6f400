from typing import Any, Dict, Iterable, Optional
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from extensions import db
from models import Activity, AnalyticsEvent, SYSTEM_ACTOR
import traceback


class ActivityLogger:
    """
    Append-only audit trail. Writes are best effort and never fail the caller:
    audit rows are committed after the business change, in their own transaction.
    """

    @staticmethod
    def entry(action: str, details: str, actor: Optional[str] = None,
              key_id: Optional[int] = None, ip_address: Optional[str] = None,
              type: str = "system", extra: Optional[Dict[str, Any]] = None) -> Activity:
        """Build an unsaved activity row."""
        return Activity(
            action=action,
            details=details,
            actor=actor or SYSTEM_ACTOR,
            key_id=key_id,
            ip_address=ip_address or "unknown",
            type=type,
            extra=extra,
        )

    @staticmethod
    def log(action: str, details: str, actor: Optional[str] = None, **kwargs) -> bool:
        return ActivityLogger.log_many([ActivityLogger.entry(action, details, actor, **kwargs)])

    @staticmethod
    def log_many(entries: Iterable[Activity]) -> bool:
        """Commit already-built entries. Call once the business transaction has committed."""
        entries = list(entries)
        if not entries:
            return True
        try:
            db.session.add_all(entries)
            db.session.commit()
            return True
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.error(
                f"Failed to log activity '{entries[0].action}':\n" + traceback.format_exc()
            )
            return False

    @staticmethod
    def log_connect(key_id: int, uuid: str, username: str, ip_address: str, user_agent: str) -> bool:
        try:
            db.session.add(AnalyticsEvent(
                key_id=key_id,
                uuid=uuid,
                created_by=username,
                ip_address=ip_address,
                user_agent=(user_agent or "unknown")[:255],
                action="key_connect",
            ))
            db.session.commit()
            return True
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.error("Failed to log analytics:\n" + traceback.format_exc())
            return False


def short_key(key: str) -> str:
    return f"{key[:8]}..."
