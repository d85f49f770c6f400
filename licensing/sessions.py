from datetime import timedelta
import uuid

from flask import current_app
from extensions import db
from models import AdminSession, User
from utils import utcnow

COOKIE_NAME = "admin-token"


class SessionStore:
    """admin-token cookie <-> admin_sessions row."""

    @staticmethod
    def ttl():
        return timedelta(minutes=current_app.config.get("SESSION_TTL_MINUTES", 30))

    @staticmethod
    def create(user: User) -> AdminSession:
        now = utcnow()
        session = AdminSession(
            token=str(uuid.uuid4()),
            username=user.username,
            role=user.role,
            created_at=now,
            expires_at=now + SessionStore.ttl(),
        )
        db.session.add(session)
        db.session.commit()
        return session

    @staticmethod
    def resolve(token):
        if not token:
            return None
        return (
            AdminSession.query
            .filter(AdminSession.token == token, AdminSession.expires_at > utcnow())
            .first()
        )

    @staticmethod
    def destroy(token) -> int:
        if not token:
            return 0
        removed = AdminSession.query.filter_by(token=token).delete(synchronize_session=False)
        db.session.commit()
        return removed

    @staticmethod
    def set_cookie(response, session: AdminSession):
        response.set_cookie(
            COOKIE_NAME,
            session.token,
            max_age=int(SessionStore.ttl().total_seconds()),
            httponly=True,
            secure=current_app.config.get("FLASK_ENV") == "production",
            samesite="Lax",
            path="/",
        )
        return response

    @staticmethod
    def clear_cookie(response):
        response.delete_cookie(COOKIE_NAME, path="/")
        return response
