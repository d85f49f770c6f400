from datetime import timedelta
from flask import current_app
from sqlalchemy import or_
from extensions import db
from models import BlockedIP, LoginAttempt
from utils import utcnow
import logging


logger = logging.getLogger(__name__)


class IpGuard:
    """Failed-login throttle: N failures in the window from one IP -> temporary block."""

    @staticmethod
    def active_block(ip, now=None):
        now = now or utcnow()
        return (
            BlockedIP.query
            .filter(BlockedIP.ip == ip)
            .filter(or_(BlockedIP.is_permanent.is_(True), BlockedIP.expires_at > now))
            .order_by(BlockedIP.blocked_at.desc())
            .first()
        )

    @staticmethod
    def block_message(block, now=None):
        if block.is_permanent:
            return "Your IP address has been permanently blocked. Please contact administrator."
        minutes = block.remaining_minutes(now)
        return f"Your IP address is temporarily blocked. Try again in {minutes} minutes."

    @staticmethod
    def record_attempt(ip, username, success, user_agent=None):
        db.session.add(LoginAttempt(
            ip=ip,
            username=username,
            success=success,
            user_agent=(user_agent or "unknown")[:255],
        ))
        db.session.commit()

    @staticmethod
    def recent_failures(ip, now=None):
        now = now or utcnow()
        window = timedelta(minutes=current_app.config.get("LOGIN_ATTEMPT_WINDOW_MINUTES", 15))
        return (
            LoginAttempt.query
            .filter(
                LoginAttempt.ip == ip,
                LoginAttempt.success.is_(False),
                LoginAttempt.timestamp >= now - window,
            )
            .count()
        )

    @staticmethod
    def register_failure(ip, now=None):
        """
        Count failures after a failed login. Returns (blocked_entry_or_None, remaining_attempts).
        """
        now = now or utcnow()
        max_attempts = current_app.config.get("MAX_LOGIN_ATTEMPTS", 5)
        failures = IpGuard.recent_failures(ip, now)

        if failures >= max_attempts:
            minutes = current_app.config.get("BLOCK_DURATION_MINUTES", 48 * 60)
            block = BlockedIP(
                ip=ip,
                reason=f"Too many failed login attempts ({failures})",
                attempt_count=failures,
                is_permanent=False,
                blocked_at=now,
                expires_at=now + timedelta(minutes=minutes),
            )
            db.session.add(block)
            db.session.commit()
            logger.warning(f"Blocked IP {ip} for {minutes} minutes after {failures} failed logins")
            return block, 0

        return None, max_attempts - failures

    @staticmethod
    def block(ip, reason=None, permanent=True, minutes=None, now=None):
        now = now or utcnow()
        entry = BlockedIP(
            ip=ip,
            reason=reason or "Manually blocked",
            attempt_count=0,
            is_permanent=permanent,
            blocked_at=now,
            expires_at=None if permanent else now + timedelta(minutes=minutes),
        )
        db.session.add(entry)
        db.session.commit()
        logger.warning(f"Manually blocked IP {ip} (permanent={permanent})")
        return entry

    @staticmethod
    def purge_expired(now=None):
        now = now or utcnow()
        removed = (
            BlockedIP.query
            .filter(BlockedIP.is_permanent.is_(False), BlockedIP.expires_at <= now)
            .delete(synchronize_session=False)
        )
        if removed:
            db.session.commit()
            logger.info(f"Purged {removed} expired IP blocks")
        return removed
