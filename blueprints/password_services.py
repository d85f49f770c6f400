from datetime import timedelta
import hashlib
import hmac
import secrets
from smtplib import SMTPException
from flask import current_app
from flask_mail import Message
from extensions import db, mail
from models import User, PasswordResetOtp
from licensing.exceptions import NotFoundError, ValidationError
from utils import utcnow
import logging

logger = logging.getLogger(__name__)


class PasswordResetService:
    """Email OTP for forgotten passwords. OTPs are stored hashed and expire."""

    @staticmethod
    def generate_otp():
        """Generate a 6-digit reset code"""
        return f"{secrets.randbelow(10 ** 6):06d}"

    @staticmethod
    def hash_otp(otp):
        return hashlib.sha256(str(otp).encode("utf-8")).hexdigest()

    @staticmethod
    def find_user(username_or_email):
        value = (username_or_email or "").strip()
        if not value:
            raise ValidationError("Username or email is required")
        user = User.query.filter_by(username=value).first()
        if user is None:
            user = User.query.filter_by(email=value).first()
        if user is None:
            raise NotFoundError("User not found")
        return user

    @staticmethod
    def store_otp(user, otp):
        now = utcnow()
        PasswordResetOtp.query.filter(
            PasswordResetOtp.username == user.username,
            PasswordResetOtp.expires_at <= now,
        ).delete(synchronize_session=False)

        ttl = timedelta(minutes=current_app.config.get("OTP_TTL_MINUTES", 10))
        entry = PasswordResetOtp(
            username=user.username,
            otp_hash=PasswordResetService.hash_otp(otp),
            expires_at=now + ttl,
        )
        db.session.add(entry)
        db.session.commit()
        return entry

    @staticmethod
    def send_email_otp(email, otp):
        """Send reset code via email"""
        try:
            msg = Message(
                subject="Password Reset Code",
                sender=current_app.config.get("MAIL_DEFAULT_SENDER") or current_app.config.get("MAIL_USERNAME"),
                recipients=[email],
                body=f"Your password reset code is: {otp}\n\nThis code will expire in "
                     f"{current_app.config.get('OTP_TTL_MINUTES', 10)} minutes.",
            )
            mail.send(msg)
            logger.info(f"Password reset email sent to {email}")
            return True

        except (SMTPException, OSError) as e:
            logger.error(f"Email sending failed: {e}")
            return False

    @staticmethod
    def find_valid_otp(user, otp):
        if not otp:
            raise ValidationError("OTP is required")
        expected = PasswordResetService.hash_otp(str(otp).strip())
        candidates = (
            PasswordResetOtp.query
            .filter(PasswordResetOtp.username == user.username, PasswordResetOtp.expires_at > utcnow())
            .order_by(PasswordResetOtp.created_at.desc())
            .all()
        )
        for entry in candidates:
            if hmac.compare_digest(entry.otp_hash, expected):
                return entry
        raise ValidationError("Invalid or expired OTP")

    @staticmethod
    def reset_password(user, otp, new_password):
        if not new_password or len(new_password) < 6:
            raise ValidationError("Password must be at least 6 characters long")
        entry = PasswordResetService.find_valid_otp(user, otp)
        user.set_password(new_password)
        db.session.delete(entry)
        db.session.commit()
        logger.info(f"Password reset completed for {user.username}")
