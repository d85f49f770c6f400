# models.py - Flask-SQLAlchemy models for the license panel
from datetime import datetime
from decimal import Decimal
from enum import Enum
from sqlalchemy import UniqueConstraint, Index
from flask_login import UserMixin
from extensions import db
from werkzeug.security import check_password_hash, generate_password_hash
from utils import utcnow, isoformat, money

# ===========================================================
# ENUM DEFINITIONS
# ===========================================================

class Role(str, Enum):
    SUPER_OWNER = "super owner"
    OWNER = "owner"
    ADMIN = "admin"
    RESELLER = "reseller"

    @classmethod
    def values(cls):
        return [r.value for r in cls]

    @classmethod
    def parse(cls, value):
        """Return the Role for a raw string, or None if it is not one of ours."""
        try:
            return cls(value)
        except ValueError:
            return None


class DurationType(str, Enum):
    HOURS = "hours"
    DAYS = "days"


SYSTEM_ACTOR = "system"
SUPER_OWNER_BALANCE = Decimal("10000000000000000")
PLACEHOLDER_EXPIRY = datetime(2099, 12, 31)


# ===========================================================
# BASE MIXIN FOR COMMON FIELDS
# ===========================================================

class BaseMixin:
    """Provides created_at and updated_at timestamps to inheriting models."""
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


# ===========================================================
# USER MODELS
# ===========================================================

class User(db.Model, BaseMixin):
    """Panel account. Never exposed with its password hash."""
    __tablename__ = 'users'
    __table_args__ = (
        db.CheckConstraint('balance >= 0', name='chk_user_balance_non_negative'),
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=Role.RESELLER.value, index=True)
    email = db.Column(db.String(120), nullable=True, index=True)
    created_by = db.Column(db.String(80), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    balance = db.Column(db.Numeric(20, 2), nullable=False, default=Decimal("0"))
    account_expiry_date = db.Column(db.DateTime, nullable=True)
    server_status = db.Column(db.Boolean, nullable=False, default=True)
    # Saved is_active while the system owner is expired
    previous_is_active = db.Column(db.Boolean, nullable=True)
    referral_code_used = db.Column(db.String(32), nullable=True)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def is_super_owner(self):
        return self.role == Role.SUPER_OWNER.value

    @property
    def is_system_owner(self):
        return self.role == Role.OWNER.value and self.created_by in (None, SYSTEM_ACTOR)

    def is_expired(self, now=None):
        now = now or utcnow()
        return self.account_expiry_date is not None and self.account_expiry_date <= now

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "email": self.email,
            "createdBy": self.created_by,
            "createdAt": isoformat(self.created_at),
            "isActive": self.is_active,
            "balance": money(self.balance),
            "accountExpiryDate": isoformat(self.account_expiry_date),
            "serverStatus": self.server_status,
            "referralCodeUsed": self.referral_code_used,
        }

    def __repr__(self):
        return f"<User {self.username} ({self.role})>"


class UserHierarchy(db.Model):
    """Closure table of the createdBy tree: one row per (ancestor, descendant) pair."""
    __tablename__ = 'user_hierarchy'

    id = db.Column(db.Integer, primary_key=True)
    ancestor_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    descendant_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    depth = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        Index('idx_hierarchy_ancestor_depth', 'ancestor_id', 'depth'),
        UniqueConstraint('ancestor_id', 'descendant_id', name='uq_hierarchy_relationship'),
    )


class AdminSession(db.Model, UserMixin):
    """Server-side login session, looked up by the admin-token cookie."""
    __tablename__ = 'admin_sessions'

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(64), unique=True, nullable=False, index=True)
    username = db.Column(db.String(80), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    def get_id(self):
        return self.token

    @property
    def role_enum(self):
        return Role.parse(self.role)

    @property
    def account(self):
        return User.query.filter_by(username=self.username).first()


# ===========================================================
# LOGIN THROTTLING
# ===========================================================

class LoginAttempt(db.Model):
    __tablename__ = 'login_attempts'

    id = db.Column(db.Integer, primary_key=True)
    ip = db.Column(db.String(64), nullable=False, index=True)
    username = db.Column(db.String(80), nullable=True)
    success = db.Column(db.Boolean, nullable=False, default=False)
    user_agent = db.Column(db.String(255), nullable=True)
    timestamp = db.Column(db.DateTime, default=utcnow, index=True)


class BlockedIP(db.Model):
    __tablename__ = 'blocked_ips'

    id = db.Column(db.Integer, primary_key=True)
    ip = db.Column(db.String(64), nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=True)
    attempt_count = db.Column(db.Integer, nullable=False, default=0)
    is_permanent = db.Column(db.Boolean, nullable=False, default=False)
    blocked_at = db.Column(db.DateTime, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=True)

    def is_current(self, now=None):
        now = now or utcnow()
        return self.is_permanent or (self.expires_at is not None and self.expires_at > now)

    def remaining_minutes(self, now=None):
        if self.is_permanent or self.expires_at is None:
            return None
        now = now or utcnow()
        seconds = (self.expires_at - now).total_seconds()
        return max(0, int(-(-seconds // 60)))

    def to_dict(self, now=None):
        return {
            "id": self.id,
            "ip": self.ip,
            "reason": self.reason,
            "attemptCount": self.attempt_count,
            "isPermanent": self.is_permanent,
            "blockedAt": isoformat(self.blocked_at),
            "expiresAt": isoformat(self.expires_at),
            "remainingMinutes": self.remaining_minutes(now),
            "isExpired": not self.is_current(now),
        }


# ===========================================================
# REFERRALS
# ===========================================================

class ReferralCode(db.Model):
    __tablename__ = 'referral_codes'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), unique=True, nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False)
    created_by = db.Column(db.String(80), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    used_by = db.Column(db.String(80), nullable=True)
    used_at = db.Column(db.DateTime, nullable=True)
    initial_balance = db.Column(db.Numeric(20, 2), nullable=False, default=Decimal("0"))
    expiry_days = db.Column(db.Integer, nullable=True)
    expiry_date = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "role": self.role,
            "createdBy": self.created_by,
            "createdAt": isoformat(self.created_at),
            "isActive": self.is_active,
            "usedBy": self.used_by,
            "usedAt": isoformat(self.used_at),
            "initialBalance": money(self.initial_balance),
            "expiryDays": self.expiry_days,
            "expiryDate": isoformat(self.expiry_date),
        }


# ===========================================================
# LICENSE KEYS
# ===========================================================

class LicenseKey(db.Model):
    __tablename__ = 'license_keys'

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), unique=True, nullable=False, index=True)
    max_devices = db.Column(db.Integer, nullable=False, default=1)
    current_devices = db.Column(db.Integer, nullable=False, default=0)
    expiry_date = db.Column(db.DateTime, nullable=False, default=PLACEHOLDER_EXPIRY)
    activated_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    price = db.Column(db.Numeric(20, 2), nullable=False, default=Decimal("0"))
    duration = db.Column(db.Integer, nullable=False, default=1)
    duration_type = db.Column(db.String(10), nullable=False, default=DurationType.DAYS.value)
    created_by = db.Column(db.String(80), nullable=False, index=True)

    devices = db.relationship(
        'Device', backref='license_key', lazy='dynamic',
        cascade='all, delete-orphan', passive_deletes=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "maxDevices": self.max_devices,
            "currentDevices": self.current_devices,
            "expiryDate": isoformat(self.expiry_date),
            "activatedAt": isoformat(self.activated_at),
            "createdAt": isoformat(self.created_at),
            "isActive": self.is_active,
            "price": money(self.price),
            "duration": self.duration,
            "durationType": self.duration_type,
            "createdBy": self.created_by,
        }


class Device(db.Model):
    __tablename__ = 'devices'

    id = db.Column(db.Integer, primary_key=True)
    key_id = db.Column(db.Integer, db.ForeignKey('license_keys.id', ondelete='CASCADE'), nullable=False, index=True)
    uuid = db.Column(db.String(128), nullable=False)
    ip_address = db.Column(db.String(64), nullable=True)
    last_login = db.Column(db.DateTime, default=utcnow)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('key_id', 'uuid', name='uq_device_key_uuid'),
    )


# ===========================================================
# SETTINGS
# ===========================================================

class GlobalSettings(db.Model):
    """Singleton row (id=1). version increments on every update."""
    __tablename__ = 'global_settings'

    id = db.Column(db.Integer, primary_key=True)
    price_per_day = db.Column(db.Numeric(20, 2), nullable=False)
    version = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    updated_by = db.Column(db.String(80), nullable=True)

    duration_prices = db.relationship(
        'DurationPrice', backref='settings', lazy='select',
        cascade='all, delete-orphan', order_by='DurationPrice.position',
    )

    def to_dict(self):
        return {
            "pricePerDay": money(self.price_per_day),
            "durationPricing": [tier.to_dict() for tier in self.duration_prices],
            "version": self.version,
            "updatedAt": isoformat(self.updated_at),
            "updatedBy": self.updated_by,
        }


class DurationPrice(db.Model):
    __tablename__ = 'duration_prices'

    id = db.Column(db.Integer, primary_key=True)
    settings_id = db.Column(db.Integer, db.ForeignKey('global_settings.id', ondelete='CASCADE'), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    duration = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(20, 2), nullable=False)
    type = db.Column(db.String(10), nullable=False, default=DurationType.DAYS.value)

    def to_dict(self):
        return {"duration": self.duration, "price": money(self.price), "type": self.type}


class ApiCredential(db.Model):
    """Connect API key/secret pair. Singleton row, seeded from config on first use."""
    __tablename__ = 'api_credentials'

    id = db.Column(db.Integer, primary_key=True)
    api_key = db.Column(db.String(255), nullable=False)
    secret_key = db.Column(db.String(255), nullable=False)
    modname = db.Column(db.String(120), nullable=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    updated_by = db.Column(db.String(80), nullable=True)

    @staticmethod
    def _mask(value):
        if not value:
            return ""
        return f"{value[:8]}...{value[-4:]}"

    def to_dict(self):
        return {
            "apiKey": self.api_key,
            "secretKey": self.secret_key,
            "maskedApiKey": self._mask(self.api_key),
            "maskedSecretKey": self._mask(self.secret_key),
            "modname": self.modname or "",
            "updatedAt": isoformat(self.updated_at),
            "updatedBy": self.updated_by,
        }


class UsernamePermission(db.Model):
    """Which key owners' keys a connect username may accept."""
    __tablename__ = 'username_permissions'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    type = db.Column(db.String(10), nullable=False)
    allowed_users = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    updated_by = db.Column(db.String(80), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "type": self.type,
            "allowedUsers": list(self.allowed_users or []),
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
            "updatedBy": self.updated_by,
        }


# ===========================================================
# AUDIT
# ===========================================================

class Activity(db.Model):
    __tablename__ = 'activities'

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    details = db.Column(db.Text, nullable=True)
    actor = db.Column(db.String(80), nullable=False, default=SYSTEM_ACTOR, index=True)
    key_id = db.Column(db.Integer, nullable=True, index=True)
    ip_address = db.Column(db.String(64), nullable=True)
    type = db.Column(db.String(20), nullable=False, default="system")
    extra = db.Column(db.JSON, nullable=True)
    timestamp = db.Column(db.DateTime, default=utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "action": self.action,
            "details": self.details,
            "userId": self.actor,
            "keyId": self.key_id,
            "ipAddress": self.ip_address,
            "type": self.type,
            "extra": self.extra,
            "timestamp": isoformat(self.timestamp),
        }


class AnalyticsEvent(db.Model):
    __tablename__ = 'analytics_events'

    id = db.Column(db.Integer, primary_key=True)
    key_id = db.Column(db.Integer, nullable=True, index=True)
    uuid = db.Column(db.String(128), nullable=True)
    created_by = db.Column(db.String(80), nullable=True, index=True)
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    action = db.Column(db.String(32), nullable=False, default="key_connect")
    timestamp = db.Column(db.DateTime, default=utcnow, index=True)


class PasswordResetOtp(db.Model):
    __tablename__ = 'password_reset_otps'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), nullable=False, index=True)
    otp_hash = db.Column(db.String(64), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
