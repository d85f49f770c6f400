from datetime import timedelta
import secrets

from flask import current_app
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import (
    ApiCredential, Device, DurationType, LicenseKey, Role, User, UsernamePermission,
)
from licensing import connect_codec
from licensing.activity_log import ActivityLogger, short_key
from licensing.exceptions import (
    ForbiddenError, NotFoundError, UnauthorizedError, ValidationError,
)
from licensing.hierarchy import HierarchyHelper
from utils import utcnow

IST_OFFSET = timedelta(hours=5, minutes=30)
KEY_NOT_REGISTERED = "Key not Register"
PERMISSION_TYPES = ("auto", "manual")


# ==========================================================
#                  API CREDENTIALS
# ==========================================================
class ApiCredentialStore:
    """Connect API key/secret, seeded from config the first time it is needed."""

    @staticmethod
    def get_or_create(actor="system") -> ApiCredential:
        credential = db.session.get(ApiCredential, 1)
        if credential is None:
            credential = ApiCredential(
                id=1,
                api_key=current_app.config.get("CONNECT_API_KEY") or secrets.token_hex(32),
                secret_key=current_app.config.get("CONNECT_SECRET_KEY") or secrets.token_hex(32),
                modname=current_app.config.get("CONNECT_MODNAME") or "",
                updated_by=actor,
            )
            db.session.add(credential)
            db.session.commit()
        return credential

    @staticmethod
    def update(payload, actor) -> ApiCredential:
        fields = {}
        for field, column in (("apiKey", "api_key"), ("secretKey", "secret_key")):
            if field in payload:
                value = payload.get(field)
                if not isinstance(value, str) or not value.strip():
                    raise ValidationError(f"{'API Key' if field == 'apiKey' else 'Secret Key'} cannot be empty")
                fields[column] = value.strip()
        if "modname" in payload:
            fields["modname"] = (payload.get("modname") or "").strip()
        if not fields:
            raise ValidationError("At least one key (API Key or Secret Key) must be provided")

        credential = ApiCredentialStore.get_or_create(actor)
        for column, value in fields.items():
            setattr(credential, column, value)
        credential.updated_by = actor
        db.session.commit()
        ActivityLogger.log("api_keys_updated", f"Connect API credentials updated ({', '.join(fields)})",
                           actor=actor)
        current_app.logger.info(f"Connect API credentials updated by {actor}")
        return credential


# ==========================================================
#                  KEY USER PERMISSIONS
# ==========================================================
class KeyUserPermissions:

    @staticmethod
    def upsert(payload, actor) -> UsernamePermission:
        username = payload.get("username")
        perm_type = payload.get("type")
        allowed_users = payload.get("allowedUsers")

        if not username or not perm_type:
            raise ValidationError("Username and type are required")
        if perm_type not in PERMISSION_TYPES:
            raise ValidationError('Type must be either "auto" or "manual"')
        if perm_type == "manual" and not isinstance(allowed_users, list):
            raise ValidationError("allowedUsers array is required for manual type")

        user = User.query.filter_by(username=username).filter(User.is_active.isnot(False)).first()
        if user is None:
            raise NotFoundError("Username not found or inactive")

        permission = UsernamePermission.query.filter_by(username=username).first()
        if permission is None:
            permission = UsernamePermission(username=username)
            db.session.add(permission)
        permission.type = perm_type
        permission.allowed_users = [str(u) for u in allowed_users] if perm_type == "manual" else []
        permission.updated_by = actor
        db.session.commit()
        return permission

    @staticmethod
    def remove(username) -> None:
        if not username:
            raise ValidationError("Username is required")
        removed = UsernamePermission.query.filter_by(username=username).delete(synchronize_session=False)
        if not removed:
            raise NotFoundError("Username permission not found")
        db.session.commit()

    @staticmethod
    def allows(username, key_owner: User) -> bool:
        """May keys created by key_owner be used through /connect/<username>?"""
        if key_owner is None:
            return False
        if key_owner.role in (Role.SUPER_OWNER.value, Role.OWNER.value):
            return True
        if key_owner.username == username:
            return True

        permission = UsernamePermission.query.filter_by(username=username).first()
        if permission is None:
            return False
        if permission.type == "auto":
            return key_owner.created_by == username
        if permission.type == "manual":
            return key_owner.username in (permission.allowed_users or [])
        return False


# ==========================================================
#                  CONNECT
# ==========================================================
def format_ist(value):
    return (value + IST_OFFSET).strftime("%Y-%m-%d %H:%M:%S")


class ConnectService:

    @staticmethod
    def connect(username, api_key, payload, ip_address="unknown", user_agent=None):
        """Validate a key for a client device. Returns the encrypted response payload."""
        account = (
            User.query.filter_by(username=username)
            .filter(User.is_active.isnot(False))
            .first()
        )
        if account is None:
            raise NotFoundError(f"User '{username}' not found or inactive")

        if not api_key:
            raise UnauthorizedError("API key not provided")
        credential = ApiCredentialStore.get_or_create()
        if api_key != credential.api_key:
            raise UnauthorizedError("Invalid API key")

        encrypted = (payload or {}).get("encryptedData")
        if not encrypted:
            raise ValidationError("Encrypted data not provided")
        key, device_uuid = connect_codec.decode_request(encrypted, credential.secret_key)

        license_key = LicenseKey.query.filter_by(key=key, is_active=True).first()
        if license_key is None:
            raise ForbiddenError(KEY_NOT_REGISTERED)

        key_owner = User.query.filter_by(username=license_key.created_by).first()
        block_reason = HierarchyHelper.server_block_reason(key_owner, "Key usage")
        if block_reason:
            raise ForbiddenError(block_reason)

        if not KeyUserPermissions.allows(username, key_owner):
            raise ForbiddenError(KEY_NOT_REGISTERED)

        now = utcnow()
        if license_key.activated_at is None:
            ConnectService._activate(license_key, username, now, ip_address)
        elif now > license_key.expiry_date:
            raise ForbiddenError("Key has expired")

        ConnectService._register_device(license_key, device_uuid, ip_address, now)

        ActivityLogger.log(
            "user_login",
            f"Login successful for user '{username}' with key: {short_key(key)}",
            actor=username, key_id=license_key.id, ip_address=ip_address, type="login",
        )
        ActivityLogger.log_connect(license_key.id, device_uuid, username, ip_address, user_agent)

        db.session.refresh(license_key)
        data = {
            "announcement": "Sample Announcement",
            "announcementmode": False,
            "devices_left": license_key.max_devices - license_key.current_devices,
            "expirydate": format_ist(license_key.expiry_date),
            "key": license_key.key,
            "modname": credential.modname or "",
            "serverfile": None,
            "total_devices": license_key.max_devices,
            "uuid": device_uuid,
        }
        return connect_codec.encode_response(data, credential.secret_key)

    @staticmethod
    def _activate(license_key, username, now, ip_address):
        hours = license_key.duration or 1
        if (license_key.duration_type or DurationType.DAYS.value) != DurationType.HOURS.value:
            hours *= 24
        expiry = now + timedelta(hours=hours)

        activated = (
            LicenseKey.query
            .filter(LicenseKey.id == license_key.id, LicenseKey.activated_at.is_(None))
            .update({LicenseKey.activated_at: now, LicenseKey.expiry_date: expiry},
                    synchronize_session=False)
        )
        db.session.commit()
        db.session.refresh(license_key)
        if activated:
            ActivityLogger.log(
                "key_activated",
                f"Key activated for user '{username}': {short_key(license_key.key)} | "
                f"Expires: {license_key.expiry_date.isoformat()}",
                actor=username, key_id=license_key.id, ip_address=ip_address,
            )
        elif now > license_key.expiry_date:
            raise ForbiddenError("Key has expired")

    @staticmethod
    def _register_device(license_key, device_uuid, ip_address, now):
        device = Device.query.filter_by(key_id=license_key.id, uuid=device_uuid).first()
        if device is not None:
            device.last_login = now
            device.ip_address = ip_address
            db.session.commit()
            return

        claimed = (
            LicenseKey.query
            .filter(LicenseKey.id == license_key.id,
                    LicenseKey.current_devices < LicenseKey.max_devices)
            .update({LicenseKey.current_devices: LicenseKey.current_devices + 1},
                    synchronize_session=False)
        )
        if claimed != 1:
            db.session.rollback()
            raise ForbiddenError("Device limit reached")

        db.session.add(Device(
            key_id=license_key.id, uuid=device_uuid, ip_address=ip_address,
            last_login=now, created_at=now,
        ))
        try:
            db.session.commit()
        except IntegrityError:
            # Same device registered concurrently; that request counted the slot
            db.session.rollback()
