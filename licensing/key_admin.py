from extensions import db
from models import Device, LicenseKey, User
from licensing.activity_log import ActivityLogger, short_key
from licensing.exceptions import ForbiddenError, NotFoundError, ValidationError
from licensing.pricing import normalize_duration_type, parse_positive_int
from licensing.visibility import Viewer, VisibilityFilter
from utils import parse_datetime
import logging


logger = logging.getLogger(__name__)

# request field -> column
UPDATABLE_FIELDS = {
    "isActive": "is_active",
    "maxDevices": "max_devices",
    "expiryDate": "expiry_date",
    "duration": "duration",
    "durationType": "duration_type",
}


def parse_key_ids(raw):
    """Accept a list of ids (ints or numeric strings); drop anything else."""
    if not isinstance(raw, list):
        return []
    ids = []
    for value in raw:
        if isinstance(value, bool):
            continue
        try:
            ids.append(int(value))
        except (TypeError, ValueError):
            continue
    return ids


class KeyAdmin:

    @staticmethod
    def list_keys(viewer: Viewer):
        keys = VisibilityFilter.keys(viewer).order_by(LicenseKey.created_at.desc(), LicenseKey.id.desc()).all()
        creators = {k.created_by for k in keys}
        roles = dict(
            User.query.filter(User.username.in_(creators)).with_entities(User.username, User.role).all()
        ) if creators else {}
        result = []
        for key in keys:
            item = key.to_dict()
            item["createdByUsername"] = key.created_by
            item["createdByRole"] = roles.get(key.created_by)
            result.append(item)
        return result

    @staticmethod
    def _clean_updates(updates):
        if not isinstance(updates, dict):
            raise ValidationError("updates must be an object")
        clean = {}
        for field, column in UPDATABLE_FIELDS.items():
            if field not in updates:
                continue
            value = updates[field]
            if field == "isActive":
                if not isinstance(value, bool):
                    raise ValidationError("isActive must be a boolean")
            elif field in ("maxDevices", "duration"):
                value = parse_positive_int(value, field)
                if value is None:
                    raise ValidationError(f"{field} must be a positive whole number")
            elif field == "expiryDate":
                try:
                    value = parse_datetime(value)
                except ValueError as e:
                    raise ValidationError(str(e))
                if value is None:
                    raise ValidationError("expiryDate cannot be empty")
            elif field == "durationType":
                value = normalize_duration_type(value)
            clean[column] = value
        if not clean:
            raise ValidationError("No valid fields to update")
        return clean

    @staticmethod
    def _resolve_targets(viewer: Viewer, payload):
        if payload.get("keyIds") is not None:
            requested = parse_key_ids(payload.get("keyIds"))
            if not requested:
                raise ValidationError("No valid key IDs provided")
            allowed = VisibilityFilter.visible_key_ids(viewer, requested)
            if not allowed:
                raise ForbiddenError("You don't have permission to modify these keys")
            return allowed

        key_id = payload.get("keyId")
        ids = parse_key_ids([key_id])
        if not ids:
            raise ValidationError("keyId or keyIds is required")
        if db.session.get(LicenseKey, ids[0]) is None:
            raise NotFoundError("Key not found")
        allowed = VisibilityFilter.visible_key_ids(viewer, ids)
        if not allowed:
            raise ForbiddenError("You don't have permission to modify this key")
        return allowed

    @staticmethod
    def update(viewer: Viewer, payload, ip_address=None):
        ids = KeyAdmin._resolve_targets(viewer, payload)
        clean = KeyAdmin._clean_updates(payload.get("updates"))

        keys = LicenseKey.query.filter(LicenseKey.id.in_(ids)).all()
        entries = []
        for key in keys:
            was_active = key.is_active
            for column, value in clean.items():
                setattr(key, column, value)

            if "is_active" in clean and clean["is_active"] != was_active:
                action = "key_enabled" if clean["is_active"] else "key_disabled"
                entries.append(ActivityLogger.entry(action, f"Key {short_key(key.key)} {action.split('_')[1]}",
                                                    actor=viewer.username, key_id=key.id, ip_address=ip_address))
            other = [c for c in clean if c != "is_active"]
            if other:
                entries.append(ActivityLogger.entry("key_edited", f"Key {short_key(key.key)} updated: {', '.join(other)}",
                                                    actor=viewer.username, key_id=key.id, ip_address=ip_address))
        db.session.commit()
        ActivityLogger.log_many(entries)
        return len(keys)

    @staticmethod
    def delete(viewer: Viewer, payload, ip_address=None):
        raw = payload.get("keyIds")
        if raw is None and payload.get("keyId") is not None:
            raw = [payload.get("keyId")]
        requested = parse_key_ids(raw)
        if not requested:
            raise ValidationError("No valid key IDs provided")
        allowed = VisibilityFilter.visible_key_ids(viewer, requested)
        if not allowed:
            raise ForbiddenError("You don't have permission to delete these keys")

        keys = LicenseKey.query.filter(LicenseKey.id.in_(allowed)).all()
        entries = [
            ActivityLogger.entry("key_deleted", f"Key {short_key(key.key)} deleted",
                                 actor=viewer.username, key_id=key.id, ip_address=ip_address)
            for key in keys
        ]
        Device.query.filter(Device.key_id.in_(allowed)).delete(synchronize_session=False)
        LicenseKey.query.filter(LicenseKey.id.in_(allowed)).delete(synchronize_session=False)
        db.session.commit()
        ActivityLogger.log_many(entries)
        logger.info(f"{viewer.username} deleted keys {allowed}")
        return len(keys)

    @staticmethod
    def reset_devices(viewer: Viewer, payload, ip_address=None):
        """Forget every registered device on the keys. Running it twice changes nothing."""
        requested = parse_key_ids(payload.get("keyIds"))
        if not requested:
            raise ValidationError("No valid key IDs provided")
        allowed = VisibilityFilter.visible_key_ids(viewer, requested)
        if not allowed:
            raise ForbiddenError("You don't have permission to reset these keys")

        Device.query.filter(Device.key_id.in_(allowed)).delete(synchronize_session=False)
        LicenseKey.query.filter(LicenseKey.id.in_(allowed)).update(
            {LicenseKey.current_devices: 0}, synchronize_session=False
        )
        db.session.commit()
        ActivityLogger.log_many(
            ActivityLogger.entry("uuids_reset", f"Device UUIDs reset for key #{key_id}",
                                 actor=viewer.username, key_id=key_id, ip_address=ip_address)
            for key_id in allowed
        )
        return len(allowed)
