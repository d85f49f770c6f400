from decimal import Decimal
import secrets
import string

from flask import current_app
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import User, LicenseKey, DurationType, PLACEHOLDER_EXPIRY
from licensing.activity_log import ActivityLogger, short_key
from licensing.exceptions import (
    ForbiddenError, InsufficientBalanceError, KeyGenerationError, NotFoundError, ValidationError,
)
from licensing.hierarchy import HierarchyHelper
from licensing.pricing import KeyPricing, parse_positive_int
from licensing.settings_store import SettingsStore
from utils import money


KEY_ALPHABET = string.ascii_uppercase + string.digits
RANDOM_KEY_LENGTH = 16
MAX_KEY_ATTEMPTS = 10
INVALID_KEY_TYPE = "Invalid key type. Please select Random Key, Name Key, or Custom Key"


def random_chars(length):
    return "".join(secrets.choice(KEY_ALPHABET) for _ in range(length))


# ==========================================================
#                  KEY STRINGS
# ==========================================================
class KeyStringFactory:
    """Builds candidate key strings for each keyType."""

    def __init__(self, key_type, custom_name, username, duration, duration_type):
        self.key_type = key_type or "random"
        self.custom_name = (custom_name or "").strip()
        self.username = username or "USER"
        self.duration = duration or 1
        self.duration_type = duration_type or DurationType.DAYS.value

        if self.key_type == "custom":
            if not self.custom_name:
                raise KeyGenerationError(INVALID_KEY_TYPE)
            if len(self.custom_name) < 4:
                raise ValidationError("Custom key name must be at least 4 characters long")
        elif self.key_type not in ("name", "random"):
            raise KeyGenerationError(INVALID_KEY_TYPE)

    def _name_key(self):
        prefix = "H" if self.duration_type == DurationType.HOURS.value else "D"
        suffix = random_chars(secrets.choice((5, 6)))
        return f"{self.duration}{prefix}>{self.username}-{suffix}"

    def first(self):
        if self.key_type == "custom":
            return self.custom_name
        if self.key_type == "name":
            return self._name_key()
        return random_chars(RANDOM_KEY_LENGTH)

    def retry(self, previous):
        if self.key_type == "custom":
            return previous[:12] + random_chars(4)
        return self.first()

    def unique(self):
        key = self.first()
        for _ in range(MAX_KEY_ATTEMPTS):
            if LicenseKey.query.filter_by(key=key).first() is None:
                return key
            key = self.retry(key)
        raise KeyGenerationError("Unable to generate unique key, please try again")


# ==========================================================
#                  ISSUANCE
# ==========================================================
class KeyIssuer:

    @staticmethod
    def issue(username, payload, ip_address=None):
        """
        Price, debit and persist a new key for `username`.
        The debit is a conditional UPDATE committed together with the key row,
        so two concurrent requests cannot overspend the same balance.
        """
        user = User.query.filter_by(username=username).first()
        if user is None:
            raise NotFoundError("User not found")

        quote = KeyPricing.resolve(
            duration=payload.get("duration"),
            duration_type=payload.get("durationType"),
            price=payload.get("price"),
            expiry_date=payload.get("expiryDate"),
            price_per_day=SettingsStore.price_per_day(),
        )
        max_devices = parse_positive_int(payload.get("maxDevices"), "maxDevices") or 1

        balance = Decimal(user.balance or 0)
        if balance < quote.price:
            raise InsufficientBalanceError(
                f"Insufficient balance. Required: {quote.price:.2f}, Available: {balance:.2f}"
            )

        block_reason = HierarchyHelper.server_block_reason(user, "Key generation")
        if block_reason:
            raise ForbiddenError(block_reason)

        factory = KeyStringFactory(
            payload.get("keyType"), payload.get("customKeyName"),
            username, quote.duration, quote.duration_type,
        )
        key_string = factory.unique()

        debited = (
            User.query
            .filter(User.id == user.id, User.balance >= quote.price)
            .update({User.balance: User.balance - quote.price}, synchronize_session=False)
        )
        if debited != 1:
            db.session.rollback()
            current = Decimal(User.query.filter_by(id=user.id).with_entities(User.balance).scalar() or 0)
            raise InsufficientBalanceError(
                f"Insufficient balance. Required: {quote.price:.2f}, Available: {current:.2f}"
            )

        license_key = LicenseKey(
            key=key_string,
            max_devices=max_devices,
            current_devices=0,
            expiry_date=PLACEHOLDER_EXPIRY,
            activated_at=None,
            is_active=True,
            price=quote.price,
            duration=quote.duration,
            duration_type=quote.duration_type,
            created_by=username,
        )
        db.session.add(license_key)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise KeyGenerationError("Unable to generate unique key, please try again")

        db.session.commit()

        unit = "hours" if quote.duration_type == DurationType.HOURS.value else "days"
        ActivityLogger.log(
            "key_created",
            f"Key: {short_key(key_string)} | Price: {quote.price:.2f} | "
            f"Duration: {quote.duration} {unit} | Status: Pending Activation",
            actor=username,
            key_id=license_key.id,
            ip_address=ip_address,
        )

        new_balance = User.query.filter_by(id=user.id).with_entities(User.balance).scalar()
        current_app.logger.info(
            f"Key {license_key.id} issued to {username}: price={quote.price}, new balance={new_balance}"
        )

        data = license_key.to_dict()
        data["newBalance"] = money(new_balance)
        return data
