from datetime import timedelta
from decimal import Decimal
import secrets

from flask import current_app
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import ReferralCode, Role, User
from licensing.activity_log import ActivityLogger
from licensing.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from licensing.hierarchy import HierarchyHelper
from licensing.permissions import can_create_referral
from licensing.pricing import MAX_AMOUNT
from licensing.visibility import Viewer, VisibilityFilter
from utils import utcnow, validate_email, is_number

INVALID_CODE = "Invalid or used referral code."
MAX_CODE_ATTEMPTS = 10
MAX_EXPIRY_DAYS = 36500


class ReferralIssuer:

    @staticmethod
    def new_code():
        return secrets.token_hex(6).upper()

    @staticmethod
    def generate(viewer: Viewer, payload, ip_address=None) -> ReferralCode:
        role = Role.parse(payload.get("role"))
        if role is None:
            raise ValidationError("Invalid role.")

        expiry_days = payload.get("expiryDays")
        if not is_number(expiry_days) or expiry_days <= 0:
            raise ValidationError("Expiry days must be a number greater than 0.")
        if expiry_days > MAX_EXPIRY_DAYS:
            raise ValidationError(f"Expiry days must be at most {MAX_EXPIRY_DAYS}.")

        if not can_create_referral(viewer.role, role):
            raise ForbiddenError(f"You are not allowed to create referral codes for role '{role.value}'.")

        initial_balance = payload.get("initialBalance") or 0
        if not is_number(initial_balance):
            raise ValidationError("Initial balance must be a number.")
        if initial_balance > MAX_AMOUNT:
            raise ValidationError(f"Initial balance must be at most {MAX_AMOUNT}.")
        initial_balance = max(Decimal("0"), Decimal(str(initial_balance)))

        now = utcnow()
        for _ in range(MAX_CODE_ATTEMPTS):
            code = ReferralCode(
                code=ReferralIssuer.new_code(),
                role=role.value,
                created_by=viewer.username,
                created_at=now,
                is_active=True,
                initial_balance=initial_balance,
                expiry_days=int(expiry_days) if int(expiry_days) == expiry_days else None,
                expiry_date=now + timedelta(days=float(expiry_days)),
            )
            db.session.add(code)
            try:
                db.session.flush()
                break
            except IntegrityError:
                db.session.rollback()
        else:
            raise ConflictError("Unable to generate a unique referral code, please try again")

        db.session.commit()
        ActivityLogger.log(
            "referral_created",
            f"Referral code {code.code} created for role '{role.value}'",
            actor=viewer.username,
            ip_address=ip_address,
        )
        current_app.logger.info(f"{viewer.username} created referral code {code.code} ({role.value})")
        return code

    @staticmethod
    def disable(viewer: Viewer, code_id=None, code_value=None, ip_address=None) -> ReferralCode:
        query = ReferralCode.query
        code = None
        if code_id is not None:
            try:
                code = query.filter_by(id=int(code_id)).first()
            except (TypeError, ValueError):
                raise ValidationError("Invalid referral id.")
        elif code_value:
            code = query.filter_by(code=code_value).first()
        else:
            raise ValidationError("Referral id or code is required.")

        if code is None:
            raise NotFoundError("Referral code not found.")
        if VisibilityFilter.referrals(viewer).filter(ReferralCode.id == code.id).first() is None:
            raise ForbiddenError("You cannot manage this referral code.")

        code.is_active = False
        db.session.commit()
        ActivityLogger.log(
            "referral_disabled",
            f"Referral code {code.code} disabled",
            actor=viewer.username,
            ip_address=ip_address,
        )
        return code

    @staticmethod
    def redeem(payload, ip_address=None) -> User:
        """
        Register a new account from a referral code.
        The code is deactivated with a conditional UPDATE in the same
        transaction as the user insert, so a code can be redeemed once.
        """
        username = (payload.get("username") or "").strip()
        email = (payload.get("email") or "").strip()
        password = payload.get("password") or ""
        code_value = (payload.get("referralCode") or "").strip()

        if not username or not email or not password or not code_value:
            raise ValidationError("All fields are required.")
        if not validate_email(email):
            raise ValidationError("Invalid email format.")
        if len(password) < 6:
            raise ValidationError("Password must be at least 6 characters long.")

        if User.query.filter_by(username=username).first() is not None:
            raise ConflictError("Username already exists.")

        code = ReferralCode.query.filter_by(code=code_value, is_active=True).first()
        if code is None:
            raise ValidationError(INVALID_CODE)

        now = utcnow()
        if code.expiry_date is not None:
            account_expiry = code.expiry_date
        elif code.expiry_days:
            account_expiry = now + timedelta(days=code.expiry_days)
        else:
            account_expiry = None

        user = User(
            username=username,
            email=email,
            role=code.role,
            balance=code.initial_balance or Decimal("0"),
            account_expiry_date=account_expiry,
            created_by=code.created_by,
            is_active=True,
            server_status=True,
            referral_code_used=code.code,
        )
        user.set_password(password)
        db.session.add(user)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("Username already exists.")

        claimed = (
            ReferralCode.query
            .filter(ReferralCode.id == code.id, ReferralCode.is_active.is_(True))
            .update(
                {ReferralCode.is_active: False, ReferralCode.used_by: username, ReferralCode.used_at: now},
                synchronize_session=False,
            )
        )
        if claimed != 1:
            db.session.rollback()
            raise ValidationError(INVALID_CODE)

        HierarchyHelper.attach(user)
        db.session.commit()
        ActivityLogger.log(
            "user_registered",
            f"User '{username}' registered as {code.role} with referral code {code.code}",
            actor=username,
            ip_address=ip_address,
        )
        current_app.logger.info(f"User {username} registered via referral code {code.code}")
        return user
