from decimal import Decimal

from flask import current_app
from extensions import db
from models import (
    AdminSession, Device, LicenseKey, ReferralCode, Role, User, UsernamePermission,
)
from licensing.accounts import SystemOwnerExpiry
from licensing.activity_log import ActivityLogger
from licensing.exceptions import ForbiddenError, NotFoundError, ValidationError
from licensing.hierarchy import HierarchyHelper
from licensing.pricing import MAX_AMOUNT, parse_amount
from licensing.visibility import Viewer, VisibilityFilter
from utils import is_number, money, parse_datetime, validate_email
import logging


logger = logging.getLogger(__name__)


# ==========================================================
#                  USER MANAGEMENT
# ==========================================================
class UserAdmin:

    @staticmethod
    def _load_manageable(viewer: Viewer, username, action, balance_only=False):
        target = User.query.filter_by(username=username).first()
        if target is None:
            raise NotFoundError("User not found.")

        if target.is_super_owner and not viewer.is_super_owner:
            raise ForbiddenError("You cannot modify super owner accounts.")

        if target.username == viewer.username:
            # A super owner may only adjust their own balance
            if not (viewer.is_super_owner and action == "updateUser" and balance_only):
                if viewer.is_super_owner and action == "updateUser":
                    raise ForbiddenError(
                        "You cannot edit other fields of your own account. You can only edit your balance."
                    )
                raise ForbiddenError("You cannot edit your own account.")
            return target

        if VisibilityFilter.users(viewer).filter(User.id == target.id).first() is None:
            raise ForbiddenError("You can only manage users you created.")
        if target.role == Role.OWNER.value and viewer.is_admin:
            raise ForbiddenError("You cannot modify the owner account.")
        return target

    @staticmethod
    def set_active(viewer: Viewer, username, is_active, ip_address=None):
        if not isinstance(is_active, bool):
            raise ValidationError("isActive must be a boolean.")
        target = UserAdmin._load_manageable(viewer, username, "setActive")
        target.is_active = is_active
        db.session.commit()
        ActivityLogger.log(
            "user_enabled" if is_active else "user_disabled",
            f"User '{username}' {'enabled' if is_active else 'disabled'}",
            actor=viewer.username,
            ip_address=ip_address,
        )
        return target

    @staticmethod
    def update_user(viewer: Viewer, payload, ip_address=None):
        username = payload.get("username")
        fields = {k for k in ("newRole", "newEmail", "newBalance", "accountExpiryDate") if k in payload}
        if not fields:
            raise ValidationError("No fields to update.")

        target = UserAdmin._load_manageable(
            viewer, username, "updateUser", balance_only=fields == {"newBalance"}
        )
        if viewer.is_admin and "newRole" in fields:
            raise ForbiddenError("Admins cannot change user roles.")
        if viewer.is_admin and fields != {"newBalance"}:
            raise ForbiddenError("Admins can only change the balance of users they created.")
        changes = []

        if "newRole" in payload:
            new_role = Role.parse(payload.get("newRole"))
            if new_role is None:
                raise ValidationError("Invalid role.")
            UserAdmin._check_role_change(viewer, target, new_role)
            if new_role.value != target.role:
                changes.append(f"role {target.role} -> {new_role.value}")
                target.role = new_role.value
                AdminSession.query.filter_by(username=target.username).update(
                    {AdminSession.role: new_role.value}, synchronize_session=False
                )

        if "newEmail" in payload:
            new_email = (payload.get("newEmail") or "").strip()
            if new_email and not validate_email(new_email):
                raise ValidationError("Invalid email format.")
            target.email = new_email or None
            changes.append("email")

        if "newBalance" in payload:
            new_balance = parse_amount(payload.get("newBalance"), "newBalance")
            if new_balance is None:
                raise ValidationError("newBalance must be a number.")
            changes.append(f"balance {money(target.balance)} -> {money(new_balance)}")
            target.balance = new_balance

        expiry_changed = False
        if "accountExpiryDate" in payload:
            raw = payload.get("accountExpiryDate")
            try:
                target.account_expiry_date = parse_datetime(raw)
            except ValueError as e:
                raise ValidationError(str(e))
            expiry_changed = True
            changes.append("account expiry")

        db.session.commit()
        ActivityLogger.log(
            "user_updated",
            f"User '{target.username}' updated: {', '.join(changes) or 'no changes'}",
            actor=viewer.username,
            ip_address=ip_address,
        )

        if expiry_changed and target.is_system_owner:
            SystemOwnerExpiry.sync()
        return target

    @staticmethod
    def _check_role_change(viewer: Viewer, target: User, new_role: Role):
        if viewer.is_admin:
            raise ForbiddenError("Admins cannot change user roles.")
        if viewer.is_owner and not viewer.is_system_owner:
            raise ForbiddenError("You cannot change user roles.")
        if new_role == Role.SUPER_OWNER and not viewer.is_super_owner:
            raise ForbiddenError("Only super owner can set role to super owner.")
        if target.is_super_owner and new_role != Role.SUPER_OWNER:
            raise ForbiddenError("Super owner role cannot be changed.")

    @staticmethod
    def delete_user(viewer: Viewer, username, ip_address=None):
        target = UserAdmin._load_manageable(viewer, username, "deleteUser")

        key_ids = [k.id for k in LicenseKey.query.filter_by(created_by=target.username).all()]
        if key_ids:
            Device.query.filter(Device.key_id.in_(key_ids)).delete(synchronize_session=False)
            LicenseKey.query.filter(LicenseKey.id.in_(key_ids)).delete(synchronize_session=False)
        AdminSession.query.filter_by(username=target.username).delete(synchronize_session=False)
        UsernamePermission.query.filter_by(username=target.username).delete(synchronize_session=False)
        HierarchyHelper.detach(target.id)
        db.session.delete(target)

        db.session.commit()
        ActivityLogger.log(
            "user_deleted",
            f"User '{username}' deleted with {len(key_ids)} keys",
            actor=viewer.username,
            ip_address=ip_address,
        )
        logger.warning(f"{viewer.username} deleted user {username} ({len(key_ids)} keys)")
        return len(key_ids)


# ==========================================================
#                  BALANCE
# ==========================================================
class BalanceService:

    @staticmethod
    def top_up(viewer: Viewer, username, amount, ip_address=None):
        """Credit `amount` to a visible user. The caller's own balance is not debited."""
        if not username:
            raise ValidationError("Username is required.")
        if not is_number(amount) or amount <= 0:
            raise ValidationError("Amount must be a number greater than 0.")
        if amount > MAX_AMOUNT:
            raise ValidationError(f"Amount must be at most {MAX_AMOUNT}.")
        amount = Decimal(str(amount))

        target = User.query.filter_by(username=username).first()
        if target is None:
            raise NotFoundError("User not found.")

        if target.username == viewer.username:
            if not viewer.is_super_owner:
                raise ForbiddenError("You cannot add balance to your own account.")
        elif VisibilityFilter.balances(viewer).filter(User.id == target.id).first() is None:
            raise ForbiddenError("You are not allowed to add balance to this user.")

        User.query.filter(User.id == target.id).update(
            {User.balance: User.balance + amount}, synchronize_session=False
        )
        db.session.commit()
        ActivityLogger.log(
            "balance_added",
            f"Added {money(amount)} balance to '{username}'",
            actor=viewer.username,
            ip_address=ip_address,
        )

        new_balance = User.query.filter_by(id=target.id).with_entities(User.balance).scalar()
        current_app.logger.info(f"{viewer.username} credited {amount} to {username}; balance now {new_balance}")
        return new_balance


# ==========================================================
#                  SERVER STATUS
# ==========================================================
class ServerStatusService:

    @staticmethod
    def toggle(viewer: Viewer, usernames, status: bool, ip_address=None):
        results = []
        entries = []
        for username in usernames:
            target = User.query.filter_by(username=username).first()
            if target is None:
                results.append({"username": username, "success": False, "message": "User not found"})
                continue
            if target.username == viewer.username and status is False:
                results.append({"username": username, "success": False,
                                "message": "You cannot turn off your own server"})
                continue
            if target.is_super_owner and not viewer.is_super_owner:
                results.append({"username": username, "success": False,
                                "message": "You cannot modify super owner accounts"})
                continue
            if VisibilityFilter.server_status(viewer).filter(User.id == target.id).first() is None:
                results.append({"username": username, "success": False,
                                "message": "You are not allowed to manage this user"})
                continue

            affected = HierarchyHelper.set_server_status(target, status)
            entries.append(ActivityLogger.entry(
                "server_status_on" if status else "server_status_off",
                f"Server turned {'ON' if status else 'OFF'} for '{username}' and {affected - 1} sub-users",
                actor=viewer.username,
                ip_address=ip_address,
            ))
            results.append({"username": username, "success": True,
                            "message": f"Server turned {'ON' if status else 'OFF'}",
                            "affectedCount": affected})

        db.session.commit()
        ActivityLogger.log_many(entries)
        return results


# ==========================================================
#                  OWN ACCOUNT
# ==========================================================
class AccountService:

    @staticmethod
    def update(session, payload, ip_address=None):
        """Change own username and/or password. Returns the (possibly new) username."""
        old_password = payload.get("oldPassword") or ""
        new_username = (payload.get("newUsername") or "").strip()
        new_password = payload.get("newPassword") or ""

        if not old_password:
            raise ValidationError("Old password is required.")

        user = User.query.filter_by(username=session.username).first()
        if user is None:
            raise NotFoundError("User not found.")
        if not user.check_password(old_password):
            raise ValidationError("Old password is incorrect.")

        rename = bool(new_username) and new_username != user.username
        if new_password and len(new_password) < 4:
            raise ValidationError("New password must be at least 4 characters long.")
        if not rename and not new_password:
            raise ValidationError("Nothing to update.")

        old_username = user.username
        if rename:
            if User.query.filter_by(username=new_username).first() is not None:
                raise ValidationError("Username already taken.")
            user.username = new_username
            AccountService._cascade_rename(old_username, new_username)

        if new_password:
            user.set_password(new_password)

        db.session.commit()
        ActivityLogger.log(
            "account_updated",
            f"Account '{old_username}' updated"
            + (f" (renamed to '{new_username}')" if rename else "")
            + (" (password changed)" if new_password else ""),
            actor=user.username,
            ip_address=ip_address,
        )
        return user.username

    @staticmethod
    def _cascade_rename(old, new):
        for model, column in (
            (AdminSession, AdminSession.username),
            (User, User.created_by),
            (LicenseKey, LicenseKey.created_by),
            (ReferralCode, ReferralCode.created_by),
            (ReferralCode, ReferralCode.used_by),
            (UsernamePermission, UsernamePermission.username),
        ):
            model.query.filter(column == old).update({column: new}, synchronize_session=False)
