from flask import current_app
from extensions import db
from models import User, Role, SYSTEM_ACTOR, SUPER_OWNER_BALANCE
from licensing.hierarchy import HierarchyHelper
from utils import utcnow
import logging


logger = logging.getLogger(__name__)


class AccountBootstrap:
    """First-run accounts: one super owner and one system owner."""

    @staticmethod
    def ensure_defaults():
        created = []

        super_owner = User.query.filter_by(role=Role.SUPER_OWNER.value).first()
        if super_owner is None:
            super_owner = AccountBootstrap._create(
                current_app.config.get("SUPER_OWNER_USERNAME", "superowner"),
                current_app.config.get("SUPER_OWNER_PASSWORD", "superowner"),
                Role.SUPER_OWNER,
                SUPER_OWNER_BALANCE,
            )
            if super_owner is not None:
                created.append(super_owner.username)

        # Back-fill balance for super owners created before balances existed
        missing = (
            User.query
            .filter(User.role == Role.SUPER_OWNER.value, User.balance.is_(None))
            .update({User.balance: SUPER_OWNER_BALANCE}, synchronize_session=False)
        )

        owner = User.query.filter_by(role=Role.OWNER.value).first()
        if owner is None:
            owner = AccountBootstrap._create(
                current_app.config.get("ADMIN_USERNAME", "admin"),
                current_app.config.get("ADMIN_PASSWORD", "admin123"),
                Role.OWNER,
                0,
            )
            if owner is not None:
                created.append(owner.username)

        if created or missing:
            db.session.commit()
            logger.info(f"Bootstrap accounts ensured: created={created}, balances back-filled={missing}")
        return created

    @staticmethod
    def _create(username, password, role, balance):
        if User.query.filter_by(username=username).first() is not None:
            logger.warning(f"Cannot bootstrap {role.value}: username '{username}' is taken")
            return None
        user = User(
            username=username,
            role=role.value,
            balance=balance,
            created_by=SYSTEM_ACTOR,
            is_active=True,
            server_status=True,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.flush()
        HierarchyHelper.add_root(user.id)
        return user


class SystemOwnerExpiry:
    """
    When the system owner's account expires every non-super-owner account is
    disabled and its previous is_active saved; renewal restores them.
    """

    @staticmethod
    def system_owner():
        return (
            User.query
            .filter(User.role == Role.OWNER.value)
            .filter((User.created_by == SYSTEM_ACTOR) | User.created_by.is_(None))
            .order_by(User.id)
            .first()
        )

    @staticmethod
    def sync(now=None):
        """Returns 'disabled', 'restored' or None."""
        now = now or utcnow()
        owner = SystemOwnerExpiry.system_owner()
        if owner is None:
            return None

        saved = User.query.filter(User.previous_is_active.isnot(None))
        has_saved = saved.first() is not None

        if owner.is_expired(now) and not has_saved:
            targets = User.query.filter(User.role != Role.SUPER_OWNER.value).all()
            for user in targets:
                user.previous_is_active = True if user.is_active is None else user.is_active
                user.is_active = False
            db.session.commit()
            logger.warning(
                f"System owner '{owner.username}' expired; disabled {len(targets)} accounts"
            )
            return "disabled"

        if not owner.is_expired(now) and has_saved:
            restored = saved.all()
            for user in restored:
                user.is_active = user.previous_is_active
                user.previous_is_active = None
            db.session.commit()
            logger.info(
                f"System owner '{owner.username}' renewed; restored {len(restored)} accounts"
            )
            return "restored"

        return None
