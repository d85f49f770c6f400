from flask_login import current_user
from sqlalchemy import and_, or_, select
from models import (
    Activity, AnalyticsEvent, LicenseKey, ReferralCode, Role, User, SYSTEM_ACTOR,
)
from licensing.exceptions import ForbiddenError, NotFoundError
import logging


logger = logging.getLogger(__name__)


def _super_owner_names():
    return select(User.username).where(User.role == Role.SUPER_OWNER.value)


def _not_by_super_owner(column):
    return or_(column.is_(None), column.not_in(_super_owner_names()))


class Viewer:
    """Caller identity used by the visibility rules: session username/role plus its account row."""

    def __init__(self, username, role, account=None):
        self.username = username
        self.role = Role.parse(role)
        self._account = account

    @classmethod
    def from_session(cls, session):
        return cls(session.username, session.role)

    @property
    def account(self):
        if self._account is None:
            self._account = User.query.filter_by(username=self.username).first()
        return self._account

    @property
    def is_super_owner(self):
        return self.role == Role.SUPER_OWNER

    @property
    def is_owner(self):
        return self.role == Role.OWNER

    @property
    def is_admin(self):
        return self.role == Role.ADMIN

    @property
    def is_reseller(self):
        return self.role == Role.RESELLER

    @property
    def is_system_owner(self):
        """Owner created by the system (or with no recorded creator)."""
        account = self.account
        return self.is_owner and (account is None or account.created_by in (None, SYSTEM_ACTOR))


# ==========================================================
#                  LIST SCOPES
# ==========================================================
class VisibilityFilter:
    """Query scopes per role. Non-super-owners never see super-owner-authored rows."""

    @staticmethod
    def keys(viewer: Viewer):
        query = LicenseKey.query
        if viewer.is_super_owner:
            return query
        if viewer.is_owner:
            return query.filter(_not_by_super_owner(LicenseKey.created_by))
        return query.filter(LicenseKey.created_by == viewer.username)

    @staticmethod
    def referrals(viewer: Viewer):
        query = ReferralCode.query
        if viewer.is_super_owner:
            return query
        if viewer.is_owner:
            return query.filter(
                ReferralCode.role != Role.SUPER_OWNER.value,
                _not_by_super_owner(ReferralCode.created_by),
            )
        if viewer.is_admin:
            return query.filter(ReferralCode.created_by == viewer.username)
        raise ForbiddenError("Not authorized")

    @staticmethod
    def users(viewer: Viewer):
        query = User.query
        if viewer.is_super_owner:
            return query
        if viewer.is_owner:
            if viewer.is_system_owner:
                return query.filter(or_(
                    User.username == viewer.username,
                    and_(User.role != Role.SUPER_OWNER.value, _not_by_super_owner(User.created_by)),
                ))
            return query.filter(or_(
                User.username == viewer.username,
                User.created_by == viewer.username,
            ))
        if viewer.is_admin:
            return query.filter(or_(
                User.username == viewer.username,
                User.created_by == viewer.username,
            ))
        raise ForbiddenError("Not authorized")

    @staticmethod
    def balances(viewer: Viewer):
        if viewer.is_super_owner:
            return User.query
        if viewer.is_owner:
            return VisibilityFilter.users(viewer).filter(User.username != viewer.username)
        if viewer.is_admin:
            return User.query.filter(
                User.role == Role.RESELLER.value,
                User.created_by == viewer.username,
            )
        raise ForbiddenError("Not authorized")

    @staticmethod
    def server_status(viewer: Viewer):
        return VisibilityFilter.users(viewer)

    @staticmethod
    def _own_key_ids(viewer: Viewer):
        return select(LicenseKey.id).where(LicenseKey.created_by == viewer.username)

    @staticmethod
    def activities(viewer: Viewer):
        query = Activity.query.filter(Activity.actor.not_in(_super_owner_names()))
        if viewer.is_super_owner or viewer.is_owner:
            return query
        return query.filter(or_(
            Activity.actor == viewer.username,
            Activity.key_id.in_(VisibilityFilter._own_key_ids(viewer)),
        ))

    @staticmethod
    def analytics(viewer: Viewer):
        query = AnalyticsEvent.query
        if viewer.is_super_owner:
            return query
        if viewer.is_owner:
            return query.filter(
                AnalyticsEvent.key_id.in_(select(LicenseKey.id).where(_not_by_super_owner(LicenseKey.created_by)))
            )
        return query.filter(AnalyticsEvent.key_id.in_(VisibilityFilter._own_key_ids(viewer)))

    # ------------------------------------------------------
    # Target lookups for mutations
    # ------------------------------------------------------
    @staticmethod
    def get_visible_user(viewer: Viewer, username, scope="users"):
        """Load a user by name; 404 if missing, 403 if outside the viewer's scope."""
        target = User.query.filter_by(username=username).first()
        if target is None:
            raise NotFoundError("User not found.")
        scoped = getattr(VisibilityFilter, scope)(viewer)
        if scoped.filter(User.id == target.id).first() is None:
            raise ForbiddenError("You cannot manage this user.")
        return target

    @staticmethod
    def visible_key_ids(viewer: Viewer, key_ids):
        if not key_ids:
            return []
        rows = (
            VisibilityFilter.keys(viewer)
            .filter(LicenseKey.id.in_(key_ids))
            .with_entities(LicenseKey.id)
            .all()
        )
        return [r[0] for r in rows]


def current_viewer() -> Viewer:
    """Viewer for the logged-in session (flask_login current_user is an AdminSession)."""
    return Viewer.from_session(current_user)
