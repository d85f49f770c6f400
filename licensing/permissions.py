from functools import wraps
from flask_login import current_user
from models import Role
from licensing.exceptions import ForbiddenError

ALL_ROLES = frozenset(Role)
MANAGERS = frozenset({Role.SUPER_OWNER, Role.OWNER, Role.ADMIN})
OWNERS = frozenset({Role.SUPER_OWNER, Role.OWNER})

# action -> roles allowed to perform it
PERMISSIONS = {
    "keys.view": ALL_ROLES,
    "keys.generate": ALL_ROLES,
    "keys.edit": ALL_ROLES,
    "activities.view": ALL_ROLES,
    "analytics.view": ALL_ROLES,
    "users.view": MANAGERS,
    "users.manage": MANAGERS,
    "balance.manage": MANAGERS,
    "referrals.manage": MANAGERS,
    "server_status.manage": MANAGERS,
    "settings.manage": OWNERS,
    "blocked_ips.manage": OWNERS,
    "api_licence.manage": OWNERS,
}

# creator role -> roles its referral codes may grant
REFERRAL_ROLE_MATRIX = {
    Role.SUPER_OWNER: frozenset({Role.SUPER_OWNER, Role.OWNER, Role.ADMIN, Role.RESELLER}),
    Role.OWNER: frozenset({Role.OWNER, Role.ADMIN, Role.RESELLER}),
    Role.ADMIN: frozenset({Role.RESELLER}),
    Role.RESELLER: frozenset(),
}


def has_permission(role, action):
    role = Role.parse(role) if not isinstance(role, Role) else role
    if role is None:
        return False
    return role in PERMISSIONS.get(action, frozenset())


def require_permission(role, action, reason="Not authorized"):
    if not has_permission(role, action):
        raise ForbiddenError(reason)


def can_create_referral(creator_role, target_role):
    creator = Role.parse(creator_role)
    target = Role.parse(target_role)
    if creator is None or target is None:
        return False
    return target in REFERRAL_ROLE_MATRIX.get(creator, frozenset())


def permission_required(action, reason="Not authorized"):
    """Route decorator; stack it under login_required."""
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            require_permission(current_user.role, action, reason)
            return view(*args, **kwargs)
        return wrapper
    return decorator
