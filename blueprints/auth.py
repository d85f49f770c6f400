from flask import Blueprint, request, current_app
from models import User
from licensing.accounts import AccountBootstrap, SystemOwnerExpiry
from licensing.activity_log import ActivityLogger
from licensing.ip_guard import IpGuard
from licensing.referral_codes import ReferralIssuer
from licensing.sessions import COOKIE_NAME, SessionStore
from utils import api_error, api_response, client_ip, get_json_body, isoformat
import logging


logger = logging.getLogger(__name__)
#==================================================================================================================

bp = Blueprint("auth", __name__, url_prefix="/api/auth")


#===========================================================================
#      LOGIN ROUTE.
#==============================================================================
@bp.route("/login", methods=["POST"])
def login():
    """
    Password login guarded by the per-IP failure throttle.
    Every attempt is recorded; too many failures from one IP blocks it.
    """
    data = get_json_body()
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""

    if not username or not password:
        return api_error("Username and password are required", 400)

    ip = client_ip()
    user_agent = request.headers.get("User-Agent")

    block = IpGuard.active_block(ip)
    if block is not None:
        logger.warning(f"Login from blocked IP {ip} refused")
        return api_error(IpGuard.block_message(block), 403, blocked=True)

    AccountBootstrap.ensure_defaults()
    SystemOwnerExpiry.sync()

    user = User.query.filter_by(username=username).first()

    if user is not None and user.is_expired():
        IpGuard.record_attempt(ip, username, False, user_agent)
        return api_error(
            "Your account has expired. Please contact your administrator.",
            403,
            accountExpired=True,
        )

    valid = user is not None and user.is_active is not False and user.check_password(password)
    IpGuard.record_attempt(ip, username, valid, user_agent)

    if not valid:
        block, remaining = IpGuard.register_failure(ip)
        if block is not None:
            return api_error(
                "Too many failed login attempts. Your IP address has been temporarily blocked.",
                403,
                blocked=True,
            )
        current_app.logger.info(f"Failed login for '{username}' from {ip}; {remaining} attempts left")
        return api_error(
            f"Invalid credentials. {remaining} attempts remaining.",
            401,
            remainingAttempts=remaining,
        )

    session = SessionStore.create(user)
    ActivityLogger.log("admin_login", f"User '{username}' logged in", actor=username,
                       ip_address=ip, type="login")

    response, status = api_response(
        {"username": user.username, "role": user.role, "expiresAt": isoformat(session.expires_at)},
        "Login successful",
    )
    SessionStore.set_cookie(response, session)
    return response, status


#===========================================================================
#      LOGOUT / STATUS
#==============================================================================
@bp.route("/logout", methods=["POST"])
def logout():
    SessionStore.destroy(request.cookies.get(COOKIE_NAME))
    response, status = api_response(None, "Logged out successfully")
    SessionStore.clear_cookie(response)
    return response, status


@bp.route("/status", methods=["GET"])
def status():
    session = SessionStore.resolve(request.cookies.get(COOKIE_NAME))
    if session is None:
        info = {"authenticated": False}
        response, code = api_response(info, "", **info)
        if request.cookies.get(COOKIE_NAME):
            SessionStore.clear_cookie(response)
        return response, code

    SystemOwnerExpiry.sync()
    user = User.query.filter_by(username=session.username).first()
    info = {
        "authenticated": True,
        "username": session.username,
        "role": session.role,
        "accountExpiryDate": isoformat(user.account_expiry_date) if user else None,
    }
    return api_response(info, "", **info)


#===========================================================================
#      REGISTER (REFERRAL CODE REDEMPTION)
#==============================================================================
@bp.route("/register", methods=["POST"])
def register():
    user = ReferralIssuer.redeem(get_json_body(), ip_address=client_ip())
    return api_response(
        {"username": user.username, "role": user.role},
        "Registration successful. You can now log in.",
    )
