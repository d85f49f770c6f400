from flask import Blueprint, current_app
from blueprints.password_services import PasswordResetService
from licensing.activity_log import ActivityLogger
from utils import api_error, api_response, client_ip, get_json_body
import logging

logger = logging.getLogger(__name__)

password_bp = Blueprint('password', __name__, url_prefix='/api/auth/forgot-password')


@password_bp.route('/send-otp', methods=['POST'])
def send_otp():
    """
    Step 1: look the account up by username or email and mail it a one-time code.
    """
    data = get_json_body()
    user = PasswordResetService.find_user(data.get('usernameOrEmail'))
    if not user.email:
        return api_error('No email address is registered for this account', 400)

    otp = PasswordResetService.generate_otp()
    PasswordResetService.store_otp(user, otp)

    if not PasswordResetService.send_email_otp(user.email, otp):
        if current_app.debug:
            logger.info(f"[DEBUG] OTP for {user.username}: {otp}")
        else:
            return api_error('Failed to send OTP email. Please try again later.', 500)

    ActivityLogger.log('password_reset_requested', f"Password reset OTP sent to '{user.username}'",
                       actor=user.username, ip_address=client_ip())
    return api_response({'email': _mask_email(user.email)}, 'OTP sent to your registered email')


@password_bp.route('/verify-otp', methods=['POST'])
def verify_otp():
    data = get_json_body()
    user = PasswordResetService.find_user(data.get('usernameOrEmail'))
    PasswordResetService.find_valid_otp(user, data.get('otp'))
    return api_response({'verified': True}, 'OTP verified')


@password_bp.route('/reset', methods=['POST'])
def reset():
    data = get_json_body()
    user = PasswordResetService.find_user(data.get('usernameOrEmail'))
    PasswordResetService.reset_password(user, data.get('otp'), data.get('newPassword'))
    ActivityLogger.log('password_reset', f"Password reset for '{user.username}'",
                       actor=user.username, ip_address=client_ip())
    return api_response(None, 'Password reset successfully')


def _mask_email(email):
    name, _, domain = email.partition('@')
    return f"{name[:2]}***@{domain}"
