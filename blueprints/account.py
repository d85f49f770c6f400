from flask import Blueprint
from flask_login import login_required, current_user
from models import User
from licensing.exceptions import NotFoundError
from licensing.user_admin import AccountService
from utils import api_response, client_ip, get_json_body, money

bp = Blueprint("account", __name__, url_prefix="/api")


@bp.route("/account/update", methods=["POST"])
@login_required
def update_account():
    """Change own username and/or password; the old password is always required."""
    username = AccountService.update(current_user, get_json_body(), ip_address=client_ip())
    return api_response({"username": username}, "Account updated successfully")


@bp.route("/user/balance", methods=["GET"])
@login_required
def own_balance():
    user = User.query.filter_by(username=current_user.username).first()
    if user is None:
        raise NotFoundError("User not found")
    return api_response({
        "username": user.username,
        "role": user.role,
        "balance": money(user.balance),
    })
