from flask import Blueprint
from flask_login import login_required
from models import User
from licensing.permissions import permission_required
from licensing.user_admin import BalanceService
from licensing.visibility import VisibilityFilter, current_viewer
from utils import api_response, client_ip, get_json_body, money

bp = Blueprint("balance", __name__, url_prefix="/api")


@bp.route("/balance", methods=["GET"])
@login_required
@permission_required("balance.manage")
def list_balances():
    users = VisibilityFilter.balances(current_viewer()).order_by(User.username).all()
    return api_response([
        {
            "username": u.username,
            "role": u.role,
            "balance": money(u.balance),
            "createdBy": u.created_by,
            "isActive": u.is_active,
        }
        for u in users
    ])


@bp.route("/balance", methods=["POST"])
@login_required
@permission_required("balance.manage")
def add_balance():
    """Credit a visible user's balance. Credits only; nothing is taken from the caller."""
    data = get_json_body()
    username = data.get("username")
    new_balance = BalanceService.top_up(current_viewer(), username, data.get("amount"),
                                        ip_address=client_ip())
    return api_response(
        {"username": username, "newBalance": money(new_balance)},
        "Balance added successfully",
        newBalance=money(new_balance),
    )
