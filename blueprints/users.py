from flask import Blueprint
from flask_login import login_required
from models import User
from licensing.exceptions import ValidationError
from licensing.permissions import permission_required
from licensing.user_admin import ServerStatusService, UserAdmin
from licensing.visibility import VisibilityFilter, current_viewer
from utils import api_response, client_ip, get_json_body

bp = Blueprint("users", __name__, url_prefix="/api")


#===========================================================================
#      USERS
#==============================================================================
@bp.route("/users", methods=["GET"])
@login_required
@permission_required("users.view")
def list_users():
    users = VisibilityFilter.users(current_viewer()).order_by(User.created_at.desc(), User.id.desc()).all()
    return api_response([u.to_dict() for u in users])


@bp.route("/users", methods=["POST"])
@login_required
@permission_required("users.manage")
def manage_user():
    """actions: setActive, updateUser, deleteUser"""
    data = get_json_body()
    action = data.get("action")
    username = data.get("username")
    if not action or not username:
        raise ValidationError("Invalid request.")

    viewer = current_viewer()
    ip = client_ip()

    if action == "setActive":
        user = UserAdmin.set_active(viewer, username, data.get("isActive"), ip_address=ip)
        return api_response(user.to_dict(), f"User {'enabled' if user.is_active else 'disabled'} successfully")

    if action == "updateUser":
        user = UserAdmin.update_user(viewer, data, ip_address=ip)
        return api_response(user.to_dict(), "User updated successfully")

    if action == "deleteUser":
        deleted_keys = UserAdmin.delete_user(viewer, username, ip_address=ip)
        return api_response({"username": username, "deletedKeys": deleted_keys}, "User deleted successfully")

    raise ValidationError("Unknown action.")


#===========================================================================
#      SERVER STATUS (per-user kill switch)
#==============================================================================
@bp.route("/users-server-status", methods=["GET"])
@login_required
@permission_required("server_status.manage")
def list_server_status():
    users = VisibilityFilter.server_status(current_viewer()).order_by(User.username).all()
    return api_response([
        {
            "username": u.username,
            "role": u.role,
            "createdBy": u.created_by,
            "serverStatus": u.server_status,
            "isActive": u.is_active,
        }
        for u in users
    ])


@bp.route("/users-server-status", methods=["POST"])
@login_required
@permission_required("server_status.manage")
def toggle_server_status():
    data = get_json_body()
    if data.get("action") != "toggleServerStatus":
        raise ValidationError("Invalid action.")
    usernames = data.get("usernames")
    status = data.get("serverStatus")
    if not isinstance(usernames, list) or not usernames:
        raise ValidationError("usernames must be a non-empty list.")
    if not isinstance(status, bool):
        raise ValidationError("serverStatus must be a boolean.")

    results = ServerStatusService.toggle(current_viewer(), usernames, status, ip_address=client_ip())
    succeeded = sum(1 for r in results if r["success"])
    return api_response(
        results,
        f"Server status updated for {succeeded} of {len(results)} user(s)",
        results=results,
    )
