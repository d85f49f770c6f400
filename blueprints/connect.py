from flask import Blueprint, request
from flask_login import login_required, current_user
from models import UsernamePermission, User
from licensing.connect_service import ApiCredentialStore, ConnectService, KeyUserPermissions
from licensing.permissions import permission_required
from utils import api_response, client_ip, get_json_body, isoformat
import logging

logger = logging.getLogger(__name__)

bp = Blueprint("connect", __name__, url_prefix="/api")


#===========================================================================
#      CONNECT (license validation for client devices)
#==============================================================================
@bp.route("/connect/<username>", methods=["POST"])
def connect(username):
    encrypted = ConnectService.connect(
        username,
        request.headers.get("X-API-Key"),
        get_json_body(),
        ip_address=client_ip(),
        user_agent=request.headers.get("User-Agent"),
    )
    return api_response(None, "Successful", encryptedData=encrypted)


#===========================================================================
#      API LICENCE (connect credentials)
#==============================================================================
@bp.route("/api-licence", methods=["GET"])
@login_required
@permission_required("api_licence.manage", "Only owner and super owner can access API keys")
def get_api_licence():
    data = ApiCredentialStore.get_or_create(current_user.username).to_dict()
    data["usernamePermissions"] = [p.to_dict() for p in UsernamePermission.query.order_by(UsernamePermission.username).all()]
    return api_response(data)


@bp.route("/api-licence", methods=["POST"])
@login_required
@permission_required("api_licence.manage", "Only owner and super owner can update API keys")
def update_api_licence():
    credential = ApiCredentialStore.update(get_json_body(), current_user.username)
    return api_response(credential.to_dict(), "API keys updated successfully")


#===========================================================================
#      KEY USER PERMISSIONS
#==============================================================================
@bp.route("/username-permissions", methods=["GET"])
@login_required
@permission_required("api_licence.manage", "Only owner and super owner can access username permissions")
def list_username_permissions():
    username = request.args.get("username")
    if request.args.get("action") == "users" and username:
        users = (
            User.query
            .filter(User.created_by == username, User.is_active.isnot(False))
            .order_by(User.username)
            .all()
        )
        return api_response([
            {"username": u.username, "role": u.role, "createdAt": isoformat(u.created_at)} for u in users
        ])
    if username:
        permission = UsernamePermission.query.filter_by(username=username).first()
        return api_response(permission.to_dict() if permission else None)
    permissions = UsernamePermission.query.order_by(UsernamePermission.username).all()
    return api_response([p.to_dict() for p in permissions])


@bp.route("/username-permissions", methods=["POST"])
@login_required
@permission_required("api_licence.manage", "Only owner and super owner can update username permissions")
def save_username_permission():
    permission = KeyUserPermissions.upsert(get_json_body(), current_user.username)
    return api_response(permission.to_dict(), "Username permission updated successfully")


@bp.route("/username-permissions", methods=["DELETE"])
@login_required
@permission_required("api_licence.manage", "Only owner and super owner can delete username permissions")
def delete_username_permission():
    KeyUserPermissions.remove(request.args.get("username"))
    return api_response(None, "Username permission deleted successfully")
