from flask import Blueprint
from flask_login import login_required, current_user
from licensing.key_admin import KeyAdmin
from licensing.key_issuance import KeyIssuer
from licensing.permissions import permission_required
from licensing.visibility import current_viewer
from utils import api_response, client_ip, get_json_body

bp = Blueprint("keys", __name__, url_prefix="/api")


#===========================================================================
#      GENERATE KEY
#==============================================================================
@bp.route("/generate-key", methods=["POST"])
@login_required
@permission_required("keys.generate")
def generate_key():
    data = KeyIssuer.issue(current_user.username, get_json_body(), ip_address=client_ip())
    return api_response(data, "Key generated successfully")


#===========================================================================
#      KEY MANAGEMENT
#==============================================================================
@bp.route("/keys", methods=["GET"])
@login_required
@permission_required("keys.view")
def list_keys():
    return api_response(KeyAdmin.list_keys(current_viewer()))


@bp.route("/keys", methods=["PUT"])
@login_required
@permission_required("keys.edit")
def update_keys():
    updated = KeyAdmin.update(current_viewer(), get_json_body(), ip_address=client_ip())
    return api_response({"updatedCount": updated}, f"{updated} key(s) updated successfully")


@bp.route("/keys", methods=["DELETE"])
@login_required
@permission_required("keys.edit")
def delete_keys():
    deleted = KeyAdmin.delete(current_viewer(), get_json_body(), ip_address=client_ip())
    return api_response({"deletedCount": deleted}, f"{deleted} key(s) deleted successfully")


@bp.route("/keys/reset-uuids", methods=["POST"])
@login_required
@permission_required("keys.edit")
def reset_uuids():
    reset = KeyAdmin.reset_devices(current_viewer(), get_json_body(), ip_address=client_ip())
    return api_response({"resetCount": reset}, f"UUIDs reset for {reset} key(s)")
