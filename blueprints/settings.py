from flask import Blueprint
from flask_login import login_required, current_user
from licensing.permissions import permission_required
from licensing.settings_store import SettingsStore
from utils import api_response, client_ip, get_json_body

bp = Blueprint("settings", __name__, url_prefix="/api")


@bp.route("/settings", methods=["GET"])
@login_required
def get_settings():
    return api_response(SettingsStore.get_or_create().to_dict())


@bp.route("/settings", methods=["POST", "PUT"])
@login_required
@permission_required("settings.manage", "Only owner and super owner can update settings")
def update_settings():
    settings, changed = SettingsStore.update(get_json_body(), current_user.username, ip_address=client_ip())
    if not changed:
        return api_response(settings.to_dict(), "No changes to update")
    return api_response(settings.to_dict(), "Settings updated successfully")
