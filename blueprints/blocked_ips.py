from flask import Blueprint, request
from flask_login import login_required, current_user
from extensions import db
from models import BlockedIP
from licensing.activity_log import ActivityLogger
from licensing.exceptions import NotFoundError, ValidationError
from licensing.ip_guard import IpGuard
from licensing.pricing import parse_positive_int
from licensing.permissions import permission_required
from utils import api_response, client_ip, get_json_body, normalize_ip, utcnow

bp = Blueprint("blocked_ips", __name__, url_prefix="/api")


@bp.route("/blocked-ips", methods=["GET"])
@login_required
@permission_required("blocked_ips.manage")
def list_blocked_ips():
    IpGuard.purge_expired()
    now = utcnow()
    entries = BlockedIP.query.order_by(BlockedIP.blocked_at.desc(), BlockedIP.id.desc()).all()
    return api_response([e.to_dict(now) for e in entries])


@bp.route("/blocked-ips", methods=["POST"])
@login_required
@permission_required("blocked_ips.manage")
def block_ip():
    data = get_json_body()
    raw_ip = data.get("ip") if isinstance(data.get("ip"), str) else ""
    if not raw_ip.strip():
        raise ValidationError("IP address is required")
    ip = normalize_ip(raw_ip)
    if ip is None:
        raise ValidationError("Invalid IP address")
    permanent = data.get("permanent", True)
    if not isinstance(permanent, bool):
        raise ValidationError("permanent must be a boolean")
    minutes = None
    if not permanent:
        minutes = parse_positive_int(data.get("durationMinutes"), "durationMinutes")
        if minutes is None:
            raise ValidationError("durationMinutes is required for a temporary block")

    entry = IpGuard.block(ip, reason=data.get("reason"), permanent=permanent, minutes=minutes)
    ActivityLogger.log("ip_blocked", f"IP {ip} blocked ({'permanent' if permanent else f'{minutes} min'})",
                       actor=current_user.username, ip_address=client_ip())
    return api_response(entry.to_dict(), "IP blocked successfully")


@bp.route("/blocked-ips", methods=["DELETE"])
@login_required
@permission_required("blocked_ips.manage")
def unblock_ip():
    raw_id = request.args.get("id") or get_json_body().get("id")
    try:
        block_id = int(raw_id)
    except (TypeError, ValueError):
        raise ValidationError("A valid block id is required")

    entry = db.session.get(BlockedIP, block_id)
    if entry is None:
        raise NotFoundError("Blocked IP not found")

    ip = entry.ip
    db.session.delete(entry)
    db.session.commit()
    ActivityLogger.log("ip_unblocked", f"IP {ip} unblocked", actor=current_user.username,
                       ip_address=client_ip())
    return api_response({"id": block_id, "ip": ip}, "IP unblocked successfully")
