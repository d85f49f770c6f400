from flask import Blueprint, request
from flask_login import login_required
from models import ReferralCode
from licensing.permissions import permission_required
from licensing.referral_codes import ReferralIssuer
from licensing.visibility import VisibilityFilter, current_viewer
from utils import api_response, client_ip, get_json_body

bp = Blueprint("referrals", __name__, url_prefix="/api")


@bp.route("/referrals", methods=["GET"])
@login_required
@permission_required("referrals.manage")
def list_referrals():
    codes = (
        VisibilityFilter.referrals(current_viewer())
        .order_by(ReferralCode.created_at.desc(), ReferralCode.id.desc())
        .all()
    )
    return api_response([c.to_dict() for c in codes])


@bp.route("/referrals", methods=["POST"])
@login_required
@permission_required("referrals.manage")
def create_referral():
    code = ReferralIssuer.generate(current_viewer(), get_json_body(), ip_address=client_ip())
    return api_response(code.to_dict(), "Referral code generated successfully")


@bp.route("/referrals", methods=["DELETE"])
@login_required
@permission_required("referrals.manage")
def disable_referral():
    data = get_json_body()
    code = ReferralIssuer.disable(
        current_viewer(),
        code_id=request.args.get("id") or data.get("id"),
        code_value=request.args.get("code") or data.get("code"),
        ip_address=client_ip(),
    )
    return api_response(code.to_dict(), "Referral code disabled")
