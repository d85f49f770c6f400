from datetime import timedelta
from flask import Blueprint
from flask_login import login_required, current_user
from sqlalchemy import func
from models import Activity, AnalyticsEvent, LicenseKey
from licensing.activity_log import ActivityLogger
from licensing.exceptions import ValidationError
from licensing.permissions import permission_required
from licensing.visibility import VisibilityFilter, current_viewer
from utils import api_response, client_ip, get_json_body, isoformat, utcnow

activity_bp = Blueprint('activity', __name__, url_prefix='/api')

RECENT_ACTIVITY_LIMIT = 20
RECENT_CONNECT_LIMIT = 10


def map_connect_to_activity(event):
    """Connect analytics rows show up in the feed as user_login entries."""
    return {
        'id': f"analytics-{event.id}",
        'action': 'user_login',
        'details': f"Key connect from device {(event.uuid or '')[:8]}... via '{event.created_by}'",
        'userId': event.created_by,
        'keyId': event.key_id,
        'ipAddress': event.ip_address,
        'type': 'login',
        'extra': None,
        'timestamp': isoformat(event.timestamp),
        '_sort': event.timestamp,
    }


@activity_bp.route('/activities', methods=['GET'])
@login_required
@permission_required('activities.view')
def recent_activities():
    viewer = current_viewer()
    activities = (
        VisibilityFilter.activities(viewer)
        .order_by(Activity.timestamp.desc(), Activity.id.desc())
        .limit(RECENT_ACTIVITY_LIMIT)
        .all()
    )
    connects = (
        VisibilityFilter.analytics(viewer)
        .order_by(AnalyticsEvent.timestamp.desc(), AnalyticsEvent.id.desc())
        .limit(RECENT_CONNECT_LIMIT)
        .all()
    )

    feed = []
    for entry in activities:
        item = entry.to_dict()
        item['_sort'] = entry.timestamp
        feed.append(item)
    feed.extend(map_connect_to_activity(e) for e in connects)
    feed.sort(key=lambda item: item['_sort'], reverse=True)

    result = []
    for item in feed[:RECENT_ACTIVITY_LIMIT]:
        item.pop('_sort', None)
        result.append(item)
    return api_response(result)


@activity_bp.route('/activities', methods=['POST'])
@login_required
def add_activity():
    data = get_json_body()
    action = (data.get('action') or '').strip()
    details = (data.get('details') or '').strip()
    if not action:
        raise ValidationError('Action is required')

    ActivityLogger.log(action[:64], details, actor=current_user.username,
                       key_id=data.get('keyId') if isinstance(data.get('keyId'), int) else None,
                       ip_address=client_ip())
    return api_response(None, 'Activity logged')


@activity_bp.route('/analytics', methods=['GET'])
@login_required
@permission_required('analytics.view')
def analytics():
    viewer = current_viewer()
    now = utcnow()
    start = now - timedelta(hours=24)

    events = VisibilityFilter.analytics(viewer)
    keys = VisibilityFilter.keys(viewer)

    total_requests = events.count()
    unique_users = events.with_entities(func.count(func.distinct(AnalyticsEvent.uuid))).scalar() or 0
    total_keys = keys.count()
    active_keys = keys.filter(LicenseKey.is_active.is_(True)).count()
    total_users = 1 if viewer.is_reseller else VisibilityFilter.users(viewer).count()

    # 24 hourly buckets, oldest first
    hourly = [0] * 24
    recent = events.filter(AnalyticsEvent.timestamp >= start).with_entities(AnalyticsEvent.timestamp).all()
    for (timestamp,) in recent:
        index = int((timestamp - start).total_seconds() // 3600)
        if 0 <= index < 24:
            hourly[index] += 1
    hourly_traffic = [
        {'hour': (start + timedelta(hours=i)).strftime('%H:00'), 'requests': count}
        for i, count in enumerate(hourly)
    ]

    recent_activity = [
        a.to_dict() for a in
        VisibilityFilter.activities(viewer).order_by(Activity.timestamp.desc(), Activity.id.desc()).limit(5).all()
    ]

    return api_response({
        'totalRequests': total_requests,
        'uniqueUsers': unique_users,
        'totalKeys': total_keys,
        'activeKeys': active_keys,
        'totalUsers': total_users,
        'hourlyTraffic': hourly_traffic,
        'recentActivity': recent_activity,
    })
