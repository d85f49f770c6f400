from datetime import datetime, timedelta

import pytest

from extensions import db
from models import AnalyticsEvent, Device, LicenseKey, Role, UsernamePermission
from licensing import connect_codec
from licensing.connect_client import ConnectClient, ConnectClientError
from make_admin import check_key
from utils import utcnow

API_KEY = "test-api-key"
SECRET = "test-secret-key"


class FlaskSession:
    """requests.Session stand-in that routes ConnectClient calls into the Flask test client."""

    class Response:
        def __init__(self, resp):
            self.status_code = resp.status_code
            self.ok = resp.status_code < 400
            self._body = resp.get_json()

        def json(self):
            if self._body is None:
                raise ValueError("no json")
            return self._body

    def __init__(self, client):
        self.client = client

    def post(self, url, json=None, headers=None, timeout=None):
        path = url.split("://", 1)[-1]
        path = path[path.index("/"):]
        return self.Response(self.client.post(path, json=json, headers=headers))


@pytest.fixture
def issued_key(make_user, login):
    make_user("res1", balance=100)
    c = login("res1")
    data = c.post("/api/generate-key", json={"duration": 2, "durationType": "days", "maxDevices": 1}).get_json()["data"]
    return data["key"]


def _connect(client, username, key, device, api_key=API_KEY):
    return client.post(
        f"/api/connect/{username}",
        json={"encryptedData": connect_codec.encode_request(key, device, SECRET)},
        headers={"X-API-Key": api_key},
    )


def test_first_connect_activates_key(client, issued_key):
    before = utcnow()
    resp = _connect(client, "res1", issued_key, "device-1")
    body = resp.get_json()

    assert resp.status_code == 200
    assert body["status"] is True
    assert body["reason"] == "Successful"

    payload = connect_codec.decode_response(body["encryptedData"], SECRET)
    data = payload["data"]
    assert data["key"] == issued_key
    assert data["uuid"] == "device-1"
    assert data["devices_left"] == 0
    assert data["total_devices"] == 1
    assert data["serverfile"] is None

    db.session.expire_all()
    key = LicenseKey.query.filter_by(key=issued_key).first()
    assert key.activated_at is not None
    assert key.current_devices == 1
    assert before + timedelta(days=2) - timedelta(seconds=5) <= key.expiry_date <= utcnow() + timedelta(days=2)
    # expirydate is rendered in IST
    ist = datetime.strptime(data["expirydate"], "%Y-%m-%d %H:%M:%S")
    assert abs((ist - key.expiry_date) - timedelta(hours=5, minutes=30)) < timedelta(seconds=2)
    assert AnalyticsEvent.query.count() == 1


def test_device_limit_and_repeat_device(client, issued_key):
    assert _connect(client, "res1", issued_key, "device-1").status_code == 200
    assert _connect(client, "res1", issued_key, "device-1").status_code == 200

    second = _connect(client, "res1", issued_key, "device-2")
    assert second.status_code == 403
    assert second.get_json()["reason"] == "Device limit reached"
    assert Device.query.count() == 1


def test_expiry_is_not_reset_by_later_connects(client, issued_key):
    _connect(client, "res1", issued_key, "device-1")
    db.session.expire_all()
    first_expiry = LicenseKey.query.filter_by(key=issued_key).first().expiry_date

    _connect(client, "res1", issued_key, "device-1")
    db.session.expire_all()
    assert LicenseKey.query.filter_by(key=issued_key).first().expiry_date == first_expiry


def test_expired_key_is_refused(client, issued_key):
    _connect(client, "res1", issued_key, "device-1")
    key = LicenseKey.query.filter_by(key=issued_key).first()
    key.expiry_date = utcnow() - timedelta(minutes=1)
    db.session.commit()

    resp = _connect(client, "res1", issued_key, "device-1")
    assert resp.status_code == 403
    assert resp.get_json()["reason"] == "Key has expired"


def test_wrong_api_key(client, issued_key):
    resp = _connect(client, "res1", issued_key, "device-1", api_key="nope")
    assert resp.status_code == 401
    assert client.post("/api/connect/res1", json={"encryptedData": "x"}).status_code == 401


def test_unknown_username_and_key(client, issued_key):
    assert _connect(client, "ghost", issued_key, "device-1").status_code == 404
    resp = _connect(client, "res1", "NOTAKEY", "device-1")
    assert resp.status_code == 403
    assert resp.get_json()["reason"] == "Key not Register"


def test_missing_encrypted_data(client, issued_key):
    resp = client.post("/api/connect/res1", json={}, headers={"X-API-Key": API_KEY})
    assert resp.status_code == 400


def test_other_username_needs_permission(make_user, client, issued_key):
    make_user("admin1", Role.ADMIN)

    assert _connect(client, "admin1", issued_key, "device-1").status_code == 403

    db.session.add(UsernamePermission(username="admin1", type="manual", allowed_users=["res1"]))
    db.session.commit()
    assert _connect(client, "admin1", issued_key, "device-1").status_code == 200


def test_server_off_blocks_connect(client, issued_key, owner_client):
    owner_client.post("/api/users-server-status", json={
        "action": "toggleServerStatus", "usernames": ["res1"], "serverStatus": False,
    })

    resp = _connect(client, "res1", issued_key, "device-1")
    assert resp.status_code == 403
    assert resp.get_json()["reason"].startswith("Your server is turned OFF. Key usage is blocked.")


def test_connect_client_round_trip(client, issued_key):
    connect_client = ConnectClient("http://panel.local", "res1", API_KEY, SECRET, session=FlaskSession(client))

    data = connect_client.connect(issued_key, "device-1")
    assert data["key"] == issued_key

    with pytest.raises(ConnectClientError) as exc:
        connect_client.connect(issued_key, "device-2")
    assert exc.value.status_code == 403
    assert exc.value.reason == "Device limit reached"


def test_check_key_command_uses_stored_credentials(client, issued_key):
    data = check_key("res1", issued_key, "device-1", session=FlaskSession(client))

    assert data["key"] == issued_key
    assert data["devices_left"] == 0

    with pytest.raises(ConnectClientError) as exc:
        check_key("res1", issued_key, "device-2", session=FlaskSession(client))
    assert exc.value.reason == "Device limit reached"


# ==========================================================
#                  API LICENCE / PERMISSIONS
# ==========================================================
def test_api_licence_is_owner_only(make_user, login, owner_client):
    make_user("admin1", Role.ADMIN)
    assert login("admin1").get("/api/api-licence").status_code == 403

    data = owner_client.get("/api/api-licence").get_json()["data"]
    assert data["apiKey"] == API_KEY
    assert data["usernamePermissions"] == []


def test_rotating_api_key_changes_connect_auth(client, issued_key, owner_client):
    resp = owner_client.post("/api/api-licence", json={"apiKey": "rotated-key"})
    assert resp.status_code == 200

    assert _connect(client, "res1", issued_key, "device-1").status_code == 401
    assert _connect(client, "res1", issued_key, "device-1", api_key="rotated-key").status_code == 200

    assert owner_client.post("/api/api-licence", json={"apiKey": "  "}).status_code == 400


def test_username_permission_crud(make_user, owner_client):
    make_user("admin1", Role.ADMIN)
    make_user("res1", created_by="admin1")

    users = owner_client.get("/api/username-permissions?action=users&username=admin1").get_json()["data"]
    assert [u["username"] for u in users] == ["res1"]

    resp = owner_client.post("/api/username-permissions", json={"username": "admin1", "type": "auto"})
    assert resp.status_code == 200
    assert owner_client.get("/api/username-permissions?username=admin1").get_json()["data"]["type"] == "auto"

    bad = owner_client.post("/api/username-permissions", json={"username": "admin1", "type": "manual"})
    assert bad.status_code == 400

    assert owner_client.delete("/api/username-permissions?username=admin1").status_code == 200
    assert owner_client.delete("/api/username-permissions?username=admin1").status_code == 404
