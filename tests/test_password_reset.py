import re

from extensions import mail
from conftest import PASSWORD


def _send(client, who):
    with mail.record_messages() as outbox:
        resp = client.post("/api/auth/forgot-password/send-otp", json={"usernameOrEmail": who})
    return resp, outbox


def test_reset_password_with_emailed_otp(make_user, client):
    make_user("res1", email="res1@example.com")

    resp, outbox = _send(client, "res1@example.com")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["email"] == "re***@example.com"
    assert len(outbox) == 1
    otp = re.search(r"\b(\d{6})\b", outbox[0].body).group(1)

    verify = client.post("/api/auth/forgot-password/verify-otp", json={"usernameOrEmail": "res1", "otp": otp})
    assert verify.status_code == 200

    reset = client.post("/api/auth/forgot-password/reset",
                        json={"usernameOrEmail": "res1", "otp": otp, "newPassword": "brandnew1"})
    assert reset.status_code == 200

    assert client.post("/api/auth/login", json={"username": "res1", "password": PASSWORD}).status_code == 401
    assert client.post("/api/auth/login", json={"username": "res1", "password": "brandnew1"}).status_code == 200


def test_otp_is_single_use(make_user, client):
    make_user("res1", email="res1@example.com")
    _, outbox = _send(client, "res1")
    otp = re.search(r"\b(\d{6})\b", outbox[0].body).group(1)

    payload = {"usernameOrEmail": "res1", "otp": otp, "newPassword": "brandnew1"}
    assert client.post("/api/auth/forgot-password/reset", json=payload).status_code == 200
    assert client.post("/api/auth/forgot-password/reset", json=payload).status_code == 400


def test_wrong_otp_rejected(make_user, client):
    make_user("res1", email="res1@example.com")
    _send(client, "res1")

    resp = client.post("/api/auth/forgot-password/verify-otp", json={"usernameOrEmail": "res1", "otp": "abcdef"})
    assert resp.status_code == 400
    assert resp.get_json()["reason"] == "Invalid or expired OTP"


def test_unknown_user_and_missing_email(make_user, client):
    make_user("res1")
    assert _send(client, "ghost")[0].status_code == 404
    assert _send(client, "res1")[0].status_code == 400
