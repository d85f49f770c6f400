from datetime import timedelta
from decimal import Decimal

import pytest

from extensions import db
from models import LicenseKey, Role, User
from licensing.accounts import SystemOwnerExpiry
from utils import utcnow
from conftest import OWNER, balance_of


# ==========================================================
#                  BALANCE
# ==========================================================
def test_owner_tops_up_reseller(make_user, owner_client):
    make_user("res1", balance=5)

    resp = owner_client.post("/api/balance", json={"username": "res1", "amount": 20})

    assert resp.status_code == 200
    assert resp.get_json()["newBalance"] == 25
    assert balance_of("res1") == Decimal("25")
    assert balance_of(OWNER) == Decimal("0")


@pytest.mark.parametrize("amount", ["NaN", "Infinity", "1e300"])
def test_top_up_rejects_non_finite_or_huge_amounts(make_user, owner_client, amount):
    make_user("res1", balance=5)

    resp = owner_client.post("/api/balance", data='{"username": "res1", "amount": ' + amount + "}",
                             content_type="application/json")

    assert resp.status_code == 400
    assert balance_of("res1") == Decimal("5")


def test_owner_cannot_top_up_self(owner_client):
    resp = owner_client.post("/api/balance", json={"username": OWNER, "amount": 10})
    assert resp.status_code == 403
    assert balance_of(OWNER) == Decimal("0")


def test_super_owner_may_top_up_self(super_client):
    before = balance_of("superowner")
    resp = super_client.post("/api/balance", json={"username": "superowner", "amount": 10})
    assert resp.status_code == 200
    assert balance_of("superowner") == before + 10


def test_admin_tops_up_only_own_resellers(make_user, login):
    make_user("admin1", Role.ADMIN)
    make_user("res1", created_by="admin1")
    make_user("res2")
    admin = login("admin1")

    assert admin.post("/api/balance", json={"username": "res1", "amount": 5}).status_code == 200
    assert admin.post("/api/balance", json={"username": "res2", "amount": 5}).status_code == 403
    assert admin.post("/api/balance", json={"username": "res1", "amount": -5}).status_code == 400
    assert admin.post("/api/balance", json={"username": "ghost", "amount": 5}).status_code == 404


def test_reseller_cannot_manage_balance(make_user, login):
    make_user("res1")
    assert login("res1").get("/api/balance").status_code == 403


# ==========================================================
#                  USERS
# ==========================================================
def test_users_list_scoped(make_user, login, owner_client):
    make_user("admin1", Role.ADMIN)
    make_user("res1", created_by="admin1")
    make_user("res2")

    owner_names = {u["username"] for u in owner_client.get("/api/users").get_json()["data"]}
    admin_names = {u["username"] for u in login("admin1").get("/api/users").get_json()["data"]}

    assert "superowner" not in owner_names
    assert {"admin", "admin1", "res1", "res2"} <= owner_names
    assert admin_names == {"admin1", "res1"}


def test_set_active_and_protected_accounts(make_user, login, owner_client):
    make_user("admin1", Role.ADMIN)
    make_user("res1")

    resp = owner_client.post("/api/users", json={"action": "setActive", "username": "res1", "isActive": False})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["isActive"] is False

    assert owner_client.post(
        "/api/users", json={"action": "setActive", "username": "superowner", "isActive": False}
    ).status_code == 403
    assert owner_client.post(
        "/api/users", json={"action": "setActive", "username": OWNER, "isActive": False}
    ).status_code == 403
    assert login("admin1").post(
        "/api/users", json={"action": "setActive", "username": OWNER, "isActive": False}
    ).status_code == 403


def test_update_user_role_and_balance(make_user, owner_client):
    make_user("res1")

    resp = owner_client.post("/api/users", json={
        "action": "updateUser", "username": "res1", "newRole": "admin", "newBalance": 40,
    })

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["role"] == "admin"
    assert data["balance"] == 40


def test_admin_cannot_change_roles(make_user, login):
    make_user("admin1", Role.ADMIN)
    make_user("res1", created_by="admin1")

    resp = login("admin1").post("/api/users", json={"action": "updateUser", "username": "res1", "newRole": "admin"})
    assert resp.status_code == 403


def test_super_owner_edits_only_own_balance(super_client):
    ok = super_client.post("/api/users", json={"action": "updateUser", "username": "superowner", "newBalance": 5})
    assert ok.status_code == 200
    denied = super_client.post("/api/users", json={
        "action": "updateUser", "username": "superowner", "newEmail": "so@example.com",
    })
    assert denied.status_code == 403


def test_delete_user_removes_keys(make_user, login, owner_client):
    make_user("res1", balance=10)
    login("res1").post("/api/generate-key", json={"duration": 1})
    assert LicenseKey.query.filter_by(created_by="res1").count() == 1

    resp = owner_client.post("/api/users", json={"action": "deleteUser", "username": "res1"})

    assert resp.status_code == 200
    assert resp.get_json()["data"]["deletedKeys"] == 1
    db.session.expire_all()
    assert User.query.filter_by(username="res1").first() is None
    assert LicenseKey.query.filter_by(created_by="res1").count() == 0


def test_unknown_action(owner_client):
    resp = owner_client.post("/api/users", json={"action": "explode", "username": "x"})
    assert resp.status_code == 400
    assert resp.get_json()["reason"] == "Unknown action."


# ==========================================================
#                  SERVER STATUS
# ==========================================================
def test_server_off_cascades_to_descendants(make_user, login, owner_client):
    make_user("admin1", Role.ADMIN)
    make_user("res1", created_by="admin1", balance=100)

    resp = owner_client.post("/api/users-server-status", json={
        "action": "toggleServerStatus", "usernames": ["admin1"], "serverStatus": False,
    })
    result = resp.get_json()["results"][0]
    assert result["success"] is True
    assert result["affectedCount"] == 2

    blocked = login("res1").post("/api/generate-key", json={"duration": 1})
    assert blocked.status_code == 403
    assert blocked.get_json()["reason"] == (
        "Your server is turned OFF. Key generation is blocked. Please contact administrator."
    )
    db.session.expire_all()
    assert User.query.filter_by(username="res1").first().server_status is False
    assert balance_of("res1") == Decimal("100")

    owner_client.post("/api/users-server-status", json={
        "action": "toggleServerStatus", "usernames": ["admin1"], "serverStatus": True,
    })
    assert login("res1").post("/api/generate-key", json={"duration": 1}).status_code == 200


def test_cannot_turn_off_own_server(owner_client):
    resp = owner_client.post("/api/users-server-status", json={
        "action": "toggleServerStatus", "usernames": [OWNER], "serverStatus": False,
    })
    assert resp.get_json()["results"][0]["success"] is False


# ==========================================================
#                  SYSTEM OWNER EXPIRY
# ==========================================================
def test_system_owner_expiry_disables_and_restores(make_user):
    make_user("res1")
    disabled = make_user("res2")
    disabled.is_active = False
    owner = User.query.filter_by(username=OWNER).first()
    owner.account_expiry_date = utcnow() - timedelta(hours=1)
    db.session.commit()

    assert SystemOwnerExpiry.sync() == "disabled"
    assert SystemOwnerExpiry.sync() is None
    assert User.query.filter_by(username="res1").first().is_active is False
    assert User.query.filter_by(username="superowner").first().is_active is True

    owner.account_expiry_date = utcnow() + timedelta(days=30)
    db.session.commit()

    assert SystemOwnerExpiry.sync() == "restored"
    assert User.query.filter_by(username="res1").first().is_active is True
    assert User.query.filter_by(username="res2").first().is_active is False
    assert User.query.filter_by(username="res1").first().previous_is_active is None


# ==========================================================
#                  OWN ACCOUNT
# ==========================================================
def test_rename_cascades_to_owned_rows(make_user, login):
    make_user("res1", balance=10)
    c = login("res1")
    c.post("/api/generate-key", json={"duration": 1})

    resp = c.post("/api/account/update", json={"oldPassword": "secret123", "newUsername": "res9"})

    assert resp.status_code == 200
    assert LicenseKey.query.filter_by(created_by="res9").count() == 1
    assert c.get("/api/user/balance").get_json()["data"]["username"] == "res9"


def test_account_update_requires_old_password(make_user, login):
    make_user("res1")
    c = login("res1")
    assert c.post("/api/account/update", json={"newPassword": "abcd"}).status_code == 400
    assert c.post("/api/account/update", json={"oldPassword": "bad", "newPassword": "abcd"}).status_code == 400
    assert c.post("/api/account/update", json={"oldPassword": "secret123", "newPassword": "abc"}).status_code == 400
    assert c.post("/api/account/update", json={"oldPassword": "secret123", "newPassword": "abcd"}).status_code == 200


def test_admin_may_only_change_balance(make_user, login):
    make_user("admin1", Role.ADMIN)
    make_user("res1", created_by="admin1")
    admin = login("admin1")

    ok = admin.post("/api/users", json={"action": "updateUser", "username": "res1", "newBalance": 15})
    assert ok.status_code == 200
    denied = admin.post("/api/users", json={"action": "updateUser", "username": "res1", "newEmail": "r@example.com"})
    assert denied.status_code == 403


def test_nobody_deletes_themselves(owner_client):
    resp = owner_client.post("/api/users", json={"action": "deleteUser", "username": OWNER})
    assert resp.status_code == 403
