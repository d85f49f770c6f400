from decimal import Decimal

import pytest

from models import ReferralCode, Role, User, UserHierarchy


def _create_code(c, role="reseller", **extra):
    payload = {"role": role, "expiryDays": 30}
    payload.update(extra)
    return c.post("/api/referrals", json=payload)


def _register(c, username, code, email=None):
    return c.post("/api/auth/register", json={
        "username": username,
        "email": email or f"{username}@example.com",
        "password": "secret123",
        "referralCode": code,
    })


def test_referral_code_is_single_use(owner_client, client):
    code = _create_code(owner_client, initialBalance=25).get_json()["data"]["code"]

    first = _register(client, "newres", code)
    second = _register(client, "another", code)

    assert first.status_code == 200
    assert second.status_code == 400
    assert second.get_json()["reason"] == "Invalid or used referral code."

    user = User.query.filter_by(username="newres").first()
    assert user.role == "reseller"
    assert user.created_by == "admin"
    assert user.balance == Decimal("25")
    assert user.account_expiry_date is not None

    used = ReferralCode.query.filter_by(code=code).first()
    assert used.is_active is False
    assert used.used_by == "newres"


def test_registered_user_joins_hierarchy(owner_client, client):
    code = _create_code(owner_client).get_json()["data"]["code"]
    _register(client, "newres", code)

    owner = User.query.filter_by(username="admin").first()
    child = User.query.filter_by(username="newres").first()
    row = UserHierarchy.query.filter_by(ancestor_id=owner.id, descendant_id=child.id).first()
    assert row is not None
    assert row.depth == 1


def test_register_existing_username_conflicts(owner_client, client):
    code = _create_code(owner_client).get_json()["data"]["code"]
    resp = _register(client, "admin", code)

    assert resp.status_code == 409
    assert ReferralCode.query.filter_by(code=code).first().is_active is True


def test_register_validates_input(client):
    assert client.post("/api/auth/register", json={"username": "x"}).status_code == 400
    resp = _register(client, "x", "NOPE", email="not-an-email")
    assert resp.get_json()["reason"] == "Invalid email format."


def test_reseller_cannot_create_referrals(make_user, login):
    make_user("res1")
    resp = _create_code(login("res1"))
    assert resp.status_code == 403


def test_admin_can_only_create_reseller_codes(make_user, login):
    make_user("admin1", Role.ADMIN)
    admin = login("admin1")

    assert _create_code(admin, role="reseller").status_code == 200
    assert _create_code(admin, role="admin").status_code == 403
    assert _create_code(admin, role="owner").status_code == 403


def test_owner_cannot_create_super_owner_codes(owner_client):
    assert _create_code(owner_client, role="super owner").status_code == 403
    assert _create_code(owner_client, role="owner").status_code == 200


def test_invalid_role_and_expiry(owner_client):
    assert _create_code(owner_client, role="king").get_json()["reason"] == "Invalid role."
    assert _create_code(owner_client, expiryDays=0).status_code == 400


def test_negative_initial_balance_is_clamped(owner_client):
    data = _create_code(owner_client, initialBalance=-50).get_json()["data"]
    assert data["initialBalance"] == 0


def test_referral_list_scoped_by_role(make_user, login, owner_client, super_client):
    make_user("admin1", Role.ADMIN)
    admin = login("admin1")
    _create_code(super_client, role="super owner")
    _create_code(owner_client)
    _create_code(admin)

    def creators(c):
        return sorted(r["createdBy"] for r in c.get("/api/referrals").get_json()["data"])

    assert creators(super_client) == ["admin", "admin1", "superowner"]
    assert creators(owner_client) == ["admin", "admin1"]
    assert creators(admin) == ["admin1"]


def test_disable_referral(make_user, login, owner_client):
    code_id = _create_code(owner_client).get_json()["data"]["id"]
    make_user("admin1", Role.ADMIN)

    assert login("admin1").delete(f"/api/referrals?id={code_id}").status_code == 403
    resp = owner_client.delete(f"/api/referrals?id={code_id}")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["isActive"] is False
    assert owner_client.delete("/api/referrals?id=9999").status_code == 404


@pytest.mark.parametrize("body", [
    '{"role": "reseller", "expiryDays": NaN}',
    '{"role": "reseller", "expiryDays": Infinity}',
    '{"role": "reseller", "expiryDays": 1e9}',
    '{"role": "reseller", "expiryDays": 30, "initialBalance": NaN}',
    '{"role": "reseller", "expiryDays": 30, "initialBalance": 1e300}',
])
def test_non_finite_or_huge_numbers_are_rejected(owner_client, body):
    resp = owner_client.post("/api/referrals", data=body, content_type="application/json")

    assert resp.status_code == 400
    assert ReferralCode.query.count() == 0
