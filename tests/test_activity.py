from models import Role
from licensing import connect_codec


def test_super_owner_actions_are_hidden_from_everyone(super_client, owner_client, make_user, login):
    make_user("res1", balance=10)
    super_client.post("/api/generate-key", json={"duration": 1})
    login("res1").post("/api/generate-key", json={"duration": 1})

    for c in (super_client, owner_client):
        actors = {a["userId"] for a in c.get("/api/activities").get_json()["data"]}
        assert "superowner" not in actors
        assert "res1" in actors


def test_reseller_sees_only_own_activity(make_user, login):
    make_user("res1", balance=10)
    make_user("res2", balance=10)
    r1 = login("res1")
    login("res2").post("/api/generate-key", json={"duration": 1})
    r1.post("/api/generate-key", json={"duration": 1})

    actors = {a["userId"] for a in r1.get("/api/activities").get_json()["data"]}
    assert actors == {"res1"}


def test_post_activity(make_user, login):
    make_user("res1")
    c = login("res1")
    assert c.post("/api/activities", json={"details": "no action"}).status_code == 400
    assert c.post("/api/activities", json={"action": "note", "details": "hello"}).status_code == 200
    assert any(a["action"] == "note" for a in c.get("/api/activities").get_json()["data"])


def test_analytics_counts_connects(make_user, login, client):
    make_user("res1", balance=10)
    c = login("res1")
    key = c.post("/api/generate-key", json={"duration": 1, "maxDevices": 2}).get_json()["data"]["key"]
    for device in ("dev-a", "dev-b", "dev-a"):
        client.post("/api/connect/res1",
                    json={"encryptedData": connect_codec.encode_request(key, device, "test-secret-key")},
                    headers={"X-API-Key": "test-api-key"})

    data = c.get("/api/analytics").get_json()["data"]
    assert data["totalRequests"] == 3
    assert data["uniqueUsers"] == 2
    assert data["totalKeys"] == 1
    assert data["activeKeys"] == 1
    assert len(data["hourlyTraffic"]) == 24
    assert sum(h["requests"] for h in data["hourlyTraffic"]) == 3

    feed = c.get("/api/activities").get_json()["data"]
    assert any(a["id"].startswith("analytics-") for a in feed if isinstance(a["id"], str))


def test_admin_analytics_excludes_other_keys(make_user, login):
    make_user("admin1", Role.ADMIN, balance=10)
    make_user("res1", balance=10)
    login("res1").post("/api/generate-key", json={"duration": 1})

    data = login("admin1").get("/api/analytics").get_json()["data"]
    assert data["totalKeys"] == 0
