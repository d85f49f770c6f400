from models import Activity, Role


def test_settings_defaults(owner_client):
    data = owner_client.get("/api/settings").get_json()["data"]
    assert data["pricePerDay"] == 10
    assert data["version"] == 1
    assert [t["duration"] for t in data["durationPricing"]] == [1, 7, 30]
    assert [t["price"] for t in data["durationPricing"]] == [10, 50, 200]


def test_update_bumps_version_and_logs(owner_client):
    resp = owner_client.post("/api/settings", json={"pricePerDay": 12})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["version"] == 2
    assert Activity.query.filter_by(action="price_per_day_updated").count() == 1

    again = owner_client.post("/api/settings", json={"pricePerDay": 12})
    assert again.get_json()["reason"] == "No changes to update"
    assert again.get_json()["data"]["version"] == 2


def test_new_price_per_day_applies_to_keys(owner_client, make_user, login):
    owner_client.put("/api/settings", json={"pricePerDay": 3})
    make_user("res1", balance=100)

    data = login("res1").post("/api/generate-key", json={"duration": 4}).get_json()["data"]
    assert data["price"] == 12


def test_duration_pricing_drops_malformed_tiers(owner_client):
    resp = owner_client.post("/api/settings", json={"durationPricing": [
        {"duration": 3, "price": 25, "type": "days"},
        {"duration": -1, "price": 5},
        {"duration": 12, "price": 8, "type": "hours"},
        {"duration": 2, "price": "free"},
    ]})
    tiers = resp.get_json()["data"]["durationPricing"]
    assert [(t["duration"], t["type"]) for t in tiers] == [(3, "days"), (12, "hours")]
    assert Activity.query.filter_by(action="duration_pricing_updated").count() == 1


def test_settings_update_is_owner_only(make_user, login):
    make_user("admin1", Role.ADMIN)
    admin = login("admin1")
    assert admin.get("/api/settings").status_code == 200
    assert admin.post("/api/settings", json={"pricePerDay": 1}).status_code == 403


def test_negative_price_rejected(owner_client):
    assert owner_client.post("/api/settings", json={"pricePerDay": -1}).status_code == 400
