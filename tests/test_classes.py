import pytest


@pytest.fixture
def twenty_classes(db):
    db["classes"].insert_many([
        {"name": f"Class {i:02d}", "trainers": [], "totalBookings": i % 7} for i in range(1, 21)
    ])


def test_create_class_sets_defaults(client, db, admin_headers):
    res = client.post("/classes", json={"name": "Yoga", "description": "Stretch", "totalBookings": 99, "level": "easy"}, headers=admin_headers)
    fitness_class = client.get(f"/classes/{res.json()['insertedId']}").json()
    assert fitness_class["totalBookings"] == 0
    assert fitness_class["trainers"] == []
    assert fitness_class["level"] == "easy"


def test_create_class_is_admin_only(client, member_headers):
    assert client.post("/classes", json={"name": "Yoga"}, headers=member_headers).status_code == 403


@pytest.mark.parametrize("limit", [6, 7, 20, 25])
def test_pages_cover_all_classes(client, twenty_classes, limit):
    first = client.get("/classes", params={"limit": limit}).json()
    assert first["totalPages"] == -(-20 // limit)
    names = []
    for page in range(1, first["totalPages"] + 1):
        names += [c["name"] for c in client.get("/classes", params={"page": page, "limit": limit}).json()["classes"]]
    assert names == [f"Class {i:02d}" for i in range(1, 21)]


def test_page_three_of_six(client, twenty_classes):
    body = client.get("/classes", params={"page": 3}).json()
    assert [c["name"] for c in body["classes"]] == [f"Class {i:02d}" for i in range(13, 19)]
    assert body["totalPages"] == 4
    assert body["total"] == 20


def test_search_is_case_insensitive_substring(client, db):
    db["classes"].insert_many([{"name": "Power Yoga"}, {"name": "yoga flow"}, {"name": "Boxing"}, {"name": "Yoga (hot)"}])
    body = client.get("/classes", params={"search": "YOGA"}).json()
    assert {c["name"] for c in body["classes"]} == {"Power Yoga", "yoga flow", "Yoga (hot)"}
    assert client.get("/classes", params={"search": "(hot"}).json()["total"] == 1


def test_bad_pagination_is_rejected(client):
    assert client.get("/classes", params={"page": 0}).status_code == 422
    assert client.get("/classes", params={"limit": 0}).status_code == 422


def test_featured_classes_top_six(client, twenty_classes):
    featured = client.get("/featured-classes").json()
    assert len(featured) == 6
    counts = [c["totalBookings"] for c in featured]
    assert counts == sorted(counts, reverse=True)
    assert counts[0] == 6


def test_add_trainer_is_idempotent(client, db, member_headers):
    db["classes"].insert_one({"name": "Yoga", "trainers": []})
    body = {"trainer": {"id": "t1", "name": "Ann"}}
    first = client.patch("/classes/Yoga", json=body, headers=member_headers)
    assert first.json()["message"] == "Trainer added to class"
    second = client.patch("/classes/Yoga", json={"trainer": {"id": "t1", "name": "Other"}}, headers=member_headers)
    assert second.json()["message"] == "Trainer already added to this class"
    assert second.json()["trainer"] == {"id": "t1", "name": "Ann"}
    assert db["classes"].find_one({"name": "Yoga"})["trainers"] == [{"id": "t1", "name": "Ann"}]


def test_add_trainer_to_missing_class(client, member_headers):
    res = client.patch("/classes/Nope", json={"trainer": {"id": "t1"}}, headers=member_headers)
    assert res.status_code == 404


def test_increment_bookings(client, db, member_headers):
    db["classes"].insert_one({"name": "Yoga", "totalBookings": 2})
    client.patch("/classes/increment-bookings/Yoga", headers=member_headers)
    client.patch("/classes/increment-bookings/Yoga", headers=member_headers)
    assert db["classes"].find_one({"name": "Yoga"})["totalBookings"] == 4
    assert client.patch("/classes/increment-bookings/Nope", headers=member_headers).status_code == 404


def test_edit_class_echoes_payload(client, db, admin_headers):
    db["classes"].insert_one({"name": "Yoga", "description": "old", "totalBookings": 3})
    res = client.patch("/classes/Yoga/details", json={"description": "new", "totalBookings": 0}, headers=admin_headers)
    assert res.json() == {"description": "new"}
    stored = db["classes"].find_one({"name": "Yoga"})
    assert stored["description"] == "new"
    assert stored["totalBookings"] == 3


def test_delete_class_by_name(client, db, admin_headers):
    db["classes"].insert_one({"name": "Yoga"})
    assert client.delete("/classes/Yoga", headers=admin_headers).json()["deletedCount"] == 1
    assert db["classes"].count_documents({}) == 0


def test_unknown_class(client):
    assert client.get("/classes/65a000000000000000000000").status_code == 404


def test_edit_class_skips_stored_metadata(client, db, admin_headers):
    class_id = db["classes"].insert_one({"name": "Yoga", "description": "old"}).inserted_id
    body = {"_id": "65a000000000000000000000", "created_at": "2020-01-01", "updated_at": "2020-01-01", "description": "new"}
    res = client.patch("/classes/Yoga/details", json=body, headers=admin_headers)
    assert res.status_code == 200
    assert res.json() == {"description": "new"}
    stored = db["classes"].find_one({"name": "Yoga"})
    assert stored["_id"] == class_id
    assert "created_at" not in stored
