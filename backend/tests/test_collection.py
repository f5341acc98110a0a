import uuid

from conftest import register_user

BOTTLE = {
    "name": "Eagle Rare 10",
    "brand": "Buffalo Trace",
    "type": "Bourbon",
    "proof": 90,
    "price": 39.99,
    "rating": 8.5,
    "nose": "cherry, toffee",
    "palate": ["oak", "honey"],
    "release_year": 2020,
    "image_url": "https://images.example.com/eagle-rare.png",
}


async def add_bottle(client, headers, **overrides):
    response = await client.post("/api/collection", json={**BOTTLE, **overrides}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def test_collection_requires_auth(client):
    assert (await client.get("/api/collection")).status_code == 401
    assert (await client.post("/api/collection", json=BOTTLE)).status_code == 401


async def test_add_and_list_spirit(client, alice):
    spirit = await add_bottle(client, alice["headers"])

    assert spirit["name"] == "Eagle Rare 10"
    assert spirit["owner_id"] == alice["id"]
    # 1-10 ratings are stored on the 100 scale
    assert spirit["rating"] == 85
    assert spirit["nose"] == ["cherry", "toffee"]
    assert spirit["palate"] == ["oak", "honey"]
    assert spirit["bottle_level"] == 100

    response = await client.get("/api/collection", headers=alice["headers"])
    assert response.status_code == 200
    assert [s["id"] for s in response.json()["spirits"]] == [spirit["id"]]


async def test_invalid_spirit_is_rejected_with_details(client, alice):
    response = await client.post(
        "/api/collection",
        json={**BOTTLE, "name": "", "image_url": "ftp://nope", "release_year": 1700},
        headers=alice["headers"],
    )
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error"] == "Validation error"
    fields = {d["field"] for d in detail["details"]}
    assert {"name", "image_url", "release_year"} <= fields


async def test_rating_out_of_range_is_rejected(client, alice):
    response = await client.post("/api/collection", json={**BOTTLE, "rating": 150}, headers=alice["headers"])
    assert response.status_code == 400


async def test_collections_are_private(client, alice, bob):
    spirit = await add_bottle(client, alice["headers"])

    assert (await client.get("/api/collection", headers=bob["headers"])).json()["spirits"] == []
    assert (await client.get(f"/api/collection/{spirit['id']}", headers=bob["headers"])).status_code == 404

    response = await client.patch(
        f"/api/collection/{spirit['id']}", json={"price": 1}, headers=bob["headers"]
    )
    assert response.status_code == 403
    assert (await client.delete(f"/api/collection/{spirit['id']}", headers=bob["headers"])).status_code == 403


async def test_update_spirit(client, alice):
    spirit = await add_bottle(client, alice["headers"])

    response = await client.patch(
        f"/api/collection/{spirit['id']}",
        json={"price": 44.5, "is_favorite": True, "finish": "long, spicy", "bottle_level": 40},
        headers=alice["headers"],
    )
    assert response.status_code == 200
    updated = response.json()
    assert updated["price"] == 44.5
    assert updated["is_favorite"] is True
    assert updated["finish"] == ["long", "spicy"]
    assert updated["bottle_level"] == 40
    assert updated["name"] == BOTTLE["name"]


async def test_update_missing_spirit(client, alice):
    response = await client.patch(f"/api/collection/{uuid.uuid4()}", json={"price": 1}, headers=alice["headers"])
    assert response.status_code == 404


async def test_soft_deleted_spirit_disappears(client, alice):
    spirit = await add_bottle(client, alice["headers"])

    response = await client.delete(f"/api/collection/{spirit['id']}", headers=alice["headers"])
    assert response.status_code == 200
    assert response.json()["success"] is True

    assert (await client.get("/api/collection", headers=alice["headers"])).json()["spirits"] == []
    assert (await client.get(f"/api/collection/{spirit['id']}", headers=alice["headers"])).status_code == 404
    assert (await client.delete(f"/api/collection/{spirit['id']}", headers=alice["headers"])).status_code == 404


async def test_stats(client, alice):
    assert (await client.get("/api/collection/stats")).json() == {"totalSpirits": 0, "favorites": 0, "tastings": 0}

    await add_bottle(client, alice["headers"])
    await add_bottle(client, alice["headers"], name="Blanton's", is_favorite=True)
    gone = await add_bottle(client, alice["headers"], name="Old Crow", is_favorite=True)
    await client.delete(f"/api/collection/{gone['id']}", headers=alice["headers"])

    stats = (await client.get("/api/collection/stats", headers=alice["headers"])).json()
    assert stats == {"totalSpirits": 2, "favorites": 1, "tastings": 0}


async def test_featured_excludes_own_and_unremarkable_bottles(client, alice, bob):
    await add_bottle(client, alice["headers"], name="Alice Pick")
    await add_bottle(client, bob["headers"], name="Bob Pick")
    await add_bottle(client, bob["headers"], name="Bob Plain", rating=None, image_url=None)

    featured = (await client.get("/api/spirits/featured", headers=alice["headers"])).json()["spirits"]
    assert [s["name"] for s in featured] == ["Bob Pick"]
    assert featured[0]["owner"]["name"] == "Bob"

    anonymous = (await client.get("/api/spirits/featured")).json()["spirits"]
    assert {s["name"] for s in anonymous} == {"Alice Pick", "Bob Pick"}


async def test_spirit_detail_reports_owner(client, alice, bob):
    spirit = await add_bottle(client, alice["headers"])
    url = f"/api/spirits/{spirit['id']}"

    assert (await client.get(url)).status_code == 401

    mine = (await client.get(url, headers=alice["headers"])).json()
    assert mine["isOwner"] is True
    assert mine["spirit"]["name"] == "Eagle Rare 10"
    assert mine["spirit"]["owner"] == {"id": alice["id"], "name": "Alice", "image": None}

    theirs = (await client.get(url, headers=bob["headers"])).json()
    assert theirs["isOwner"] is False
    assert theirs["spirit"]["id"] == spirit["id"]

    await client.delete(f"/api/collection/{spirit['id']}", headers=alice["headers"])
    assert (await client.get(url, headers=alice["headers"])).status_code == 404
    assert (await client.get(f"/api/spirits/{uuid.uuid4()}", headers=alice["headers"])).status_code == 404


async def test_search_dedupes_across_collections(client, alice, bob):
    await add_bottle(client, alice["headers"])
    await add_bottle(client, bob["headers"])
    await add_bottle(client, bob["headers"], name="Weller Special Reserve", brand="Weller", type="Wheated Bourbon")

    response = await client.get("/api/spirits/search", params={"query": "eagle"})
    assert response.status_code == 200
    results = response.json()["results"]
    assert len(results) == 1
    assert results[0]["name"] == "Eagle Rare 10"


async def test_search_validation_and_suggestions(client):
    assert (await client.get("/api/spirits/search", params={"query": "a"})).status_code == 400

    body = (await client.get("/api/spirits/search", params={"query": "some rye"})).json()
    assert body["results"] == []
    assert body["suggestedType"] == "Rye"


async def test_popular_and_public_profile(client, alice):
    carol = await register_user(client, "carol@example.com", name="Carol")
    await add_bottle(client, alice["headers"])
    await add_bottle(client, alice["headers"], name="Stagg Jr")
    await add_bottle(client, carol["headers"])

    users = (await client.get("/api/users/popular")).json()["users"]
    assert [(u["name"], u["spirits_count"]) for u in users] == [("Alice", 2), ("Carol", 1)]

    profile = (await client.get(f"/api/users/{alice['id']}")).json()
    assert profile["username"] == "alice"
    assert profile["spirits_count"] == 2
    assert profile["videos_count"] == 0
    assert (await client.get(f"/api/users/{uuid.uuid4()}")).status_code == 404
