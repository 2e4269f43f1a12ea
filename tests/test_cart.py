from bson import ObjectId

from conftest import bearer

EXTENDED = {"id": "ext", "name": "Extended Warranty", "duration": "2 years", "price": 100}


def add(client, user, laptop, quantity=1, **extra):
    body = {"laptop_id": laptop["id"], "quantity": quantity, **extra}
    return client.post("/api/cart", json=body, headers=bearer(user["token"]))


def test_empty_cart(client, user):
    body = client.get("/api/cart", headers=bearer(user["token"])).json()
    assert body == {"user_id": user["id"], "items": [], "total_items": 0, "subtotal": 0}


def test_cart_requires_login(client):
    assert client.get("/api/cart").status_code == 401


def test_add_merges_same_laptop(client, user, make_laptop):
    laptop = make_laptop(price=500.0, stock=5)
    add(client, user, laptop, 1)
    body = add(client, user, laptop, 2).json()

    assert len(body["items"]) == 1
    assert body["items"][0]["quantity"] == 3
    assert body["items"][0]["laptop"]["name"] == laptop["name"]
    assert body["total_items"] == 3
    assert body["subtotal"] == 1500.0


def test_add_beyond_stock(client, user, make_laptop):
    laptop = make_laptop(stock=2)
    assert add(client, user, laptop, 3).status_code == 400

    add(client, user, laptop, 2)
    res = add(client, user, laptop, 1)
    assert res.status_code == 400
    assert res.json()["message"] == "Cannot add more units. Maximum available: 2"


def test_add_sold_out_laptop(client, user, make_laptop):
    res = add(client, user, make_laptop(stock=0))
    assert res.status_code == 400
    assert res.json()["message"] == "Laptop is not available"


def test_subtotal_includes_warranty(client, user, make_laptop):
    laptop = make_laptop(price=1000.0)
    body = add(client, user, laptop, 2, warranty_option=EXTENDED).json()
    assert body["items"][0]["warranty_option"]["id"] == "ext"
    assert body["subtotal"] == 2200.0


def test_update_and_remove_item(client, user, make_laptop):
    a = make_laptop(price=100.0, stock=5)
    b = make_laptop(price=200.0, stock=5)
    add(client, user, a)
    body = add(client, user, b).json()
    item_a = next(i for i in body["items"] if i["laptop_id"] == a["id"])

    body = client.put(f"/api/cart/{item_a['id']}", json={"quantity": 4}, headers=bearer(user["token"])).json()
    assert body["total_items"] == 5
    assert body["subtotal"] == 600.0

    res = client.put(f"/api/cart/{item_a['id']}", json={"quantity": 9}, headers=bearer(user["token"]))
    assert res.status_code == 400

    body = client.delete(f"/api/cart/{item_a['id']}", headers=bearer(user["token"])).json()
    assert [i["laptop_id"] for i in body["items"]] == [b["id"]]

    res = client.put(f"/api/cart/{item_a['id']}", json={"quantity": 1}, headers=bearer(user["token"]))
    assert res.status_code == 404


def test_clear_cart(client, db, user, make_laptop):
    add(client, user, make_laptop())
    body = client.delete("/api/cart", headers=bearer(user["token"])).json()
    assert body["items"] == []
    assert db["cart"].find_one({"user_id": user["id"]}) is None


def test_deleted_laptop_is_dropped_from_cart(client, db, user, admin, make_laptop):
    kept = make_laptop(price=300.0)
    gone = make_laptop(price=700.0)
    add(client, user, kept)
    add(client, user, gone, 2)

    client.delete(f"/api/laptops/{gone['id']}", headers=bearer(admin["token"]))
    body = client.get("/api/cart", headers=bearer(user["token"])).json()

    assert [i["laptop_id"] for i in body["items"]] == [kept["id"]]
    assert body["total_items"] == 1
    assert body["subtotal"] == 300.0
    stored = db["cart"].find_one({"user_id": user["id"]})
    assert [i["laptop_id"] for i in stored["items"]] == [kept["id"]]


def test_cart_follows_stock(client, db, user, make_laptop):
    shrinking = make_laptop(stock=5)
    sold_out = make_laptop(stock=5)
    add(client, user, shrinking, 4)
    add(client, user, sold_out, 1)
    db["laptop"].update_one({"_id": ObjectId(shrinking["id"])}, {"$set": {"stock": 2}})
    db["laptop"].update_one({"_id": ObjectId(sold_out["id"])}, {"$set": {"stock": 0}})

    body = client.get("/api/cart", headers=bearer(user["token"])).json()
    assert [(i["laptop_id"], i["quantity"]) for i in body["items"]] == [(shrinking["id"], 2)]
    assert body["total_items"] == 2


def test_carts_are_per_user(client, make_user, make_laptop):
    first, second = make_user(), make_user()
    add(client, first, make_laptop())
    assert client.get("/api/cart", headers=bearer(second["token"])).json()["items"] == []
