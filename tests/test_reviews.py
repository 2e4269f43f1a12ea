from bson import ObjectId

from conftest import bearer, order_body


def review(rating, title="Solid machine"):
    return {"rating": rating, "title": title, "comment": "Works well for daily use", "pros": ["Battery"]}


def post_review(client, user, laptop, rating):
    return client.post(f"/api/laptops/{laptop['id']}/reviews", json=review(rating), headers=bearer(user["token"]))


def rating_of(db, laptop):
    doc = db["laptop"].find_one({"_id": ObjectId(laptop["id"])})
    return doc["average_rating"], doc["num_reviews"]


def test_rating_follows_reviews(client, db, make_user, make_laptop):
    laptop = make_laptop()
    first, second = make_user(), make_user()

    res = post_review(client, first, laptop, 5)
    assert res.status_code == 201
    assert res.json()["user"]["name"] == first["name"]
    second_review = post_review(client, second, laptop, 2).json()
    assert rating_of(db, laptop) == (3.5, 2)

    client.delete(f"/api/reviews/{second_review['id']}", headers=bearer(second["token"]))
    assert rating_of(db, laptop) == (5, 1)


def test_removing_last_review_resets_rating(client, db, user, make_laptop):
    laptop = make_laptop()
    created = post_review(client, user, laptop, 4).json()
    client.delete(f"/api/reviews/{created['id']}", headers=bearer(user["token"]))
    assert rating_of(db, laptop) == (0, 0)


def test_rating_change_recomputes(client, db, user, make_laptop):
    laptop = make_laptop()
    created = post_review(client, user, laptop, 1).json()
    res = client.put(f"/api/reviews/{created['id']}", json={"rating": 3}, headers=bearer(user["token"]))
    assert res.json()["rating"] == 3
    assert rating_of(db, laptop) == (3, 1)


def test_one_review_per_user_per_laptop(client, db, user, make_laptop):
    laptop = make_laptop()
    post_review(client, user, laptop, 4)
    res = post_review(client, user, laptop, 1)
    assert res.status_code == 409
    assert res.json()["error"] == "Duplicate Entry"
    assert rating_of(db, laptop) == (4, 1)


def test_review_validation(client, user, make_laptop):
    laptop = make_laptop()
    res = client.post(f"/api/laptops/{laptop['id']}/reviews", json=review(6), headers=bearer(user["token"]))
    assert res.status_code == 400
    res = client.post(f"/api/laptops/{ObjectId()}/reviews", json=review(4), headers=bearer(user["token"]))
    assert res.status_code == 404


def test_verified_purchase(client, user, admin, make_user, make_laptop):
    laptop = make_laptop()
    order = client.post("/api/orders", json=order_body((laptop, 1)), headers=bearer(user["token"])).json()
    client.put(f"/api/orders/{order['id']}/status", json={"status": "delivered"}, headers=bearer(admin["token"]))

    assert post_review(client, user, laptop, 5).json()["is_verified_purchase"] is True
    assert post_review(client, make_user(), laptop, 5).json()["is_verified_purchase"] is False


def test_only_author_or_admin_can_edit(client, make_user, admin, make_laptop):
    author, other = make_user(), make_user()
    created = post_review(client, author, make_laptop(), 4).json()

    res = client.put(f"/api/reviews/{created['id']}", json={"title": "Changed"}, headers=bearer(other["token"]))
    assert res.status_code == 403
    res = client.delete(f"/api/reviews/{created['id']}", headers=bearer(other["token"]))
    assert res.status_code == 403
    res = client.put(f"/api/reviews/{created['id']}", json={"title": "Moderated"}, headers=bearer(admin["token"]))
    assert res.json()["title"] == "Moderated"


def test_listing_votes_and_approval(client, make_user, admin, make_laptop):
    laptop = make_laptop()
    author = make_user()
    created = post_review(client, author, laptop, 4).json()

    listed = client.get(f"/api/laptops/{laptop['id']}/reviews").json()
    assert listed["count"] == 1
    assert client.get("/api/reviews/user", headers=bearer(author["token"])).json()["count"] == 1

    voted = client.put(f"/api/reviews/{created['id']}/vote", headers=bearer(make_user()["token"])).json()
    assert voted["helpful_votes"] == 1

    res = client.put(f"/api/reviews/{created['id']}/approve", json={}, headers=bearer(admin["token"]))
    assert res.status_code == 400
    res = client.put(f"/api/reviews/{created['id']}/approve", json={"is_approved": False},
                     headers=bearer(author["token"]))
    assert res.status_code == 403
    res = client.put(f"/api/reviews/{created['id']}/approve", json={"is_approved": False},
                     headers=bearer(admin["token"]))
    assert res.json()["is_approved"] is False
    assert client.get(f"/api/reviews/{created['id']}").json()["is_approved"] is False


def test_null_rating_rejected(client, db, user, make_laptop):
    laptop = make_laptop()
    created = post_review(client, user, laptop, 4).json()
    res = client.put(f"/api/reviews/{created['id']}", json={"rating": None}, headers=bearer(user["token"]))
    assert res.status_code == 400
    assert db["review"].find_one({"_id": ObjectId(created["id"])})["rating"] == 4
    assert rating_of(db, laptop) == (4, 1)
