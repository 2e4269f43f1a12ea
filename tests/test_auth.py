from datetime import timedelta

from bson import ObjectId

from auth import create_access_token, decode_token, hash_password, verify_password
from conftest import bearer


def test_password_hashing():
    hashed = hash_password("secret1")
    assert hashed != "secret1"
    assert verify_password("secret1", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("secret1", "")


def test_register_and_login(client, db):
    res = client.post("/api/auth/register", json={"name": "Jane", "email": "Jane@Example.com",
                                                  "password": "secret1", "role": "admin"})
    assert res.status_code == 201
    body = res.json()
    assert body["user"]["email"] == "jane@example.com"
    assert body["user"]["role"] == "user"
    assert "password_hash" not in body["user"]
    assert decode_token(body["token"])["sub"] == body["user"]["id"]
    assert db["user"].find_one({"email": "jane@example.com"})["password_hash"] != "secret1"

    res = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "secret1"})
    assert res.status_code == 200
    token = res.json()["token"]
    profile = client.get("/api/auth/profile", headers=bearer(token)).json()
    assert profile["user"]["name"] == "Jane"


def test_register_duplicate_email(client):
    payload = {"name": "Jane", "email": "jane@example.com", "password": "secret1"}
    client.post("/api/auth/register", json=payload)
    res = client.post("/api/auth/register", json=payload)
    assert res.status_code == 400
    assert res.json()["message"] == "User already exists"


def test_register_validation(client):
    res = client.post("/api/auth/register", json={"name": "Jane", "email": "not-an-email", "password": "123"})
    assert res.status_code == 400
    assert "email" in res.json()["message"]


def test_login_failures(client, user):
    res = client.post("/api/auth/login", json={"email": user["email"], "password": "wrong-password"})
    assert res.status_code == 401
    assert res.json()["message"] == "Invalid email or password"
    res = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "secret1"})
    assert res.status_code == 401


def test_token_checks(client, user):
    assert client.get("/api/auth/test", headers=bearer(user["token"])).json()["success"] is True
    assert client.get("/api/auth/profile").status_code == 401
    assert client.get("/api/auth/profile", headers={"Authorization": user["token"]}).status_code == 401
    assert client.get("/api/auth/profile", headers=bearer("garbage")).status_code == 401

    expired = create_access_token({"sub": user["id"]}, expires_delta=timedelta(minutes=-1))
    assert client.get("/api/auth/profile", headers=bearer(expired)).status_code == 401

    ghost = create_access_token({"sub": str(ObjectId())})
    assert client.get("/api/auth/profile", headers=bearer(ghost)).status_code == 401


def test_admin_route(client, user, admin):
    assert client.get("/api/auth/admin", headers=bearer(user["token"])).status_code == 403
    assert client.get("/api/auth/admin", headers=bearer(admin["token"])).status_code == 200
