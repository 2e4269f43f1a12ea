from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError

import database
import main
from database import get_db


def test_error_body_shape(client):
    res = client.get("/api/laptops/0123456789abcdef01234567")
    assert res.status_code == 404
    body = res.json()
    assert body["success"] is False
    assert body["error"] == "Not Found"
    assert body["statusCode"] == 404
    assert body["message"].startswith("Laptop not found")


def test_request_validation_is_400(client, user):
    res = client.post("/api/auth/login", json={"email": "jane@example.com"})
    assert res.status_code == 400
    assert res.json()["error"] == "Validation Error"
    assert "password" in res.json()["message"]


def test_database_not_configured(monkeypatch):
    monkeypatch.setattr(database, "db", None)
    main.app.dependency_overrides.clear()
    res = TestClient(main.app).get("/api/laptops")
    assert res.status_code == 503
    assert res.json()["error"] == "Database connection error"


def test_database_unreachable():
    def unreachable():
        raise ServerSelectionTimeoutError("no servers")

    main.app.dependency_overrides[get_db] = unreachable
    try:
        res = TestClient(main.app).get("/api/laptops")
    finally:
        main.app.dependency_overrides.clear()
    assert res.status_code == 503


def test_unhandled_error_is_500_with_stack():
    def broken():
        raise RuntimeError("boom")

    main.app.dependency_overrides[get_db] = broken
    try:
        res = TestClient(main.app, raise_server_exceptions=False).get("/api/laptops")
    finally:
        main.app.dependency_overrides.clear()
    body = res.json()
    assert res.status_code == 500
    assert body["error"] == "Server Error"
    assert body["message"] == "boom"
    assert "RuntimeError" in body["stack"]


def test_root_and_health(client):
    assert client.get("/").json()["message"] == "Welcome to TechHaven API"
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["timestamp"].endswith("+00:00")
    assert "database" in body
