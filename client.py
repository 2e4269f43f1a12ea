"""
Python client for the TechHaven REST API.

Credentials are passed per call (``token=...``) instead of being stored on the
client, so one client instance can serve several users::

    api = TechHavenClient("http://localhost:8000")
    token = api.login("jane@example.com", "secret1")["token"]
    api.create_order(order, token=token)
"""
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class ApiClientError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, payload: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload or {}


class TechHavenClient:
    def __init__(self, base_url: str = "http://localhost:8000", http_client: Optional[httpx.Client] = None,
                 timeout: float = 10.0):
        self.http = http_client or httpx.Client(base_url=base_url, timeout=timeout)

    def close(self):
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        logger.debug("%s %s", method, path)
        try:
            response = self.http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise ApiClientError(f"Request to {path} failed: {e}")

        try:
            data = response.json()
        except ValueError:
            data = {"message": response.text}

        if response.is_error:
            message = data.get("message") if isinstance(data, dict) else None
            logger.info("%s %s failed with %s: %s", method, path, response.status_code, message)
            raise ApiClientError(message or f"HTTP {response.status_code}", response.status_code, data)
        return data

    # Auth
    def register(self, name: str, email: str, password: str) -> dict:
        return self._request("POST", "/api/auth/register", json={"name": name, "email": email, "password": password})

    def login(self, email: str, password: str) -> dict:
        return self._request("POST", "/api/auth/login", json={"email": email, "password": password})

    def profile(self, token: str) -> dict:
        return self._request("GET", "/api/auth/profile", token=token)

    # Laptops
    def list_laptops(self, params: Optional[Dict[str, Any]] = None) -> dict:
        return self._request("GET", "/api/laptops", params=params)

    def get_laptop(self, laptop_id: str) -> dict:
        return self._request("GET", f"/api/laptops/{laptop_id}")

    def get_laptop_by_slug(self, slug: str) -> dict:
        return self._request("GET", f"/api/laptops/slug/{slug}")

    def featured_laptops(self, limit: int = 8) -> list:
        return self._request("GET", "/api/laptops/featured", params={"limit": limit})

    def top_rated_laptops(self, limit: int = 5) -> list:
        return self._request("GET", "/api/laptops/top-rated", params={"limit": limit})

    def create_laptop(self, data: dict, token: str) -> dict:
        return self._request("POST", "/api/laptops", token=token, json=data)

    def update_laptop(self, laptop_id: str, data: dict, token: str) -> dict:
        return self._request("PUT", f"/api/laptops/{laptop_id}", token=token, json=data)

    def delete_laptop(self, laptop_id: str, token: str) -> dict:
        return self._request("DELETE", f"/api/laptops/{laptop_id}", token=token)

    # Categories
    def list_categories(self, params: Optional[Dict[str, Any]] = None) -> dict:
        return self._request("GET", "/api/categories", params=params)

    def get_category(self, category_id: str) -> dict:
        return self._request("GET", f"/api/categories/{category_id}")

    def create_category(self, data: dict, token: str) -> dict:
        return self._request("POST", "/api/categories", token=token, json=data)

    def update_category(self, category_id: str, data: dict, token: str) -> dict:
        return self._request("PUT", f"/api/categories/{category_id}", token=token, json=data)

    def delete_category(self, category_id: str, token: str) -> dict:
        return self._request("DELETE", f"/api/categories/{category_id}", token=token)

    # Reviews
    def laptop_reviews(self, laptop_id: str) -> dict:
        return self._request("GET", f"/api/laptops/{laptop_id}/reviews")

    def add_review(self, laptop_id: str, data: dict, token: str) -> dict:
        return self._request("POST", f"/api/laptops/{laptop_id}/reviews", token=token, json=data)

    def delete_review(self, review_id: str, token: str) -> dict:
        return self._request("DELETE", f"/api/reviews/{review_id}", token=token)

    # Cart
    def get_cart(self, token: str) -> dict:
        return self._request("GET", "/api/cart", token=token)

    def add_to_cart(self, laptop_id: str, token: str, quantity: int = 1,
                    warranty_option: Optional[dict] = None) -> dict:
        body = {"laptop_id": laptop_id, "quantity": quantity}
        if warranty_option:
            body["warranty_option"] = warranty_option
        return self._request("POST", "/api/cart", token=token, json=body)

    def update_cart_item(self, item_id: str, token: str, quantity: Optional[int] = None,
                         warranty_option: Optional[dict] = None) -> dict:
        body = {k: v for k, v in (("quantity", quantity), ("warranty_option", warranty_option)) if v is not None}
        return self._request("PUT", f"/api/cart/{item_id}", token=token, json=body)

    def remove_cart_item(self, item_id: str, token: str) -> dict:
        return self._request("DELETE", f"/api/cart/{item_id}", token=token)

    def clear_cart(self, token: str) -> dict:
        return self._request("DELETE", "/api/cart", token=token)

    # Orders
    def my_orders(self, token: str) -> list:
        return self._request("GET", "/api/orders", token=token)

    def get_order(self, order_id: str, token: str) -> dict:
        return self._request("GET", f"/api/orders/{order_id}", token=token)

    def create_order(self, order: dict, token: str) -> dict:
        return self._request("POST", "/api/orders", token=token, json=order)

    def pay_order(self, order_id: str, payment_result: dict, token: str) -> dict:
        return self._request("PUT", f"/api/orders/{order_id}/pay", token=token, json=payment_result)

    def cancel_order(self, order_id: str, token: str) -> dict:
        return self._request("PUT", f"/api/orders/{order_id}/cancel", token=token)

    def all_orders(self, token: str, params: Optional[Dict[str, Any]] = None) -> dict:
        return self._request("GET", "/api/orders/admin", token=token, params=params)

    def update_order_status(self, order_id: str, status: str, token: str) -> dict:
        return self._request("PUT", f"/api/orders/{order_id}/status", token=token, json={"status": status})

    def update_shipping(self, order_id: str, data: dict, token: str) -> dict:
        return self._request("PUT", f"/api/orders/{order_id}/shipping", token=token, json=data)

    def delete_order(self, order_id: str, token: str) -> dict:
        return self._request("DELETE", f"/api/orders/{order_id}", token=token)

    def order_count(self, token: str) -> int:
        return self._request("GET", "/api/orders/count", token=token)["count"]

    def total_sales(self, token: str) -> float:
        return self._request("GET", "/api/orders/total-sales", token=token)["total_sales"]
