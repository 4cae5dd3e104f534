"""
Python client for the FoodShare REST API.

The session is injectable: anything with ``requests.Session``'s
``get/post/put/delete`` signature works, including FastAPI's ``TestClient``.
"""

from __future__ import annotations

from typing import Any, Optional

import requests

REQUEST_TIMEOUT = 30  # seconds


class FoodShareApiError(Exception):
    """Raised when the API answers with ``success: false``."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class FoodShareClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        api_prefix: str = "/api",
        session: Any = None,
        token: Optional[str] = None,
    ):
        self.base_url = base_url.rstrip("/") + api_prefix
        self.session = session if session is not None else requests.Session()
        self.token = token
        self.user: Optional[dict] = None

    def _request(self, method: str, path: str, **kwargs) -> dict:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if isinstance(self.session, requests.Session):
            kwargs.setdefault("timeout", REQUEST_TIMEOUT)
        response = getattr(self.session, method)(
            f"{self.base_url}{path}", headers=headers, **kwargs
        )
        try:
            payload = response.json()
        except ValueError:
            raise FoodShareApiError(response.status_code, response.text or "Invalid response")
        if not payload.get("success"):
            raise FoodShareApiError(
                response.status_code, payload.get("message") or "Request failed"
            )
        return payload

    def _authenticate(self, payload: dict) -> dict:
        self.token = payload["token"]
        self.user = payload["user"]
        return self.user

    # Auth

    def register(self, **user_fields) -> dict:
        """Register and keep the issued token for later calls."""
        return self._authenticate(self._request("post", "/auth/register", json=user_fields))

    def login(self, email: str, password: str) -> dict:
        return self._authenticate(
            self._request("post", "/auth/login", json={"email": email, "password": password})
        )

    def logout(self) -> None:
        self.token = None
        self.user = None

    def me(self) -> dict:
        return self._request("get", "/auth/me")["data"]

    # Listings

    def list_listings(self, **params) -> dict:
        """Return the full envelope so ``count`` and ``pagination`` are available."""
        return self._request("get", "/food-listings", params=params)

    def get_listing(self, listing_id: str) -> dict:
        return self._request("get", f"/food-listings/{listing_id}")["data"]

    def create_listing(self, listing: dict) -> dict:
        return self._request("post", "/food-listings", json=listing)["data"]

    def update_listing(self, listing_id: str, changes: dict) -> dict:
        return self._request("put", f"/food-listings/{listing_id}", json=changes)["data"]

    def delete_listing(self, listing_id: str) -> None:
        self._request("delete", f"/food-listings/{listing_id}")

    def reserve_listing(self, listing_id: str) -> dict:
        return self._request("put", f"/food-listings/{listing_id}/reserve")["data"]

    # Donations

    def list_donations(self) -> list[dict]:
        return self._request("get", "/donations")["data"]

    def create_donation(self, donation: dict) -> dict:
        return self._request("post", "/donations", json=donation)["data"]

    # Users

    def get_user(self, user_id: str) -> dict:
        return self._request("get", f"/users/{user_id}")["data"]
