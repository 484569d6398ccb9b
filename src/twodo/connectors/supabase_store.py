# src/twodo/connectors/supabase_store.py

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..core.errors import StoreError
from ..tasks.task_models import UserProfile

logger = logging.getLogger(__name__)

PROFILES_COLLECTION = "profiles"


def _filter_value(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"is.{str(value).lower()}"
    return f"eq.{value}"


def error_from_response(resp: httpx.Response) -> StoreError:
    """Map a PostgREST / GoTrue error body ({code, message, details, hint}) to StoreError."""
    try:
        data = resp.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        message = (
            data.get("message")
            or data.get("msg")
            or data.get("error_description")
            or data.get("error")
            or resp.text
        )
        code = data.get("code") or data.get("error_code") or resp.status_code
        return StoreError(str(message), code=str(code), details=data.get("details") or data.get("hint"))

    return StoreError(resp.text or resp.reason_phrase, code=str(resp.status_code))


class SupabaseTaskStore:
    """
    RemoteStore over the Supabase REST API (PostgREST + GoTrue).

    Row-level security on the server scopes every query to the signed-in user,
    so the access token obtained by sign_in_with_password() matters for every call.
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        timeout: float = 10.0,
        access_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url or not anon_key:
            raise ValueError("Supabase url and anon key are required")
        self.base_url = url.rstrip("/")
        self.anon_key = anon_key
        self.access_token = access_token
        self.user_id: str | None = None
        self._auth_user: dict[str, Any] = {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"apikey": anon_key},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---- low-level helpers ----

    def auth_headers(self) -> dict[str, str]:
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token or self.anon_key}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        merged = self.auth_headers()
        if headers:
            merged.update(headers)
        try:
            resp = await self._client.request(method, path, params=params, json=json, headers=merged)
        except httpx.HTTPError as e:
            raise StoreError(str(e) or type(e).__name__, code="network") from e

        if resp.is_error:
            err = error_from_response(resp)
            logger.debug("%s %s -> %s %s", method, path, resp.status_code, err.message)
            raise err
        return resp

    @staticmethod
    def _rows(resp: httpx.Response) -> list[dict[str, Any]]:
        if not resp.content:
            return []
        data = resp.json()
        if isinstance(data, list):
            return [r for r in data if isinstance(r, dict)]
        if isinstance(data, dict):
            return [data]
        return []

    # ---- RemoteStore port ----

    async def fetch(
        self,
        collection: str,
        *,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"select": "*"}
        for name, value in (filters or {}).items():
            params[name] = _filter_value(value)
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        resp = await self._request("GET", f"/rest/v1/{collection}", params=params)
        return self._rows(resp)

    async def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        resp = await self._request(
            "POST",
            f"/rest/v1/{collection}",
            json=record,
            headers={"Prefer": "return=representation"},
        )
        rows = self._rows(resp)
        if not rows:
            raise StoreError("insert returned no row", code="empty_response")
        return rows[0]

    async def update(self, collection: str, record_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        resp = await self._request(
            "PATCH",
            f"/rest/v1/{collection}",
            params={"id": f"eq.{record_id}"},
            json=patch,
            headers={"Prefer": "return=representation"},
        )
        rows = self._rows(resp)
        if not rows:
            raise StoreError(f"{collection} {record_id} not found", code="not_found")
        return rows[0]

    async def delete(self, collection: str, record_id: str) -> None:
        await self._request("DELETE", f"/rest/v1/{collection}", params={"id": f"eq.{record_id}"})

    # ---- auth / profile ----

    async def sign_in_with_password(self, email: str, password: str) -> str:
        """Password grant; keeps the access token for subsequent calls. Returns the user id."""
        resp = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        data = resp.json()
        token = data.get("access_token")
        user = data.get("user") or {}
        if not token or not user.get("id"):
            raise StoreError("Missing token or user id in login response", code="auth")
        self.access_token = str(token)
        self.user_id = str(user["id"])
        self._auth_user = user
        logger.info("Signed in to Supabase user=%s", self.user_id)
        return self.user_id

    async def fetch_profile(self, user_id: str) -> UserProfile:
        """
        Load the profile row and the linked partner's name.

        Falls back to auth metadata when the profile row does not exist yet
        (e.g. the signup trigger has not run).
        """
        email = str(self._auth_user.get("email") or "")
        metadata = self._auth_user.get("user_metadata") or {}

        rows = await self.fetch(PROFILES_COLLECTION, filters={"id": user_id})
        if not rows:
            logger.warning("Profile not found for user=%s, using auth metadata", user_id)
            return UserProfile(
                id=user_id,
                name=str(metadata.get("full_name") or (email.split("@")[0] if email else "User")),
                email=email,
            )

        profile = rows[0]
        partner_id = profile.get("partner_id") or None
        partner_name = None
        if partner_id:
            try:
                partners = await self.fetch(PROFILES_COLLECTION, filters={"id": partner_id})
                if partners:
                    partner_name = partners[0].get("full_name")
            except StoreError:
                logger.warning("Partner profile lookup failed partner=%s", partner_id, exc_info=True)

        profile_email = str(profile.get("email") or email)
        return UserProfile(
            id=user_id,
            name=str(profile.get("full_name") or (profile_email.split("@")[0] if profile_email else "User")),
            email=profile_email,
            partner_id=str(partner_id) if partner_id else None,
            partner_name=partner_name,
        )

    async def link_partner_by_email(self, email: str) -> tuple[bool, str]:
        resp = await self._request(
            "POST",
            "/rest/v1/rpc/link_partner_by_email",
            json={"partner_email": email.lower().strip()},
        )
        data = resp.json() if resp.content else {}
        if not isinstance(data, dict):
            return False, "Unexpected response"
        return bool(data.get("success")), str(data.get("message") or "")
