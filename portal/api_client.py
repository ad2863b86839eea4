"""Async HTTP client for the parts access API.

Reads (actor, permissions, listings) are retried with exponential backoff
on transient failures; mutations are sent exactly once so an invitation is
never accepted or cancelled twice by the client.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import get_settings
from services.errors import TransientError, error_from_payload
from services.permission_registry import PermissionSet, permission_set_from_dict


@dataclass(frozen=True)
class Actor:
    id: int
    full_name: str
    email: str
    role: str
    company_id: int | None
    is_approved: bool
    email_verified: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Actor:
        return cls(
            id=data["id"],
            full_name=data.get("full_name", ""),
            email=data["email"],
            role=data["role"],
            company_id=data.get("company_id"),
            is_approved=bool(data.get("is_approved", False)),
            email_verified=bool(data.get("email_verified", True)),
        )


class AccessClient:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        read_retries: int | None = None,
        retry_max_wait: float | None = None,
        timeout: float = 10.0,
    ):
        settings = get_settings()
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.PORTAL_API_BASE_URL,
            transport=transport,
            timeout=timeout,
        )
        self._read_retries = max(read_retries or settings.PORTAL_READ_RETRIES, 1)
        self._retry_max_wait = (
            settings.PORTAL_RETRY_MAX_WAIT_SECONDS if retry_max_wait is None else retry_max_wait
        )
        self.access_token: str | None = None

    async def __aenter__(self) -> AccessClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method, path, json=json, params=params, headers=self._headers()
            )
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise TransientError(f"Network error: {e}") from e

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            detail = payload.get("detail", payload) if isinstance(payload, dict) else payload
            raise error_from_payload(response.status_code, detail)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def _read(self, path: str, params: dict | None = None) -> Any:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(TransientError),
            stop=stop_after_attempt(self._read_retries),
            wait=wait_exponential(multiplier=0.5, max=self._retry_max_wait),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(f"Retrying GET {path} (attempt {attempt.retry_state.attempt_number})")
                return await self._send("GET", path, params=params)

    # --- identity ---

    async def get_current_actor(self) -> Actor:
        data = await self._read("/api/auth/me")
        return Actor.from_dict(data["user"])

    async def get_permissions(self) -> PermissionSet:
        return permission_set_from_dict(await self._read("/api/user/permissions"))

    async def login(self, email: str, password: str) -> Actor:
        data = await self._send("POST", "/api/auth/login", json={"email": email, "password": password})
        self.access_token = data.get("access_token")
        return Actor.from_dict(data["user"])

    async def logout(self) -> None:
        try:
            await self._send("POST", "/api/auth/logout")
        finally:
            self.access_token = None
            self._client.cookies.clear()

    async def register(self, **details: Any) -> dict:
        data = await self._send("POST", "/api/auth/register", json=details)
        session = data.get("session")
        if session:
            self.access_token = session.get("access_token")
        return data

    # --- invitations ---

    async def list_invitations(self, status: str | None = None) -> list[dict]:
        params = {"status": status} if status else None
        return await self._read("/api/pm/invitations", params=params)

    async def list_my_invitations(self, include_closed: bool = False) -> list[dict]:
        params = {"include_closed": "true"} if include_closed else None
        return await self._read("/api/tradie/invitations", params=params)

    async def issue_invitation(
        self,
        email: str,
        phone: str | None = None,
        personal_message: str | None = None,
    ) -> dict:
        body = {"email": email, "phone": phone, "personal_message": personal_message}
        return await self._send("POST", "/api/pm/invitations", json=body)

    async def resend_invitation(self, invitation_id: int) -> dict:
        return await self._send("POST", f"/api/pm/invitations/{invitation_id}/resend")

    async def cancel_invitation(self, invitation_id: int) -> dict:
        return await self._send("POST", f"/api/pm/invitations/{invitation_id}/cancel")

    async def verify_invitation(self, token: str) -> dict:
        return await self._read(f"/api/invitations/verify/{token}")

    async def accept_invitation(self, token: str) -> dict:
        return await self._send("POST", "/api/invitations/accept", json={"token": token})

    async def reject_invitation(self, token: str) -> dict:
        return await self._send("POST", "/api/invitations/reject", json={"token": token})

    async def accept_invitation_by_id(self, invitation_id: int) -> dict:
        return await self._send("POST", f"/api/tradie/invitations/{invitation_id}/accept")

    async def reject_invitation_by_id(self, invitation_id: int) -> dict:
        return await self._send("POST", f"/api/tradie/invitations/{invitation_id}/reject")

    async def revoke_membership(self, tradie_id: int, reason: str | None = None) -> dict:
        return await self._send("POST", f"/api/pm/tradies/{tradie_id}/remove", json={"reason": reason})

    async def approve_member(self, tradie_id: int) -> dict:
        return await self._send("POST", f"/api/pm/tradies/{tradie_id}/approve")

    # --- notifications ---

    async def list_notifications(self, **filters: Any) -> dict:
        params = {k: v for k, v in filters.items() if v is not None}
        return await self._read("/api/notifications", params=params)

    async def unread_count(self) -> int:
        return (await self._read("/api/notifications/unread/count"))["count"]

    async def mark_notification_read(self, notification_id: int) -> dict:
        return await self._send("POST", f"/api/notifications/{notification_id}/read")

    async def mark_all_read(self) -> int:
        return (await self._send("POST", "/api/notifications/read-all"))["updated"]
