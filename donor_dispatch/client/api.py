import httpx
from typing import Optional
from pydantic import BaseModel

from donor_dispatch.client.config import get_client_settings
from donor_dispatch.services.errors import RegistrationFailure


class ApiResponse(BaseModel):
    """Application-level answer from the backend"""
    success: bool
    message: str = ""
    status_code: Optional[int] = None


class RegistrationApi:
    """HTTP client for the backend's device registration endpoints"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_client_settings()
        self.base_url = (base_url or settings.backend_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self.transport = transport

    async def _post(self, path: str, payload: dict) -> ApiResponse:
        """
        POST a JSON payload.

        Transport errors raise RegistrationFailure; HTTP error statuses come
        back as an unsuccessful ApiResponse.
        """
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            try:
                response = await client.post(path, json=payload)
            except httpx.HTTPError as e:
                raise RegistrationFailure(f"Request to {path} failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.is_success:
            return ApiResponse(
                success=bool(body.get("success")),
                message=str(body.get("message", "")),
                status_code=response.status_code,
            )
        return ApiResponse(
            success=False,
            message=str(body.get("detail") or f"HTTP {response.status_code}"),
            status_code=response.status_code,
        )

    async def save_token(
        self,
        user_id: str,
        token: str,
        device_id: str,
        is_logged_in: bool,
        device_type: str = "android",
        app_version: str = "1.0.0",
    ) -> ApiResponse:
        return await self._post("/api/notifications/save-token", {
            "userId": user_id,
            "token": token,
            "deviceId": device_id,
            "deviceType": device_type,
            "appVersion": app_version,
            "userType": "donor",
            "isLoggedIn": is_logged_in,
        })

    async def mark_logged_in(self, user_id: str, device_id: str) -> ApiResponse:
        return await self._post("/api/notifications/login", {"userId": user_id, "deviceId": device_id})

    async def mark_logged_out(self, user_id: str, device_id: str) -> ApiResponse:
        return await self._post("/api/notifications/logout", {"userId": user_id, "deviceId": device_id})
