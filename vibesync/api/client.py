"""Vibe backend API client."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from vibesync import __version__
from vibesync.api.models import ActiveUser, TokenVerification
from vibesync.constants import (
    DEFAULT_API_URL,
    DEFAULT_SESSION_VISIBILITY,
    REQUEST_TIMEOUT,
    USER_AGENT_PREFIX,
)
from vibesync.identity import ConfigStore

logger = logging.getLogger(__name__)

PRESENCE_PATH = "/api/presence"
MESSAGES_PATH = "/api/messages"
VERIFY_PATH = "/api/auth/verify"
SESSIONS_PATH = "/api/sessions"


def _failure(error: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "error": error, **extra}


class ApiClient:
    """JSON-over-HTTP client for the vibe backend.

    Every call resolves to a dict. Transport problems never raise: they come
    back as ``{"success": False, "error": ..., "statusCode"|"timeout"|"network": ...}``
    so the caller decides what a failure means. There are no retries here.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        base_url: str = DEFAULT_API_URL,
        *,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config_store: Source of the bearer token, read on every request
            base_url: Server base URL (no trailing slash)
            timeout: Default per-request timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self._config_store = config_store
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={
                "Content-Type": "application/json",
                "User-Agent": f"{USER_AGENT_PREFIX}/{__version__}",
            },
            transport=transport,
        )

    async def request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        *,
        params: dict[str, Any] | None = None,
        token: str | None = None,
        timeout: float | None = None,
        auth: bool = True,
    ) -> dict[str, Any]:
        """
        Issue one request and normalize the outcome.

        Args:
            method: HTTP method
            path: Path relative to the base URL
            body: Optional JSON body
            params: Optional query parameters
            token: Bearer token override for this call
            timeout: Per-request timeout override in seconds
            auth: Attach the bearer token (override or stored) when True

        Returns:
            Parsed JSON object; ``{"data": [...]}`` for a JSON array,
            ``{"raw": text}`` for a non-JSON success, or a failure record
        """
        headers: dict[str, str] = {}
        if auth:
            bearer = token or self._config_store.get_auth_token()
            if bearer:
                headers["Authorization"] = f"Bearer {bearer}"

        try:
            resp = await self._http.request(
                method,
                path,
                json=body,
                params=params,
                headers=headers,
                timeout=timeout if timeout is not None else self._timeout,
            )
        except httpx.TimeoutException:
            logger.warning("%s %s timed out", method, path)
            return _failure("Request timeout", timeout=True)
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            return _failure(str(e) or type(e).__name__, network=True)

        if resp.status_code >= 400:
            error = f"HTTP {resp.status_code}"
            try:
                data = resp.json()
            except ValueError:
                data = None
            if isinstance(data, dict) and data.get("error"):
                error = str(data["error"])
            logger.debug("%s %s -> %d: %s", method, path, resp.status_code, error)
            failure = _failure(error, statusCode=resp.status_code)
            if isinstance(data, dict) and data.get("message"):
                failure["message"] = data["message"]
            return failure

        try:
            data = resp.json()
        except ValueError:
            return {"raw": resp.text}
        if isinstance(data, dict):
            return data
        return {"data": data}

    # --- Presence ---

    async def register_session(self, handle: str) -> dict[str, Any]:
        """Register this process for presence. Sent without a token."""
        result = await self.request(
            "POST", PRESENCE_PATH, {"action": "register", "username": handle}, auth=False
        )
        if result.get("success"):
            logger.info("Registered @%s (session %s)", handle, result.get("sessionId"))
        return result

    async def heartbeat(
        self,
        handle: str,
        one_liner: str | None,
        context: dict[str, Any] | None = None,
        source: str | None = None,
    ) -> dict[str, Any]:
        """Publish liveness. The server reads the sender from the token when there is one."""
        payload: dict[str, Any] = {"workingOn": one_liner}
        if not self._config_store.get_auth_token():
            payload["username"] = handle
        if context:
            payload["context"] = context
        if source:
            payload["source"] = source
        return await self.request("POST", PRESENCE_PATH, payload)

    async def send_typing_indicator(self, handle: str, to: str) -> dict[str, Any]:
        payload: dict[str, Any] = {"typingTo": to}
        if not self._config_store.get_auth_token():
            payload["username"] = handle
        return await self.request("POST", PRESENCE_PATH, payload)

    async def get_typing_users(self, handle: str) -> list[str]:
        """Handles currently typing to this user."""
        result = await self.request(
            "GET", PRESENCE_PATH, params={"user": handle, "typing": "true"}
        )
        users = result.get("typingUsers") or []
        return [
            u if isinstance(u, str) else str(u.get("username") or u.get("handle") or "")
            for u in users
            if u
        ]

    async def get_active_users(self) -> list[ActiveUser]:
        """Active and away users, in server order."""
        result = await self.request("GET", PRESENCE_PATH)
        users = [*(result.get("active") or []), *(result.get("away") or [])]
        return [ActiveUser.from_server(u) for u in users if isinstance(u, dict)]

    # --- Messages ---

    async def post_message(
        self, to: str, body: str, payload: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Send a direct message. Older servers read 'text', newer ones 'body'."""
        data: dict[str, Any] = {"to": to, "body": body, "text": body}
        if payload is not None:
            data["payload"] = payload
        return await self.request("POST", MESSAGES_PATH, data)

    async def fetch_inbox(self, handle: str) -> dict[str, Any]:
        """Inbox threads: ``{"threads": [...], "unread": n}``."""
        return await self.request("GET", MESSAGES_PATH, params={"user": handle})

    async def fetch_thread(self, handle: str, peer: str) -> dict[str, Any]:
        """Messages between two handles: ``{"messages": [...]}``."""
        return await self.request("GET", MESSAGES_PATH, params={"user": handle, "with": peer})

    # --- Auth ---

    async def verify_token(self, token: str) -> TokenVerification:
        result = await self.request("POST", VERIFY_PATH, {}, token=token)
        if result.get("valid"):
            return TokenVerification(
                valid=True,
                handle=result.get("handle"),
                user_id=_opt_str(result.get("userId")),
                github=result.get("github"),
                expires_at=_opt_str(result.get("expiresAt")),
            )
        return TokenVerification(
            valid=False, error=result.get("error") or "Token verification failed"
        )

    # --- Sessions ---

    async def save_session(
        self,
        author_handle: str,
        title: str,
        description: str | None = None,
        visibility: str = DEFAULT_SESSION_VISIBILITY,
        from_broadcast: str | None = None,
    ) -> dict[str, Any]:
        """Publish a session record so others can replay or fork it."""
        data: dict[str, Any] = {
            "author_handle": author_handle,
            "title": title,
            "visibility": visibility,
        }
        if description:
            data["description"] = description
        if from_broadcast:
            data["fromBroadcast"] = from_broadcast
        return await self.request("POST", SESSIONS_PATH, data)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._http.aclose()


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)
