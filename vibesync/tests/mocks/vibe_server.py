"""Mock vibe backend for integration testing."""

import itertools
from datetime import UTC, datetime

from aiohttp import web


def _now() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class MockVibeServer:
    """Mock vibe API server covering presence, messages, auth and sessions."""

    def __init__(self) -> None:
        self.messages: list[dict] = []  # server-side message store, oldest first
        self.read_ids: set[str] = set()
        self.registrations: list[dict] = []
        self.heartbeats: list[dict] = []  # {"body": ..., "authorization": ...}
        self.typing_events: list[dict] = []
        self.message_posts: list[dict] = []  # {"body": ..., "authorization": ...}
        self.saved_sessions: list[dict] = []
        self.request_log: list[tuple[str, str]] = []  # (method, path)

        # token -> handle, for sender derivation and /api/auth/verify
        self.tokens: dict[str, str] = {}
        # What /api/presence register returns
        self.register_token: str | None = "T"
        self.register_session_id: str | None = "S"
        self.register_fails = False
        self.require_auth = False

        self.active_users: list[dict] = []
        self.away_users: list[dict] = []
        self.typing_users: list[str] = []

        # Queue of (status, body) tuples per path; the next request to that path
        # pops and returns the queued response instead of handling it
        self._response_queue: dict[str, list[tuple[int, dict]]] = {}
        self._ids = itertools.count(1)

        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self.port: int | None = None

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port}"

    def queue_error(self, path: str, status: int, body: dict) -> None:
        """Queue a specific HTTP response for the next request to path."""
        self._response_queue.setdefault(path, []).append((status, body))

    def seed_message(
        self,
        sender: str,
        recipient: str,
        body: str,
        created_at: str | None = None,
        payload: dict | None = None,
    ) -> dict:
        """Store a message as if another client had sent it."""
        n = next(self._ids)
        message = {
            "id": f"msg_{n}",
            "thread_id": self._thread_id(sender, recipient),
            "from": sender,
            "to": recipient,
            "body": body,
            "created_at": created_at or _now(),
        }
        if payload is not None:
            message["payload"] = payload
        self.messages.append(message)
        return message

    def server_ids(self) -> list[str]:
        return [m["id"] for m in self.messages]

    @staticmethod
    def _thread_id(a: str, b: str) -> str:
        first, second = sorted((a, b))
        return f"thr_{first}_{second}"

    async def start(self, port: int = 0) -> None:
        """Start the mock server on specified port (0 = random available port)."""
        self._app = web.Application()
        self._app.router.add_post("/api/presence", self._handle_presence_post)
        self._app.router.add_get("/api/presence", self._handle_presence_get)
        self._app.router.add_post("/api/messages", self._handle_send)
        self._app.router.add_get("/api/messages", self._handle_messages_get)
        self._app.router.add_post("/api/auth/verify", self._handle_verify)
        self._app.router.add_post("/api/sessions", self._handle_save_session)
        self._app.router.add_get("/plain", self._handle_plain)
        self._app.router.add_get("/list", self._handle_list)

        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, "localhost", port)
        await self._site.start()

        # Get the actual port (important when port=0)
        sock = self._site._server.sockets[0]  # type: ignore[union-attr]
        self.port = sock.getsockname()[1]

    async def stop(self) -> None:
        """Stop the mock server."""
        if self._runner:
            await self._runner.cleanup()

    # --- Helpers ---

    def _queued(self, path: str) -> web.Response | None:
        queue = self._response_queue.get(path)
        if queue:
            status, body = queue.pop(0)
            return web.json_response(body, status=status)
        return None

    def _bearer(self, request: web.Request) -> str | None:
        header = request.headers.get("Authorization", "")
        if header.startswith("Bearer "):
            return header.removeprefix("Bearer ")
        return None

    # --- Handlers ---

    async def _handle_presence_post(self, request: web.Request) -> web.Response:
        self.request_log.append(("POST", "/api/presence"))
        if queued := self._queued("/api/presence"):
            return queued
        data = await request.json()
        authorization = request.headers.get("Authorization")

        if data.get("action") == "register":
            self.registrations.append({"body": data, "authorization": authorization})
            if self.register_fails:
                return web.json_response({"success": False, "error": "unavailable"}, status=503)
            if self.register_token:
                self.tokens[self.register_token] = data.get("username", "")
                return web.json_response(
                    {
                        "success": True,
                        "token": self.register_token,
                        "sessionId": self.register_session_id,
                    }
                )
            return web.json_response({"success": True})

        if "typingTo" in data:
            self.typing_events.append({"body": data, "authorization": authorization})
            return web.json_response({"success": True})

        self.heartbeats.append({"body": data, "authorization": authorization})
        return web.json_response({"success": True})

    async def _handle_presence_get(self, request: web.Request) -> web.Response:
        self.request_log.append(("GET", "/api/presence"))
        if queued := self._queued("/api/presence"):
            return queued
        if request.query.get("typing") == "true":
            return web.json_response({"typingUsers": self.typing_users})
        return web.json_response({"active": self.active_users, "away": self.away_users})

    async def _handle_send(self, request: web.Request) -> web.Response:
        self.request_log.append(("POST", "/api/messages"))
        data = await request.json()
        token = self._bearer(request)
        self.message_posts.append(
            {"body": data, "authorization": request.headers.get("Authorization")}
        )
        if queued := self._queued("/api/messages"):
            return queued
        if self.require_auth and token not in self.tokens:
            return web.json_response({"error": "Unauthorized"}, status=401)

        sender = self.tokens.get(token or "") or data.get("from") or "unknown"
        body = data.get("body") or data.get("text", "")
        message = self.seed_message(sender, data["to"], body, payload=data.get("payload"))
        return web.json_response({"success": True, "message": message})

    async def _handle_messages_get(self, request: web.Request) -> web.Response:
        self.request_log.append(("GET", "/api/messages"))
        if queued := self._queued("/api/messages"):
            return queued
        user = request.query.get("user", "")
        peer = request.query.get("with")

        if peer:
            thread = [
                m
                for m in self.messages
                if {m["from"], m["to"]} == {user, peer} and m["from"] != m["to"]
            ]
            # Fetching a thread marks it read for the requesting user
            for m in thread:
                if m["to"] == user:
                    self.read_ids.add(m["id"])
            return web.json_response({"messages": thread})

        threads: dict[str, dict] = {}
        total_unread = 0
        for m in self.messages:
            if user not in (m["from"], m["to"]):
                continue
            partner = m["to"] if m["from"] == user else m["from"]
            entry = threads.setdefault(
                partner,
                {"id": self._thread_id(user, partner), "with": partner, "unread": 0},
            )
            entry["last_message"] = m
            if m["to"] == user and m["id"] not in self.read_ids:
                entry["unread"] += 1
                total_unread += 1
        ordered = sorted(
            threads.values(), key=lambda t: t["last_message"]["created_at"], reverse=True
        )
        return web.json_response({"threads": ordered, "unread": total_unread})

    async def _handle_verify(self, request: web.Request) -> web.Response:
        self.request_log.append(("POST", "/api/auth/verify"))
        token = self._bearer(request)
        if token and token in self.tokens:
            return web.json_response(
                {"valid": True, "handle": self.tokens[token], "userId": 42, "expiresAt": None}
            )
        return web.json_response({"valid": False, "error": "Invalid token"}, status=401)

    async def _handle_save_session(self, request: web.Request) -> web.Response:
        self.request_log.append(("POST", "/api/sessions"))
        if queued := self._queued("/api/sessions"):
            return queued
        data = await request.json()
        self.saved_sessions.append(data)
        session_id = f"ses_{len(self.saved_sessions)}"
        return web.json_response({"success": True, "session": {"id": session_id}})

    async def _handle_plain(self, request: web.Request) -> web.Response:
        return web.Response(text="ok")

    async def _handle_list(self, request: web.Request) -> web.Response:
        return web.json_response([1, 2, 3])
