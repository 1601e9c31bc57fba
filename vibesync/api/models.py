"""Pydantic models for remote API data."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ActiveUser(BaseModel):
    """A user currently online (active or away) according to the server."""

    handle: str
    one_liner: str | None = None
    status: str | None = None
    last_seen: str | None = None
    first_seen: str | None = None
    mood: str | None = None
    file: str | None = None
    branch: str | None = None
    repo: str | None = None
    note: str | None = None
    away_message: str | None = None

    @classmethod
    def from_server(cls, data: dict[str, Any]) -> ActiveUser:
        context = data.get("context") or {}
        return cls(
            handle=data.get("username") or data.get("handle") or "",
            one_liner=data.get("workingOn"),
            status=data.get("status"),
            last_seen=_as_str(data.get("lastSeen")),
            first_seen=_as_str(data.get("firstSeen")),
            mood=context.get("mood") or data.get("mood"),
            file=context.get("file"),
            branch=context.get("branch"),
            repo=context.get("repo"),
            note=context.get("note"),
            away_message=context.get("awayMessage"),
        )


class TokenVerification(BaseModel):
    """Outcome of a bearer token check."""

    valid: bool
    handle: str | None = None
    user_id: str | None = None
    github: str | None = None
    expires_at: str | None = None
    error: str | None = None


def _as_str(value: Any) -> str | None:
    return None if value is None else str(value)
