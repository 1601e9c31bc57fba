"""HTTP/JSON client for the vibe backend."""

from vibesync.api.client import ApiClient
from vibesync.api.models import ActiveUser, TokenVerification

__all__ = [
    "ActiveUser",
    "ApiClient",
    "TokenVerification",
]
