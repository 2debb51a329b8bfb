"""Caller identity and request metadata handed to services by the HTTP layer."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

ADMIN_ROLE = "admin"
SELLER_ROLE = "seller"


@dataclass(frozen=True)
class Identity:
    """Authenticated principal as supplied by the external auth layer."""

    user_id: Optional[int]
    role: str

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == ADMIN_ROLE


@dataclass(frozen=True)
class RequestMetadata:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
