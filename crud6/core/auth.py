"""Identity and capability checks used by the request pipeline."""
from typing import FrozenSet, Optional, Protocol

from fastapi import Header
from pydantic import BaseModel, Field

WILDCARD = "*"


class Identity(BaseModel):
    id: Optional[str] = None
    capabilities: FrozenSet[str] = Field(default_factory=frozenset)


class CapabilityChecker(Protocol):
    def check(self, identity: Identity, capability: str) -> bool: ...


class StaticCapabilityChecker:
    """Grant what the identity lists, with ``*`` granting everything."""

    def check(self, identity: Identity, capability: str) -> bool:
        return WILDCARD in identity.capabilities or capability in identity.capabilities


def get_identity(
    x_user_id: Optional[str] = Header(None),
    x_user_capabilities: Optional[str] = Header(None),
) -> Identity:
    """Get the caller identity from request headers."""
    capabilities = frozenset(
        value.strip() for value in (x_user_capabilities or "").split(",") if value.strip()
    )
    return Identity(id=x_user_id, capabilities=capabilities)


def get_capability_checker() -> CapabilityChecker:
    return StaticCapabilityChecker()
