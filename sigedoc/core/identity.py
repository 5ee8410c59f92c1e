"""
Caller identity passed explicitly into every workflow call.

Built once per request by the JWT middleware (``g.identity``) and handed to
services as an argument; services never read ambient request state to find
out who is acting.
"""

from dataclasses import dataclass, field

from sigedoc.services.permission_service import Capability, to_capabilities


@dataclass(frozen=True)
class Identity:
    user_id: int
    home_area_id: int | None
    permission_bits: int = 0
    role_id: int | None = None
    display_name: str = ""
    capabilities: frozenset = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "capabilities", to_capabilities(self.permission_bits))

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @property
    def label(self) -> str:
        return self.display_name or f"user:{self.user_id}"

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "home_area_id": self.home_area_id,
            "role_id": self.role_id,
            "permission_bits": self.permission_bits,
            "capabilities": sorted(c.name for c in self.capabilities),
        }
