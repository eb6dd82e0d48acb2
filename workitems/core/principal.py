"""
Authenticated principal.

Produced by the authentication layer (JWT middleware) and passed
explicitly into every service call. Services never read the principal
from ``flask.g``.
"""

from dataclasses import dataclass, field

EXECUTIVE_ROLES = frozenset({"CEO", "President"})


@dataclass(frozen=True)
class Principal:
    id: str
    email: str
    tenant_id: str
    roles: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_claims(cls, claims: dict) -> "Principal":
        """Build a principal from decoded access-token claims."""
        return cls(
            id=str(claims["sub"]),
            email=claims.get("email", ""),
            tenant_id=str(claims["tenant_id"]),
            roles=frozenset(claims.get("roles") or ()),
        )

    def has_any_role(self, roles) -> bool:
        return bool(self.roles & set(roles))

    @property
    def is_executive(self) -> bool:
        return self.has_any_role(EXECUTIVE_ROLES)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "tenant_id": self.tenant_id,
            "roles": sorted(self.roles),
        }
