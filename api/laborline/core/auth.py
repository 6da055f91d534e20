from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class PrincipalType(str, Enum):
    HUMAN = "human"
    SERVICE = "service"


@dataclass(slots=True)
class Principal:
    principal_type: PrincipalType
    subject: str
    scopes: set[str]
    role: str | None = None
    email: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)

    def require_scopes(self, required: set[str]) -> None:
        missing = required - self.scopes
        if missing:
            raise PermissionError(f"missing required scopes: {sorted(missing)}")

    def jwt_claims(self) -> dict[str, Any]:
        """Claims exposed to row level security policies as request.jwt.claims."""
        claims = dict(self.claims)
        claims["sub"] = self.subject
        claims["role"] = "authenticated"
        if self.email:
            claims["email"] = self.email
        return claims
