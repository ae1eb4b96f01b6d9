"""
Authenticated caller identity.

The JWT middleware builds one ``Caller`` per request; ``require_auth`` hands
it to the view, and the view passes it on to the service layer explicitly.
"""

from dataclasses import dataclass, field

SUPERUSER = "superuser"


@dataclass(frozen=True)
class Caller:
    user_id: int
    roles: frozenset = field(default_factory=frozenset)
    email: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    def has_role(self, *names: str) -> bool:
        """True if the caller holds any of ``names``. Superuser holds every role."""
        if SUPERUSER in self.roles:
            return True
        return any(name in self.roles for name in names)

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "email": self.email,
            "roles": sorted(self.roles),
        }
