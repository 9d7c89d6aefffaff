"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, almost no logic). The store does
the persistence work, the service does the orchestration; these classes only
own domain shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


def normalize_key(value: str | None) -> str:
    """Return the case-insensitive comparison form of an email, username, or role name."""
    return (value or "").strip().lower()


@dataclass
class User:
    """A local account.

    roles is filled in by read paths that resolve assignments (list_all,
    get_user). It is never persisted on the user row -- the assignment table
    is the only source of truth for role membership.

    version is the optimistic-concurrency token. Every committed write to the
    row increments it; a write planned against a stale version is rejected.
    """

    username: str
    email: str
    password_hash: str
    id: int | None = None
    is_active: bool = True
    created_at: str | None = None
    version: int = 1
    roles: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Role:
    name: str
    id: int | None = None


@dataclass(frozen=True)
class Assignment:
    """A single user-to-role membership row."""

    user_id: int
    role_id: int


@dataclass
class UserUpdate:
    """Input shape for IdentityService.update_user.

    Field semantics:
      None on username / email / password / is_active -> leave unchanged.
      roles is None  -> assignments are not touched at all.
      roles == []    -> every assignment is removed.
    """

    id: int
    email: str | None = None
    password: str | None = None
    username: str | None = None
    is_active: bool | None = None
    roles: list[str] | None = None


@dataclass(frozen=True)
class Identity:
    """The verified caller produced by a successful authentication."""

    user_id: int
    name: str
    roles: tuple[str, ...] = ()

    def has_role(self, role_name: str) -> bool:
        wanted = normalize_key(role_name)
        return any(normalize_key(r) == wanted for r in self.roles)

    def claims(self) -> list[tuple[str, str]]:
        """Return the principal's claims: one name claim, one role claim per distinct role."""
        result = [("name", self.name)]
        seen: set[str] = set()
        for role in self.roles:
            key = normalize_key(role)
            if key and key not in seen:
                seen.add(key)
                result.append(("role", role))
        return result
