"""
auth/roles.py -- Role-name normalization and the desired-vs-current diff.

Pure functions, no I/O. IdentityService feeds in the role names a user holds
now and the names the caller asked for; this module says which names to add
and which to remove. Resolving names to Role rows and writing Assignment rows
is the service's job, inside the same transaction as the user update.

All comparisons are case-insensitive on the trimmed name. The first spelling
seen wins for display, so "admin" and "Admin" collapse to a single entry.

Unknown role policy: a desired name that matches no existing Role is dropped
from to_add without an error. Roles are never created as a side effect of an
assignment request. Because the dropped name never reaches the database, a
second diff against the applied state is empty -- the operation is idempotent.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from auth.models import normalize_key


@dataclass(frozen=True)
class RoleDiff:
    to_add: tuple[str, ...] = ()
    to_remove: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


def normalize_role_names(names: Iterable[str | None] | None) -> list[str]:
    """Trim, drop blanks, and dedupe case-insensitively, preserving first-seen order."""
    if names is None:
        return []
    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        if name is None:
            continue
        trimmed = str(name).strip()
        key = trimmed.lower()
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(trimmed)
    return result


def _index(names: Iterable[str | None] | None) -> dict[str, str]:
    return {normalize_key(n): n for n in normalize_role_names(names)}


def compute_role_diff(
    current: Iterable[str | None] | None,
    desired: Iterable[str | None] | None,
    known: Iterable[str | None] | None = None,
) -> RoleDiff:
    """Return the names to add (desired - current) and remove (current - desired).

    Args:
        current: role names the user holds now.
        desired: role names the caller wants the user to hold.
        known:   names of every existing Role. When given, additions with no
                 matching Role are dropped and surviving additions take the
                 stored Role's spelling. None skips the filter.
    """
    current_idx = _index(current)
    desired_idx = _index(desired)

    to_add = [name for key, name in desired_idx.items() if key not in current_idx]
    to_remove = [name for key, name in current_idx.items() if key not in desired_idx]

    if known is not None:
        known_idx = _index(known)
        to_add = [known_idx[normalize_key(n)] for n in to_add if normalize_key(n) in known_idx]

    return RoleDiff(to_add=tuple(to_add), to_remove=tuple(to_remove))
