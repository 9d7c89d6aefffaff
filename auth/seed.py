"""
auth/seed.py -- Idempotent bootstrap of baseline roles and users.

Called once from the FastAPI lifespan before the first request is served, and
from the CLI (python main.py seed). Safe to run on every start: each step
checks by natural key (role name, username, assignment pair) before writing.

Order: roles -> users -> assignments. Each step is its own transaction, so a
fresh database ends up with all three even if a later step is skipped. If a
baseline role or user is missing when assignments are attempted, the seeder
logs a warning and returns -- it never raises for that case.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.hashing import PasswordHasher
from auth.models import User
from auth.store import CredentialStore, InsertAssignment, InsertRole, InsertUser

logger = logging.getLogger("authapp.seed")

BASELINE_ROLES: tuple[str, ...] = ("Admin", "User")

# Fixed timestamp so seeded rows are identical across environments.
SEED_CREATED_AT = "2025-10-28T00:00:00+00:00"


@dataclass(frozen=True)
class SeedUser:
    username: str
    email: str
    password: str
    role: str


BASELINE_USERS: tuple[SeedUser, ...] = (
    SeedUser(username="admin", email="admin@task.com", password="Admin123!", role="Admin"),
    SeedUser(username="user", email="user@task.com", password="User123!", role="User"),
)


@dataclass
class SeedReport:
    roles_created: int = 0
    users_created: int = 0
    assignments_created: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.roles_created or self.users_created or self.assignments_created)


def seed_baseline(store: CredentialStore, hasher: PasswordHasher) -> SeedReport:
    """Ensure the baseline roles, users and role assignments exist."""
    report = SeedReport()

    missing_roles = [name for name in BASELINE_ROLES if store.find_role_by_name(name) is None]
    if missing_roles:
        if store.apply([InsertRole(name) for name in missing_roles]).committed:
            report.roles_created = len(missing_roles)
            logger.info("Seeded roles: %s", ", ".join(missing_roles))
        else:
            logger.warning("Role seeding lost a race with another writer; continuing")

    for seed in BASELINE_USERS:
        if store.find_by_username(seed.username) is not None or store.find_by_email(seed.email) is not None:
            continue
        user = User(
            username=seed.username,
            email=seed.email,
            password_hash=hasher.hash(seed.password),
            created_at=SEED_CREATED_AT,
        )
        if store.apply([InsertUser(user)]).committed:
            report.users_created += 1
            logger.info("Seeded user %s", seed.username)

    roles = {name: store.find_role_by_name(name) for name in BASELINE_ROLES}
    if any(role is None for role in roles.values()):
        logger.warning("Baseline roles missing after seeding; skipping role assignments")
        return report

    mutations = []
    for seed in BASELINE_USERS:
        user = store.find_by_username(seed.username)
        if user is None:
            logger.warning("Seed user %s missing; skipping its role assignment", seed.username)
            continue
        role = roles[seed.role]
        if any(a.role_id == role.id for a in store.list_assignments(user.id)):
            continue
        mutations.append(InsertAssignment(user.id, role.id))

    if mutations and store.apply(mutations).committed:
        report.assignments_created = len(mutations)
        logger.info("Seeded %d role assignment(s)", len(mutations))

    return report
