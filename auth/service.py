"""
auth/service.py -- User lifecycle orchestration.

IdentityService is the only writer of User and Assignment records. Every
public write builds one batch of mutations and commits it with a single
CredentialStore.apply() call:

  create_user  -> [InsertUser, InsertAssignment(NEW_USER, role)...]
  update_user  -> [UpdateUser(version), InsertAssignment..., DeleteAssignment...]
  delete_user  -> [DeleteUser(version)]   (assignments removed in the same txn)

Expected failures are values, not exceptions: a missing user or an optimistic
lock collision comes back as Outcome.NOT_FOUND / Outcome.CONFLICT (or False
from the bool-returning wrappers). Bad input raises ValidationError; a
duplicate email or username raises DuplicateEmailError or
DuplicateUsernameError so routes can return a typed conflict instead of a
generic storage error.

Updates are split into plan_update() (read + diff) and commit_update()
(write). update_user() does both back to back; the split exists so two
writers that read the same version can be exercised deterministically.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.errors import ConcurrencyConflict, DuplicateEmailError, DuplicateUsernameError, Outcome, ValidationError
from auth.gate import AuthenticationGate
from auth.hashing import PasswordHasher
from auth.models import Role, User, UserUpdate, normalize_key
from auth.roles import RoleDiff, compute_role_diff, normalize_role_names
from auth.store import (
    NEW_USER,
    CredentialStore,
    DeleteAssignment,
    DeleteUser,
    InsertAssignment,
    InsertUser,
    Mutation,
    UpdateUser,
)

logger = logging.getLogger("authapp.identity")


@dataclass(frozen=True)
class UpdatePlan:
    """The mutations for one update, computed against a specific user version."""

    user_id: int
    expected_version: int
    mutations: tuple[Mutation, ...]
    role_diff: RoleDiff | None = None


class IdentityService:
    """Create, update, delete and query users.

    Usage:
        service = IdentityService(store, PasswordHasher())
        user = service.create_user("alice@example.com", "s3cret", ["User"])
        service.update_user(UserUpdate(id=user.id, roles=["Admin", "User"]))
    """

    def __init__(self, store: CredentialStore, hasher: PasswordHasher) -> None:
        self.store = store
        self.hasher = hasher
        self.gate = AuthenticationGate(store, hasher)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_user(self, user_id: int) -> User | None:
        return self.store.find_by_id(user_id)

    def get_user_by_email(self, email: str) -> User | None:
        return self.store.find_by_email(email)

    def list_users(self) -> list[User]:
        return self.store.list_all()

    def list_roles(self) -> list[Role]:
        return self.store.list_roles()

    def get_user_roles(self, identifier: str) -> list[str]:
        """Return the role names of the user with this email.

        An unknown user and a user with no roles both yield []. Callers that
        need to tell the two apart must look the user up first.
        """
        if not normalize_key(identifier):
            return []
        user = self.store.find_by_email(identifier)
        if user is None:
            return []
        return [name.strip() for name in user.roles if name and name.strip()]

    def validate_credentials(self, email: str | None, password: str | None) -> bool:
        return self.gate.login(email, password).ok

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_user(
        self,
        email: str,
        password: str,
        role_names: list[str] | None = None,
        username: str | None = None,
    ) -> User:
        """Create an active user and assign the requested, existing roles.

        The user row and its assignments are one batch: either the user exists
        with every resolvable role, or nothing was written. Unknown role names
        are ignored.

        Raises:
            ValidationError: blank email or password, or a password with no
                UTF-8 form.
            DuplicateEmailError: the normalized email is taken.
            DuplicateUsernameError: the normalized username is taken.
            ConcurrencyConflict: the batch was rolled back for another reason
                (e.g. a requested role was deleted mid-request), or the new
                user was deleted before it could be read back.
        """
        if not email or not email.strip():
            raise ValidationError("Email is required.")
        if not password:
            raise ValidationError("Password is required.")

        email = email.strip()
        username = (username or email).strip()
        self._raise_if_taken(None, email, username)
        password_hash = self._hash_password(password)

        diff = compute_role_diff([], normalize_role_names(role_names), known=self._known_role_names())
        role_ids = self._role_ids(diff.to_add)

        new_user = User(username=username, email=email, password_hash=password_hash)
        mutations: list[Mutation] = [InsertUser(new_user)]
        mutations.extend(InsertAssignment(NEW_USER, role_id) for role_id in role_ids)

        result = self.store.apply(mutations)
        if not result.committed:
            # The pre-check passed, so a concurrent insert may have taken the email or username.
            self._raise_if_taken(None, email, username)
            raise ConcurrencyConflict("User creation was rolled back; retry the request.")

        created = self.store.find_by_id(result.inserted_user_id)
        if created is None:
            raise ConcurrencyConflict("The new user was deleted before it could be read back.")
        logger.info("Created user %s with roles %s", result.inserted_user_id, list(diff.to_add))
        return created

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def plan_update(self, update: UserUpdate) -> UpdatePlan | None:
        """Read the user and compute the full batch for this update.

        Returns None if the user does not exist.

        Raises:
            ValidationError: a supplied email/username/password is blank, or
                the password has no UTF-8 form.
            DuplicateEmailError: the new email belongs to another user.
            DuplicateUsernameError: the new username belongs to another user.
        """
        current = self.store.find_by_id(update.id)
        if current is None:
            return None

        fields: dict = {}
        if update.username is not None:
            if not update.username.strip():
                raise ValidationError("Username must not be blank.")
            fields["username"] = update.username
        if update.email is not None and update.email.strip():
            fields["email"] = update.email
        self._raise_if_taken(current.id, fields.get("email"), fields.get("username"))
        if update.password is not None:
            if not update.password:
                raise ValidationError("Password must not be blank.")
            fields["password_hash"] = self._hash_password(update.password)
        if update.is_active is not None:
            fields["is_active"] = update.is_active

        # The version bump is unconditional so role-only updates still take
        # part in the optimistic lock.
        mutations: list[Mutation] = [UpdateUser(current.id, current.version, fields)]

        diff: RoleDiff | None = None
        if update.roles is not None:
            diff = compute_role_diff(current.roles, update.roles, known=self._known_role_names())
            mutations.extend(InsertAssignment(current.id, rid) for rid in self._role_ids(diff.to_add))
            mutations.extend(DeleteAssignment(current.id, rid) for rid in self._role_ids(diff.to_remove))

        return UpdatePlan(
            user_id=current.id,
            expected_version=current.version,
            mutations=tuple(mutations),
            role_diff=diff,
        )

    def commit_update(self, plan: UpdatePlan) -> Outcome:
        outcome = self.store.apply(plan.mutations).outcome
        if outcome is Outcome.CONFLICT:
            # Unique-column collisions are not retryable.
            fields = plan.mutations[0].fields if isinstance(plan.mutations[0], UpdateUser) else {}
            self._raise_if_taken(plan.user_id, fields.get("email"), fields.get("username"))
            logger.warning("Concurrency conflict updating user %s (version %s)", plan.user_id, plan.expected_version)
        elif outcome is Outcome.COMMITTED:
            if plan.role_diff is None:
                logger.info("Updated user %s (roles not modified)", plan.user_id)
            else:
                logger.info(
                    "Updated user %s and synchronized roles (+%s -%s)",
                    plan.user_id,
                    list(plan.role_diff.to_add),
                    list(plan.role_diff.to_remove),
                )
        return outcome

    def apply_update(self, update: UserUpdate) -> Outcome:
        plan = self.plan_update(update)
        if plan is None:
            return Outcome.NOT_FOUND
        return self.commit_update(plan)

    def update_user(self, update: UserUpdate) -> bool:
        """Apply field changes and the optional role sync in one transaction.

        Returns False if the user does not exist or a concurrent write won.
        """
        return self.apply_update(update) is Outcome.COMMITTED

    def change_password(self, user_id: int, current_password: str, new_password: str) -> bool:
        """Replace a user's password after checking the current one.

        Returns False if the user is missing, the current password is wrong,
        the new password equals the old one, or a concurrent write won.
        """
        if not new_password:
            raise ValidationError("New password is required.")
        if not current_password:
            return False

        user = self.store.find_by_id(user_id)
        if user is None:
            return False
        if not self.hasher.verify(user.password_hash, current_password):
            logger.info("Failed password change attempt for user %s", user_id)
            return False
        if self.hasher.verify(user.password_hash, new_password):
            return False

        result = self.store.apply([UpdateUser(user.id, user.version, {"password_hash": self._hash_password(new_password)})])
        if result.committed:
            logger.info("Password changed for user %s", user_id)
        else:
            logger.warning("Concurrency conflict changing password for user %s", user_id)
        return result.committed

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def remove_user(self, user_id: int) -> Outcome:
        user = self.store.find_by_id(user_id)
        if user is None:
            return Outcome.NOT_FOUND
        outcome = self.store.apply([DeleteUser(user.id, user.version)]).outcome
        if outcome is Outcome.COMMITTED:
            logger.info("Deleted user %s", user_id)
        elif outcome is Outcome.CONFLICT:
            logger.warning("Concurrency conflict deleting user %s", user_id)
        return outcome

    def delete_user(self, user_id: int) -> bool:
        """Delete the user and every assignment it holds. False if no such user."""
        return self.remove_user(user_id) is Outcome.COMMITTED

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _known_role_names(self) -> list[str]:
        return [r.name for r in self.store.list_roles()]

    def _role_ids(self, names) -> list[int]:
        wanted = {normalize_key(n) for n in names}
        return [r.id for r in self.store.list_roles() if normalize_key(r.name) in wanted]

    def _hash_password(self, password: str) -> str:
        try:
            return self.hasher.hash(password)
        except UnicodeEncodeError as exc:
            raise ValidationError("Password contains characters that cannot be encoded.") from exc

    def _raise_if_taken(self, user_id: int | None, email: str | None, username: str | None) -> None:
        """Raise if email or username belongs to a user other than user_id."""
        if email:
            other = self.store.find_by_email(email)
            if other is not None and other.id != user_id:
                raise DuplicateEmailError("A user with that email already exists.")
        if username:
            other = self.store.find_by_username(username)
            if other is not None and other.id != user_id:
                raise DuplicateUsernameError("A user with that username already exists.")
