"""Unit tests for auth/service.py -- IdentityService.

Covers:
- create_user: role assignment, unknown roles ignored, duplicate email and
  username variants, rolled-back batches raise ConcurrencyConflict
- passwords with no UTF-8 form are validation errors, never crashes
- update_user: roles=None leaves roles alone, roles=[] clears them
- concurrent updates: one writer commits, the other gets CONFLICT and none of
  its changes land
- delete_user: no orphaned assignments
- get_user_roles / validate_credentials / change_password
"""

import pytest

from auth.errors import ConcurrencyConflict, DuplicateEmailError, DuplicateUsernameError, Outcome, ValidationError
from auth.models import UserUpdate
from auth.service import IdentityService


class TestCreateUser:
    def test_create_assigns_known_roles(self, service: IdentityService) -> None:
        user = service.create_user("alice@example.com", "s3cret", ["admin", "User", "Ghost"])
        assert user.id is not None
        assert user.username == "alice@example.com"
        assert user.is_active
        assert user.roles == ["Admin", "User"]
        assert user.password_hash != "s3cret"

    def test_create_with_explicit_username(self, service: IdentityService) -> None:
        user = service.create_user("alice@example.com", "s3cret", username="alice")
        assert user.username == "alice"
        assert user.roles == []

    @pytest.mark.parametrize("variant", ["alice@example.com", "ALICE@example.com", "  Alice@Example.Com  "])
    def test_duplicate_email_rejected(self, service: IdentityService, variant: str) -> None:
        service.create_user("alice@example.com", "s3cret", ["User"], username="alice")
        with pytest.raises(DuplicateEmailError):
            service.create_user(variant, "other", username="someone-else")
        assert len(service.list_users()) == 1

    def test_duplicate_username_rejected(self, service: IdentityService) -> None:
        service.create_user("a@example.com", "pw", username="shared")
        with pytest.raises(DuplicateUsernameError):
            service.create_user("b@example.com", "pw", username="SHARED")

    def test_unencodable_password_is_a_validation_error(self, service: IdentityService) -> None:
        with pytest.raises(ValidationError):
            service.create_user("a@example.com", "\ud800")
        assert service.list_users() == []

    def test_rolled_back_batch_is_a_creation_conflict(self, service: IdentityService, monkeypatch) -> None:
        # A role id that no longer exists fails the assignment FK mid-batch.
        monkeypatch.setattr(service, "_role_ids", lambda names: [9999])
        with pytest.raises(ConcurrencyConflict):
            service.create_user("a@example.com", "pw", ["Admin"])
        assert service.get_user_by_email("a@example.com") is None

    def test_user_gone_before_read_back(self, service: IdentityService, monkeypatch) -> None:
        monkeypatch.setattr(service.store, "find_by_id", lambda user_id: None)
        with pytest.raises(ConcurrencyConflict):
            service.create_user("a@example.com", "pw")

    @pytest.mark.parametrize("email,password", [("", "pw"), ("   ", "pw"), (None, "pw"), ("a@example.com", "")])
    def test_blank_input_rejected(self, service: IdentityService, email, password) -> None:
        with pytest.raises(ValidationError):
            service.create_user(email, password)


class TestUpdateUser:
    @pytest.fixture
    def alice(self, service: IdentityService):
        return service.create_user("alice@example.com", "s3cret", ["Admin", "User"])

    def test_roles_none_leaves_roles_untouched(self, service: IdentityService, alice) -> None:
        assert service.update_user(UserUpdate(id=alice.id, username="alice"))
        updated = service.get_user(alice.id)
        assert updated.username == "alice"
        assert updated.roles == ["Admin", "User"]

    def test_empty_roles_clears_all(self, service: IdentityService, alice) -> None:
        assert service.update_user(UserUpdate(id=alice.id, roles=[]))
        assert service.get_user(alice.id).roles == []
        assert service.store.list_assignments(alice.id) == []

    def test_roles_are_synchronized(self, service: IdentityService, alice) -> None:
        assert service.update_user(UserUpdate(id=alice.id, roles=["user", "Auditor", "Ghost"]))
        assert service.get_user(alice.id).roles == ["User", "Auditor"]

    def test_same_roles_twice_is_idempotent(self, service: IdentityService, alice) -> None:
        update = UserUpdate(id=alice.id, roles=["Auditor"])
        assert service.update_user(update)
        plan = service.plan_update(update)
        assert plan.role_diff.is_empty
        assert service.update_user(update)
        assert service.get_user(alice.id).roles == ["Auditor"]

    def test_blank_email_keeps_current(self, service: IdentityService, alice) -> None:
        assert service.update_user(UserUpdate(id=alice.id, email="  "))
        assert service.get_user(alice.id).email == "alice@example.com"

    def test_email_taken_by_other_user(self, service: IdentityService, alice) -> None:
        service.create_user("bob@example.com", "pw")
        with pytest.raises(DuplicateEmailError):
            service.update_user(UserUpdate(id=alice.id, email="BOB@example.com"))

    def test_email_case_change_on_self_is_allowed(self, service: IdentityService, alice) -> None:
        assert service.update_user(UserUpdate(id=alice.id, email="Alice@Example.com"))
        assert service.get_user(alice.id).email == "Alice@Example.com"

    def test_password_update_rehashes(self, service: IdentityService, alice) -> None:
        assert service.update_user(UserUpdate(id=alice.id, password="n3w"))
        assert service.validate_credentials("alice@example.com", "n3w")
        assert not service.validate_credentials("alice@example.com", "s3cret")

    def test_blank_password_rejected(self, service: IdentityService, alice) -> None:
        with pytest.raises(ValidationError):
            service.update_user(UserUpdate(id=alice.id, password=""))

    def test_username_taken_by_other_user(self, service: IdentityService, alice) -> None:
        service.create_user("bob@example.com", "pw", username="bob")
        with pytest.raises(DuplicateUsernameError):
            service.apply_update(UserUpdate(id=alice.id, username="BOB"))
        unchanged = service.get_user(alice.id)
        assert unchanged.username == "alice@example.com"
        assert unchanged.version == 1

    def test_unencodable_password_is_a_validation_error(self, service: IdentityService, alice) -> None:
        with pytest.raises(ValidationError):
            service.update_user(UserUpdate(id=alice.id, password="\ud800"))
        assert service.validate_credentials("alice@example.com", "s3cret")

    def test_missing_user(self, service: IdentityService) -> None:
        assert service.apply_update(UserUpdate(id=404, roles=["User"])) is Outcome.NOT_FOUND
        assert service.update_user(UserUpdate(id=404)) is False


class TestConcurrentUpdates:
    def test_second_writer_conflicts_and_changes_nothing(self, service: IdentityService) -> None:
        alice = service.create_user("alice@example.com", "s3cret", ["User"])

        # Both writers read the same version before either commits.
        plan_a = service.plan_update(UserUpdate(id=alice.id, roles=["Admin"]))
        plan_b = service.plan_update(UserUpdate(id=alice.id, roles=["Auditor", "User"], username="bob"))

        assert service.commit_update(plan_a) is Outcome.COMMITTED
        assert service.commit_update(plan_b) is Outcome.CONFLICT

        final = service.get_user(alice.id)
        assert final.roles == ["Admin"]
        assert final.username == "alice@example.com"
        assert final.version == 2

    def test_role_only_updates_collide(self, service: IdentityService) -> None:
        alice = service.create_user("alice@example.com", "s3cret", [])
        plan_a = service.plan_update(UserUpdate(id=alice.id, roles=["Admin"]))
        plan_b = service.plan_update(UserUpdate(id=alice.id, roles=["Auditor"]))

        assert service.commit_update(plan_b) is Outcome.COMMITTED
        assert service.commit_update(plan_a) is Outcome.CONFLICT
        assert service.get_user(alice.id).roles == ["Auditor"]

    def test_update_after_delete_is_not_found(self, service: IdentityService) -> None:
        alice = service.create_user("alice@example.com", "s3cret", ["User"])
        plan = service.plan_update(UserUpdate(id=alice.id, username="late"))
        assert service.delete_user(alice.id)
        assert service.commit_update(plan) is Outcome.NOT_FOUND

    def test_username_taken_between_plan_and_commit(self, service: IdentityService) -> None:
        alice = service.create_user("alice@example.com", "s3cret")
        plan = service.plan_update(UserUpdate(id=alice.id, username="carol"))
        service.create_user("carol@example.com", "pw", username="carol")

        with pytest.raises(DuplicateUsernameError):
            service.commit_update(plan)
        assert service.get_user(alice.id).username == "alice@example.com"


class TestDeleteUser:
    def test_delete_leaves_no_orphans(self, service: IdentityService) -> None:
        alice = service.create_user("alice@example.com", "s3cret", ["Admin", "User"])
        bob = service.create_user("bob@example.com", "pw", ["User"])

        assert service.delete_user(alice.id)
        assert service.get_user(alice.id) is None
        assert {a.user_id for a in service.store.list_assignments()} == {bob.id}
        assert service.get_user_roles("alice@example.com") == []

    def test_delete_missing_user(self, service: IdentityService) -> None:
        assert service.remove_user(404) is Outcome.NOT_FOUND
        assert service.delete_user(404) is False


class TestQueries:
    def test_get_user_roles(self, service: IdentityService) -> None:
        service.create_user("alice@example.com", "s3cret", ["Admin", "User"])
        service.create_user("norole@example.com", "s3cret")
        assert service.get_user_roles("ALICE@example.com") == ["Admin", "User"]
        assert service.get_user_roles("norole@example.com") == []
        assert service.get_user_roles("ghost@example.com") == []
        assert service.get_user_roles("   ") == []

    def test_validate_credentials(self, service: IdentityService) -> None:
        service.create_user("alice@example.com", "s3cret")
        assert service.validate_credentials("alice@example.com", "s3cret")
        assert not service.validate_credentials("alice@example.com", "S3cret")
        assert not service.validate_credentials("ghost@example.com", "s3cret")
        assert not service.validate_credentials(None, None)

    def test_unencodable_password_fails_login(self, service: IdentityService) -> None:
        service.create_user("alice@example.com", "s3cret")
        assert not service.validate_credentials("alice@example.com", "\ud800")
        assert not service.validate_credentials("ghost@example.com", "\ud800")

    def test_list_roles(self, service: IdentityService) -> None:
        assert [r.name for r in service.list_roles()] == ["Admin", "User", "Auditor"]


class TestChangePassword:
    def test_change_password(self, service: IdentityService) -> None:
        alice = service.create_user("alice@example.com", "old")
        assert service.change_password(alice.id, "old", "new")
        assert service.validate_credentials("alice@example.com", "new")

    def test_wrong_current_password(self, service: IdentityService) -> None:
        alice = service.create_user("alice@example.com", "old")
        assert not service.change_password(alice.id, "wrong", "new")
        assert service.validate_credentials("alice@example.com", "old")

    def test_same_password_is_refused(self, service: IdentityService) -> None:
        alice = service.create_user("alice@example.com", "old")
        assert not service.change_password(alice.id, "old", "old")

    def test_blank_new_password_raises(self, service: IdentityService) -> None:
        alice = service.create_user("alice@example.com", "old")
        with pytest.raises(ValidationError):
            service.change_password(alice.id, "old", "")

    def test_missing_user(self, service: IdentityService) -> None:
        assert not service.change_password(404, "old", "new")
