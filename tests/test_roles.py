"""Unit tests for auth/roles.py -- role normalization and diff.

Pure functions, no fixtures needed.
"""

from auth.roles import RoleDiff, compute_role_diff, normalize_role_names


class TestNormalizeRoleNames:
    def test_none_is_empty(self) -> None:
        assert normalize_role_names(None) == []

    def test_trims_and_drops_blanks(self) -> None:
        assert normalize_role_names(["  Admin ", "", "   ", None, "User"]) == ["Admin", "User"]

    def test_case_insensitive_dedupe_keeps_first_spelling(self) -> None:
        assert normalize_role_names(["admin", "ADMIN", "Admin", "user"]) == ["admin", "user"]


class TestComputeRoleDiff:
    def test_add_and_remove(self) -> None:
        diff = compute_role_diff(["A", "B"], ["B", "C"])
        assert diff.to_add == ("C",)
        assert diff.to_remove == ("A",)

    def test_identical_sets_give_empty_diff(self) -> None:
        diff = compute_role_diff(["Admin", "User"], ["User", "Admin"])
        assert diff.is_empty

    def test_comparison_is_case_insensitive(self) -> None:
        diff = compute_role_diff(["Admin"], ["admin", " ADMIN "])
        assert diff == RoleDiff()

    def test_empty_desired_removes_everything(self) -> None:
        diff = compute_role_diff(["Admin", "User"], [])
        assert diff.to_add == ()
        assert set(diff.to_remove) == {"Admin", "User"}

    def test_none_inputs_are_empty_sets(self) -> None:
        assert compute_role_diff(None, None).is_empty
        assert compute_role_diff(None, ["User"]).to_add == ("User",)

    def test_unknown_roles_are_dropped(self) -> None:
        diff = compute_role_diff(["User"], ["User", "Ghost"], known=["Admin", "User"])
        assert diff.is_empty, "A name with no matching Role must not be scheduled for insertion"

    def test_known_role_takes_stored_spelling(self) -> None:
        diff = compute_role_diff([], ["admin"], known=["Admin", "User"])
        assert diff.to_add == ("Admin",)

    def test_applying_the_diff_makes_it_idempotent(self) -> None:
        current = ["A", "B"]
        desired = ["b", "C", "Ghost"]
        known = ["A", "B", "C"]
        diff = compute_role_diff(current, desired, known=known)

        applied = [r for r in current if r not in diff.to_remove] + list(diff.to_add)
        second = compute_role_diff(applied, desired, known=known)

        assert sorted(applied) == ["B", "C"]
        assert second.to_add == ()
