import pytest

from procurement_auth.authz.model import (
    PolicyTuple,
    RoleAssignment,
    action_matches,
    resource_matches,
)
from procurement_auth.authz.snapshot import PolicySnapshot

GLOBAL = "*"


@pytest.mark.parametrize(
    ("pattern", "resource", "expected"),
    [
        ("/*", "/api/rfq/123", True),
        ("*", "/anything", True),
        ("/api/rfq/*", "/api/rfq/123", True),
        ("/api/rfq/*", "/api/rfq/", True),
        ("/api/rfq/*", "/api/rfq", False),
        ("/api/rfq", "/api/rfq", True),
        ("/api/rfq", "/api/rfq/1", False),
        ("/api/quotes/*", "/api/rfq/1", False),
    ],
)
def test_resource_matching(pattern: str, resource: str, expected: bool) -> None:
    assert resource_matches(pattern, resource) is expected


def test_action_matching_is_case_insensitive_and_supports_wildcard() -> None:
    assert action_matches("GET", "get")
    assert action_matches("*", "DELETE")
    assert not action_matches("GET", "POST")


def test_policy_tuple_normalizes_action_and_rejects_blank_fields() -> None:
    assert PolicyTuple.of(" role ", "/api/x", "post", "t1") == PolicyTuple(
        "role", "/api/x", "POST", "t1"
    )
    with pytest.raises(ValueError):
        PolicyTuple.of("role", "", "GET", "t1")
    with pytest.raises(ValueError):
        RoleAssignment.of("user", "role", "  ")


def test_snapshot_apply_returns_self_when_nothing_changes() -> None:
    policy = PolicyTuple.of("r", "/a", "GET", "t1")
    snapshot = PolicySnapshot([policy])

    assert snapshot.apply(add_policies=[policy]) is snapshot
    assert snapshot.apply(remove_policies=[PolicyTuple.of("r", "/b", "GET", "t1")]) is snapshot


def test_effective_subjects_follow_role_chains_in_domain_and_globally() -> None:
    snapshot = PolicySnapshot(
        assignments=[
            RoleAssignment.of("alice", "buyer", "t1"),
            RoleAssignment.of("buyer", "viewer", "t1"),
            RoleAssignment.of("alice", "auditor", GLOBAL),
            RoleAssignment.of("alice", "seller", "t2"),
        ]
    )

    subjects = snapshot.effective_subjects("alice", "t1", GLOBAL)

    assert subjects == {"alice", "buyer", "viewer", "auditor"}
    assert "seller" not in subjects


def test_effective_subjects_terminate_on_cycles() -> None:
    snapshot = PolicySnapshot(
        assignments=[
            RoleAssignment.of("a", "b", "t1"),
            RoleAssignment.of("b", "a", "t1"),
        ]
    )

    assert snapshot.effective_subjects("a", "t1", GLOBAL) == {"a", "b"}


def test_matching_policy_only_looks_inside_requested_domain() -> None:
    snapshot = PolicySnapshot(
        policies=[PolicyTuple.of("buyer", "/api/rfq/*", "GET", "t1")],
        assignments=[RoleAssignment.of("alice", "buyer", "t1")],
    )

    assert snapshot.matching_policy("alice", "/api/rfq/1", "GET", "t1", GLOBAL) is not None
    assert snapshot.matching_policy("alice", "/api/rfq/1", "GET", "t2", GLOBAL) is None
    assert snapshot.matching_policy("alice", "/api/rfq/1", "POST", "t1", GLOBAL) is None
