from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Iterable

from .model import PolicyRecords, PolicyTuple, RoleAssignment, action_matches, resource_matches


class PolicySnapshot:
    """Immutable, indexed view of every policy and role assignment.

    Readers hold a reference to one snapshot for the whole check; writers
    build a new snapshot with :meth:`apply` and publish it by reference swap.
    """

    __slots__ = ("_policies", "_assignments", "_policy_index", "_role_index")

    def __init__(
        self,
        policies: Iterable[PolicyTuple] = (),
        assignments: Iterable[RoleAssignment] = (),
    ) -> None:
        self._policies = frozenset(policies)
        self._assignments = frozenset(assignments)

        policy_index: dict[tuple[str, str], list[PolicyTuple]] = defaultdict(list)
        for policy in self._policies:
            policy_index[(policy.domain, policy.subject)].append(policy)
        self._policy_index = {key: tuple(value) for key, value in policy_index.items()}

        role_index: dict[tuple[str, str], set[str]] = defaultdict(set)
        for assignment in self._assignments:
            role_index[(assignment.domain, assignment.subject)].add(assignment.role)
        self._role_index = {key: frozenset(value) for key, value in role_index.items()}

    @classmethod
    def from_records(cls, records: PolicyRecords) -> "PolicySnapshot":
        return cls(records.policies, records.assignments)

    @property
    def policies(self) -> frozenset[PolicyTuple]:
        return self._policies

    @property
    def assignments(self) -> frozenset[RoleAssignment]:
        return self._assignments

    def records(self) -> PolicyRecords:
        return PolicyRecords(policies=self._policies, assignments=self._assignments)

    def apply(
        self,
        *,
        add_policies: Iterable[PolicyTuple] = (),
        remove_policies: Iterable[PolicyTuple] = (),
        add_assignments: Iterable[RoleAssignment] = (),
        remove_assignments: Iterable[RoleAssignment] = (),
    ) -> "PolicySnapshot":
        """Return a snapshot with the changes applied, or ``self`` when nothing changes."""
        policies = (self._policies - frozenset(remove_policies)) | frozenset(add_policies)
        assignments = (self._assignments - frozenset(remove_assignments)) | frozenset(
            add_assignments
        )
        if policies == self._policies and assignments == self._assignments:
            return self
        return PolicySnapshot(policies, assignments)

    def direct_roles(self, subject: str, domain: str) -> frozenset[str]:
        return self._role_index.get((domain, subject), frozenset())

    def effective_subjects(
        self, subject: str, domain: str, global_domain: str
    ) -> frozenset[str]:
        """The subject plus every role reachable from it in ``domain`` or globally."""
        domains = (domain,) if domain == global_domain else (domain, global_domain)
        seen: set[str] = {subject}
        queue: deque[str] = deque([subject])
        while queue:
            current = queue.popleft()
            for scope in domains:
                for role in self.direct_roles(current, scope):
                    if role not in seen:
                        seen.add(role)
                        queue.append(role)
        return frozenset(seen)

    def matching_policy(
        self,
        subject: str,
        resource: str,
        action: str,
        domain: str,
        global_domain: str,
    ) -> PolicyTuple | None:
        """First policy in ``domain`` granting the request, if any."""
        for candidate in self.effective_subjects(subject, domain, global_domain):
            for policy in self._policy_index.get((domain, candidate), ()):
                if resource_matches(policy.resource, resource) and action_matches(
                    policy.action, action
                ):
                    return policy
        return None

    def policies_for_subjects(
        self, subjects: Iterable[str], domain: str
    ) -> list[PolicyTuple]:
        found: list[PolicyTuple] = []
        for subject in subjects:
            found.extend(self._policy_index.get((domain, subject), ()))
        return found

    def domains_with_policies_for(self, subject: str) -> frozenset[str]:
        return frozenset(domain for domain, owner in self._policy_index if owner == subject)

    def domains_with_assignments_for(self, subject: str) -> frozenset[str]:
        return frozenset(domain for domain, owner in self._role_index if owner == subject)
