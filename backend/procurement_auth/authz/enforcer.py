"""
Enforcement engine.

Answers "may SUBJECT perform ACTION on RESOURCE in DOMAIN" against an
in-memory snapshot of the policy store, and applies live policy mutations.

Ordering rules:
- The global domain is always evaluated first; a match there grants access
  in every domain (global bypass).
- Checks never touch the store. Only load() and mutations do I/O.
- Mutations are serialized by one lock. A new snapshot is published only
  after the store accepted the full tuple set, so readers never see state
  the store does not have.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable

from ..config import FailMode
from ..domain.ports.policy_store import PolicyStorePort
from ..errors import StoreUnavailableError
from .model import PolicyTuple, RoleAssignment
from .snapshot import PolicySnapshot

logger = logging.getLogger("procurement.enforcer")

PolicyChangeListener = Callable[[], Awaitable[None]]


class EnforcementEngine:
    def __init__(
        self,
        store: PolicyStorePort,
        *,
        global_domain: str = "*",
        fail_mode: FailMode = FailMode.CLOSED,
    ) -> None:
        self._store = store
        self._global_domain = global_domain
        self._fail_mode = fail_mode
        self._snapshot = PolicySnapshot()
        self._loaded = False
        self._write_lock = asyncio.Lock()
        self._listeners: list[PolicyChangeListener] = []

    @property
    def global_domain(self) -> str:
        return self._global_domain

    @property
    def fail_mode(self) -> FailMode:
        return self._fail_mode

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def snapshot(self) -> PolicySnapshot:
        return self._snapshot

    def add_listener(self, listener: PolicyChangeListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Replace the snapshot with the store's current contents.

        Raises:
            StoreUnavailableError: The store could not be read. A previously
                loaded snapshot stays in service.
        """
        async with self._write_lock:
            try:
                records = await self._store.load_all()
            except StoreUnavailableError:
                if self._loaded:
                    logger.error("Policy reload failed, keeping last snapshot")
                else:
                    logger.error("Initial policy load failed")
                raise
            self._snapshot = PolicySnapshot.from_records(records)
            self._loaded = True
        logger.info(
            "Policy snapshot loaded policies=%d assignments=%d",
            len(records.policies),
            len(records.assignments),
        )

    async def reload(self) -> bool:
        """Best-effort reload used by change notifications."""
        try:
            await self.load()
        except StoreUnavailableError:
            return False
        return True

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def enforce(self, subject: str, resource: str, action: str, domain: str) -> bool:
        if not self._loaded:
            return self._unloaded_verdict(subject, resource, action, domain)

        snapshot = self._snapshot
        if self._match(snapshot, subject, resource, action, self._global_domain):
            logger.debug(
                "Global grant subject=%s resource=%s action=%s domain=%s",
                subject,
                resource,
                action,
                domain,
            )
            return True

        if domain == self._global_domain:
            return False

        allowed = self._match(snapshot, subject, resource, action, domain)
        logger.debug(
            "Permission check subject=%s resource=%s action=%s domain=%s allowed=%s",
            subject,
            resource,
            action,
            domain,
            allowed,
        )
        return allowed

    def has_global_grant(self, subject: str, resource: str, action: str) -> bool:
        if not self._loaded:
            return self._unloaded_verdict(subject, resource, action, self._global_domain)
        return self._match(self._snapshot, subject, resource, action, self._global_domain)

    def _match(
        self,
        snapshot: PolicySnapshot,
        subject: str,
        resource: str,
        action: str,
        domain: str,
    ) -> bool:
        policy = snapshot.matching_policy(subject, resource, action, domain, self._global_domain)
        return policy is not None

    def _unloaded_verdict(self, subject: str, resource: str, action: str, domain: str) -> bool:
        if self._fail_mode is FailMode.OPEN:
            logger.warning(
                "Policy engine not loaded, allowing (fail-open) subject=%s resource=%s action=%s domain=%s",
                subject,
                resource,
                action,
                domain,
            )
            return True
        logger.error(
            "Policy engine not loaded, denying (fail-closed) subject=%s resource=%s action=%s domain=%s",
            subject,
            resource,
            action,
            domain,
        )
        return False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def roles_for_user(self, subject: str, domain: str) -> frozenset[str]:
        """Effective roles of ``subject`` in ``domain``, inherited ones included."""
        subjects = self._snapshot.effective_subjects(subject, domain, self._global_domain)
        return subjects - {subject}

    def has_role_in_domain(self, subject: str, role: str, domain: str) -> bool:
        return role in self.roles_for_user(subject, domain)

    def has_role(self, subject: str, role: str) -> bool:
        """Whether ``subject`` holds ``role`` in any domain."""
        snapshot = self._snapshot
        domains = snapshot.domains_with_assignments_for(subject) | {self._global_domain}
        return any(self.has_role_in_domain(subject, role, domain) for domain in domains)

    def permissions_for_user(self, subject: str, domain: str) -> list[PolicyTuple]:
        """Policies reachable by ``subject`` when acting in ``domain``."""
        snapshot = self._snapshot
        found = snapshot.policies_for_subjects(
            snapshot.effective_subjects(subject, self._global_domain, self._global_domain),
            self._global_domain,
        )
        if domain != self._global_domain:
            found.extend(
                snapshot.policies_for_subjects(
                    snapshot.effective_subjects(subject, domain, self._global_domain),
                    domain,
                )
            )
        return sorted(set(found), key=PolicyTuple.as_row)

    def policies(self, domain: str | None = None) -> list[PolicyTuple]:
        items: Iterable[PolicyTuple] = self._snapshot.policies
        if domain is not None:
            items = (policy for policy in items if policy.domain == domain)
        return sorted(items, key=PolicyTuple.as_row)

    def assignments(self, domain: str | None = None) -> list[RoleAssignment]:
        items: Iterable[RoleAssignment] = self._snapshot.assignments
        if domain is not None:
            items = (assignment for assignment in items if assignment.domain == domain)
        return sorted(items, key=RoleAssignment.as_row)

    def domains_with_policies_for(self, subject: str) -> frozenset[str]:
        return self._snapshot.domains_with_policies_for(subject)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_policy(self, policy: PolicyTuple) -> bool:
        return await self.apply(add_policies=(policy,))

    async def remove_policy(self, policy: PolicyTuple) -> bool:
        return await self.apply(remove_policies=(policy,))

    async def add_policies(self, policies: Iterable[PolicyTuple]) -> bool:
        return await self.apply(add_policies=tuple(policies))

    async def remove_policies(self, policies: Iterable[PolicyTuple]) -> bool:
        return await self.apply(remove_policies=tuple(policies))

    async def add_role_assignment(self, subject: str, role: str, domain: str) -> bool:
        return await self.apply(add_assignments=(RoleAssignment.of(subject, role, domain),))

    async def remove_role_assignment(self, subject: str, role: str, domain: str) -> bool:
        return await self.apply(
            remove_assignments=(RoleAssignment.of(subject, role, domain),)
        )

    async def replace_subject_policies(
        self, subject: str, domain: str, policies: Iterable[PolicyTuple]
    ) -> bool:
        """Swap every policy of ``subject`` in ``domain`` for ``policies`` in one step."""
        replacement = tuple(policies)
        for policy in replacement:
            if policy.subject != subject or policy.domain != domain:
                raise ValueError("Replacement policies must share subject and domain")
        async with self._write_lock:
            current = self._snapshot.policies_for_subjects((subject,), domain)
            return await self._commit(
                self._snapshot.apply(add_policies=replacement, remove_policies=current)
            )

    async def apply(
        self,
        *,
        add_policies: Iterable[PolicyTuple] = (),
        remove_policies: Iterable[PolicyTuple] = (),
        add_assignments: Iterable[RoleAssignment] = (),
        remove_assignments: Iterable[RoleAssignment] = (),
    ) -> bool:
        """Apply a batch of changes atomically.

        Returns ``True`` when the tuple set changed and ``False`` for a no-op.

        Raises:
            StoreUnavailableError: Persisting failed, or no snapshot was ever
                loaded. The published snapshot is unchanged.
        """
        async with self._write_lock:
            candidate = self._snapshot.apply(
                add_policies=add_policies,
                remove_policies=remove_policies,
                add_assignments=add_assignments,
                remove_assignments=remove_assignments,
            )
            return await self._commit(candidate)

    async def _commit(self, candidate: PolicySnapshot) -> bool:
        # Caller holds the write lock.
        if not self._loaded:
            raise StoreUnavailableError("Policy snapshot is not loaded")
        if candidate is self._snapshot:
            return False
        try:
            await self._store.persist(candidate.records())
        except StoreUnavailableError:
            logger.error("Policy persist failed, mutation rolled back")
            raise
        self._snapshot = candidate
        logger.info(
            "Policy snapshot updated policies=%d assignments=%d",
            len(candidate.policies),
            len(candidate.assignments),
        )
        await self._notify()
        return True

    async def _notify(self) -> None:
        for listener in self._listeners:
            try:
                await listener()
            except Exception:
                logger.exception("Policy change listener failed")
