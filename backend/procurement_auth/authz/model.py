"""
Policy data model for the enforcement engine.

A policy tuple grants ``subject`` the right to perform ``action`` on every
resource matched by ``resource`` inside ``domain``. A role assignment makes
``subject`` inherit everything granted to ``role`` inside ``domain``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Final

WILDCARD: Final[str] = "*"
UNIVERSAL_RESOURCES: Final[frozenset[str]] = frozenset({"*", "/*"})
HTTP_ACTIONS: Final[frozenset[str]] = frozenset(
    {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}
)


def normalize_action(action: str) -> str:
    value = action.strip()
    if value == WILDCARD:
        return value
    return value.upper()


def _require_text(field: str, value: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{field} must be a string")
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{field} must not be empty")
    return stripped


@dataclass(frozen=True, slots=True)
class PolicyTuple:
    subject: str
    resource: str
    action: str
    domain: str

    @classmethod
    def of(cls, subject: str, resource: str, action: str, domain: str) -> "PolicyTuple":
        """Build a normalized tuple; duplicates compare equal after this."""
        return cls(
            subject=_require_text("subject", subject),
            resource=_require_text("resource", resource),
            action=normalize_action(_require_text("action", action)),
            domain=_require_text("domain", domain),
        )

    def as_row(self) -> tuple[str, str, str, str]:
        return (self.subject, self.resource, self.action, self.domain)


@dataclass(frozen=True, slots=True)
class RoleAssignment:
    subject: str
    role: str
    domain: str

    @classmethod
    def of(cls, subject: str, role: str, domain: str) -> "RoleAssignment":
        return cls(
            subject=_require_text("subject", subject),
            role=_require_text("role", role),
            domain=_require_text("domain", domain),
        )

    def as_row(self) -> tuple[str, str, str]:
        return (self.subject, self.role, self.domain)


@dataclass(frozen=True, slots=True)
class PolicyRecords:
    """Full tuple set as read from or written to the policy store."""

    policies: frozenset[PolicyTuple] = frozenset()
    assignments: frozenset[RoleAssignment] = frozenset()


def resource_matches(pattern: str, resource: str) -> bool:
    """Match a resource against a pattern.

    ``/*`` and ``*`` match everything. A pattern ending in ``*`` matches any
    resource starting with the text before the ``*``. Anything else must be
    equal.
    """
    if pattern in UNIVERSAL_RESOURCES:
        return True
    if pattern.endswith(WILDCARD):
        return resource.startswith(pattern[:-1])
    return pattern == resource


def action_matches(pattern: str, action: str) -> bool:
    return pattern == WILDCARD or pattern == normalize_action(action)
