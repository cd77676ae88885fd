from __future__ import annotations

from typing import Protocol

from ...authz.model import PolicyRecords


class PolicyStorePort(Protocol):
    async def load_all(self, domain: str | None = None) -> PolicyRecords:
        """Return every stored tuple, optionally restricted to one domain.

        Raises:
            StoreUnavailableError: The backing store cannot be read.
        """
        ...

    async def persist(self, records: PolicyRecords) -> None:
        """Atomically replace the stored tuple set with ``records``.

        Raises:
            StoreUnavailableError: Nothing was written.
        """
        ...
