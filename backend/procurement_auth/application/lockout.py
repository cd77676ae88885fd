from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from ..domain.ports.identity import UserData


@dataclass(frozen=True)
class LockoutPolicy:
    """Persistent per-account lockout after repeated password failures."""

    max_attempts: int = 5
    lock_duration: timedelta = timedelta(minutes=120)

    @classmethod
    def from_settings(cls, settings: Any) -> "LockoutPolicy":
        return cls(
            max_attempts=settings.login_max_attempts,
            lock_duration=timedelta(minutes=settings.login_lock_minutes),
        )

    def failure_patch(self, user: UserData, now: datetime) -> dict[str, Any]:
        # An expired lock starts a fresh count
        if user.lock_until is not None and user.lock_until <= now:
            return {"login_attempts": 1, "lock_until": None}

        attempts = user.login_attempts + 1
        patch: dict[str, Any] = {"login_attempts": attempts}
        if attempts >= self.max_attempts and not user.is_locked(now):
            patch["lock_until"] = now + self.lock_duration
        return patch

    @staticmethod
    def success_patch(now: datetime) -> dict[str, Any]:
        return {"login_attempts": 0, "lock_until": None, "last_login_at": now}
