from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import jwt

logger = logging.getLogger("procurement.tokens")


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class TokenError(Exception):
    """Base class for credential validation failures."""


class MalformedTokenError(TokenError):
    """Raised when a token cannot be parsed or its signature does not verify."""


class TokenExpiredError(TokenError):
    """Raised when a token has expired."""


class WrongTokenKindError(TokenError):
    """Raised when a refresh token is presented as an access token or vice versa."""


@dataclass(frozen=True)
class AuthTokens:
    access_token: str
    refresh_token: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenManager:
    """Issues and validates the two credential kinds.

    Access and refresh tokens are signed with different secrets, so one
    kind can never verify as the other.
    """

    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=30),
        refresh_ttl: timedelta = timedelta(days=30),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh secrets must differ")
        self._secrets = {TokenKind.ACCESS: access_secret, TokenKind.REFRESH: refresh_secret}
        self._ttls = {TokenKind.ACCESS: access_ttl, TokenKind.REFRESH: refresh_ttl}
        self._algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Any) -> "TokenManager":
        return cls(
            access_secret=settings.secret_key,
            refresh_secret=settings.refresh_secret_key,
            algorithm=settings.algorithm,
            access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
        )

    @property
    def refresh_ttl(self) -> timedelta:
        return self._ttls[TokenKind.REFRESH]

    @property
    def access_ttl(self) -> timedelta:
        return self._ttls[TokenKind.ACCESS]

    def _issue(self, user_id: uuid.UUID | str, kind: TokenKind) -> str:
        issued_at = self._clock()
        payload = {
            "sub": str(user_id),
            "iat": issued_at,
            "exp": issued_at + self._ttls[kind],
            "kind": kind.value,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secrets[kind], algorithm=self._algorithm)

    def issue_access_token(self, user_id: uuid.UUID | str) -> str:
        return self._issue(user_id, TokenKind.ACCESS)

    def issue_refresh_token(self, user_id: uuid.UUID | str) -> str:
        return self._issue(user_id, TokenKind.REFRESH)

    def issue_pair(self, user_id: uuid.UUID | str) -> AuthTokens:
        return AuthTokens(
            access_token=self.issue_access_token(user_id),
            refresh_token=self.issue_refresh_token(user_id),
        )

    def _decode(self, token: str, kind: TokenKind) -> dict[str, Any]:
        # Expiry is checked against the injected clock, not the wall clock
        return jwt.decode(
            token,
            self._secrets[kind],
            algorithms=[self._algorithm],
            options={
                "require": ["sub", "exp", "kind"],
                "verify_exp": False,
                "verify_iat": False,
            },
        )

    def validate(self, token: str, expected_kind: TokenKind) -> uuid.UUID:
        """Return the user id carried by ``token``.

        Raises:
            MalformedTokenError: unparseable token, bad signature or subject.
            WrongTokenKindError: the token is valid for the other kind.
            TokenExpiredError: the token is past its ``exp``.
        """
        if not token or not isinstance(token, str):
            raise MalformedTokenError()

        try:
            payload = self._decode(token, expected_kind)
        except jwt.InvalidSignatureError:
            other = TokenKind.REFRESH if expected_kind is TokenKind.ACCESS else TokenKind.ACCESS
            try:
                self._decode(token, other)
            except jwt.InvalidTokenError as exc:
                raise MalformedTokenError() from exc
            logger.warning("Token of the wrong kind presented expected=%s", expected_kind.value)
            raise WrongTokenKindError() from None
        except jwt.InvalidTokenError as exc:
            raise MalformedTokenError() from exc

        if payload.get("kind") != expected_kind.value:
            raise WrongTokenKindError()

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            raise MalformedTokenError()
        if datetime.fromtimestamp(exp, tz=timezone.utc) <= self._clock():
            raise TokenExpiredError()

        subject = payload.get("sub")
        try:
            if not isinstance(subject, str):
                raise ValueError("invalid-subject-type")
            return uuid.UUID(subject)
        except ValueError:
            raise MalformedTokenError() from None
