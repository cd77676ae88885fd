import logging

from ...application.auth_rate_limit import (
    check_refresh_rate_limit,
    record_refresh_failure,
    reset_refresh_limit,
)
from ...domain.ports.identity import IdentityStorePort
from ...errors import AuthError, UnauthenticatedError, UserNotFoundError
from ...security.tokens import AuthTokens, TokenError, TokenExpiredError, TokenKind, TokenManager

logger = logging.getLogger("procurement.auth")


async def _validate_and_issue_tokens(
    identity: IdentityStorePort,
    token_manager: TokenManager,
    refresh_token: str,
) -> AuthTokens:
    try:
        user_id = token_manager.validate(refresh_token, TokenKind.REFRESH)
    except TokenExpiredError:
        raise UnauthenticatedError("Refresh token has expired") from None
    except TokenError:
        raise UnauthenticatedError("Invalid refresh token") from None

    try:
        user = await identity.find_user_by_id(user_id)
    except UserNotFoundError:
        raise UnauthenticatedError("User not found") from None
    if not user.is_active:
        raise UnauthenticatedError("Account is deactivated")

    return token_manager.issue_pair(user.id)


async def refresh_session(
    identity: IdentityStorePort,
    token_manager: TokenManager,
    refresh_token: str | None,
    *,
    client_ip: str | None = None,
) -> AuthTokens:
    if not refresh_token:
        raise UnauthenticatedError("Refresh token required")

    rate_limit_key = check_refresh_rate_limit(refresh_token, client_ip)
    try:
        tokens = await _validate_and_issue_tokens(identity, token_manager, refresh_token)
    except AuthError:
        record_refresh_failure(rate_limit_key)
        raise
    reset_refresh_limit(rate_limit_key)
    return tokens
