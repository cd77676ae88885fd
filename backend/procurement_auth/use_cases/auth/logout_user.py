import logging
import uuid

logger = logging.getLogger("procurement.auth")


async def logout_user(user_id: uuid.UUID | None) -> None:
    """Ends a browser session.

    Credentials are stateless and there is no revocation list: logging out
    clears the cookies and the tokens simply run out.
    """
    if user_id is not None:
        logger.info("User logged out user_id=%s", user_id)
