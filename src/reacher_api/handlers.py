"""Business handlers: user upsert/list and verification forwarding.

Framework-agnostic. The endpoints module runs these as the last step of a pipeline.
"""

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reacher_api.checker import EmailVerifierClient
from reacher_api.errors import ValidationError
from reacher_api.models.user import User
from reacher_api.repositories import user as user_repo
from reacher_api.schemas import BulkVerifyResponse, UserResponse, Verification

logger = logging.getLogger("reacher_api.handlers")


def user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        auth0_id=user.auth0_id,
        credits=user.credits,
        verifications=[Verification.model_validate(v) for v in user.verifications],
        created_at=user.created_at,
    )


async def upsert_user(session: AsyncSession, subject: str) -> User:
    """Find the user for ``subject``, creating it with default credits if absent.

    An existing user is returned unchanged.
    """
    user = await user_repo.get_user_by_auth0_id(session, subject)
    if user is not None:
        return user

    try:
        user = await user_repo.create_user(session, auth0_id=subject)
    except IntegrityError:
        # Lost a race with a concurrent create for the same subject
        await session.rollback()
        user = await user_repo.get_user_by_auth0_id(session, subject)
        if user is None:
            raise
        return user

    logger.info("Created user %s", user.id)
    return user


async def list_users(session: AsyncSession) -> list[User]:
    """All users, unfiltered and unpaginated."""
    return await user_repo.list_users(session)


async def verify_demo(
    client: EmailVerifierClient, to_email: str | None, from_email: str | None = None,
) -> Any:
    """Verify a single address and return the verifier's verdict verbatim.

    Raises:
        ValidationError: If ``to_email`` is missing. The verifier is not called.
    """
    if not to_email:
        raise ValidationError("Missing `toEmail` query param", code="missing_to_email")
    return await client.check(to_email, from_email)


async def verify_bulk(client: EmailVerifierClient, name: Any, emails: Any) -> BulkVerifyResponse:
    """Verify a named batch of addresses concurrently.

    Any failing address fails the whole batch.

    Raises:
        ValidationError: If ``name`` is not a string or ``emails`` is not a list of strings.
    """
    if not isinstance(name, str):
        raise ValidationError("Incorrect `name` field", code="invalid_name")
    if not isinstance(emails, list) or not all(isinstance(e, str) for e in emails):
        raise ValidationError("Incorrect `emails` field", code="invalid_emails")

    report = await client.check_many(emails)
    return BulkVerifyResponse(name=name, report=report)
