"""Single-use bookkeeping for emailed action tokens."""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.core.auth import ActionPurpose
from bspcp.core.errors import Unauthorized
from bspcp.models import ConsumedActionToken

logger = logging.getLogger(__name__)


async def is_consumed(db: AsyncSession, jti: str) -> bool:
    return await db.get(ConsumedActionToken, jti) is not None


async def consume_token(db: AsyncSession, jti: str, purpose: ActionPurpose, subject_id: int) -> None:
    """Record a redeemed action token; a second redemption raises Unauthorized."""
    if await is_consumed(db, jti):
        logger.warning("Replay of %s token for subject %s rejected", purpose.value, subject_id)
        raise Unauthorized("Token already used", "This link has already been used")
    try:
        async with db.begin_nested():
            db.add(ConsumedActionToken(jti=jti, purpose=purpose.value, subject_id=subject_id))
            await db.flush()
    except IntegrityError:
        raise Unauthorized("Token already used", "This link has already been used") from None
