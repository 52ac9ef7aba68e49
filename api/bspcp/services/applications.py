"""Membership application lifecycle.

Application status moves pending -> approved | rejected under admin control.
Approval assigns a membership number, upserts the member's credential with a
generated username and no password, and parks the account in
``pending_password_setup`` until the member sets a password (or logs in).

Username generation tries, in order, firstInitial+lastName, firstName+lastInitial
and firstName+lastName, each as-is and then with suffixes 2..999, before
falling back to a millisecond timestamp and finally a random base36 tail.
The credential write runs in a SAVEPOINT guarded by the unique index on
``username``, so two approvals racing for the same name retry instead of
colliding.
"""

import logging
import random
import re
import string
import time
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.core.errors import Conflict
from bspcp.models import (
    ApplicationStatus,
    Certificate,
    Credential,
    CpdRecord,
    Member,
    MemberPayment,
    MemberStatus,
    PaymentUploadLog,
    PersonalDocuments,
)
from bspcp.models.base import utcnow

logger = logging.getLogger(__name__)

MAX_SUFFIX = 999
MAX_CREDENTIAL_ATTEMPTS = 5

_NON_ASCII_LETTERS = re.compile(r"[^a-z]")
_BASE36 = string.digits + string.ascii_lowercase


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


def clean_name(value: str | None) -> str:
    return _NON_ASCII_LETTERS.sub("", (value or "").strip().lower())


def username_base(first_name: str | None, last_name: str | None) -> str:
    first, last = clean_name(first_name), clean_name(last_name)
    base = f"{first[:1]}{last}"
    if len(base) < 2:
        base = first or "user"
    return base


def username_strategies(first_name: str | None, last_name: str | None) -> list[str]:
    first, last = clean_name(first_name), clean_name(last_name)
    strategies = [username_base(first_name, last_name), f"{first}{last[:1]}", f"{first}{last}"]
    return [s for s in strategies if s]


def random_suffix(length: int = 6) -> str:
    return "".join(random.choice(_BASE36) for _ in range(length))


def membership_number(member_id: int, now: datetime | None = None) -> str:
    """``BSPCP<YY><id zero-padded to 4>``."""
    now = now or utcnow()
    return f"BSPCP{now:%y}{member_id:04d}"


async def _username_taken(db: AsyncSession, username: str, exclude_member_id: int | None) -> bool:
    query = select(Credential.id).where(Credential.username == username)
    if exclude_member_id is not None:
        query = query.where(Credential.member_id != exclude_member_id)
    return (await db.execute(query)).first() is not None


async def generate_username(
    db: AsyncSession,
    first_name: str | None,
    last_name: str | None,
    exclude_member_id: int | None = None,
) -> str:
    """Return the first free username for a name.

    ``exclude_member_id`` ignores that member's own credential, so
    re-approving someone hands back the username they already have.
    """
    for strategy in username_strategies(first_name, last_name):
        if not await _username_taken(db, strategy, exclude_member_id):
            return strategy
        for suffix in range(2, MAX_SUFFIX + 1):
            candidate = f"{strategy}{suffix}"
            if not await _username_taken(db, candidate, exclude_member_id):
                return candidate

    base = username_base(first_name, last_name)
    fallback = f"{base}{int(time.time() * 1000)}"
    if not await _username_taken(db, fallback, exclude_member_id):
        return fallback
    return f"{base}{random_suffix()}"


async def upsert_credential(db: AsyncSession, member: Member) -> Credential:
    """Create or refresh the member's single credential row with a fresh username and no password."""
    for attempt in range(1, MAX_CREDENTIAL_ATTEMPTS + 1):
        username = await generate_username(db, member.first_name, member.last_name, exclude_member_id=member.id)
        try:
            async with db.begin_nested():
                result = await db.execute(select(Credential).where(Credential.member_id == member.id))
                credential = result.scalar_one_or_none()
                if credential is None:
                    credential = Credential(member_id=member.id, username=username)
                    db.add(credential)
                else:
                    credential.username = username
                    credential.password_hash = None
                    credential.salt = None
                await db.flush()
            return credential
        except IntegrityError:
            logger.warning(
                "Username %s claimed concurrently for member %s (attempt %d)", username, member.id, attempt
            )
    raise Conflict("Could not allocate a unique username", "Please retry the approval")


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


@dataclass
class ReviewOutcome:
    member: Member
    username: str | None = None


async def approve(db: AsyncSession, member: Member, review_comment: str | None) -> ReviewOutcome:
    member.application_status = ApplicationStatus.APPROVED
    member.member_status = MemberStatus.PENDING_PASSWORD_SETUP
    member.review_comment = review_comment
    member.reviewed_at = utcnow()
    if not member.membership_number:
        member.membership_number = membership_number(member.id)
        logger.info("Assigned membership number %s to member %s", member.membership_number, member.id)

    credential = await upsert_credential(db, member)
    logger.info("Member %s approved; username %s", member.id, credential.username)
    return ReviewOutcome(member=member, username=credential.username)


def reject(member: Member, review_comment: str | None) -> ReviewOutcome:
    member.application_status = ApplicationStatus.REJECTED
    member.review_comment = review_comment
    member.reviewed_at = utcnow()
    logger.info("Member %s application rejected", member.id)
    return ReviewOutcome(member=member)


def reopen(member: Member, review_comment: str | None) -> ReviewOutcome:
    member.application_status = ApplicationStatus.PENDING
    member.review_comment = review_comment
    logger.info("Member %s application returned to pending", member.id)
    return ReviewOutcome(member=member)


async def review(
    db: AsyncSession, member: Member, status: ApplicationStatus, review_comment: str | None
) -> ReviewOutcome:
    if status == ApplicationStatus.APPROVED:
        return await approve(db, member, review_comment)
    if status == ApplicationStatus.REJECTED:
        return reject(member, review_comment)
    return reopen(member, review_comment)


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


async def member_file_paths(db: AsyncSession, member: Member) -> list[str]:
    """Every stored file that belongs to ``member``."""
    paths: list[str | None] = [member.payment_proof_path]

    docs = await db.execute(select(PersonalDocuments).where(PersonalDocuments.member_id == member.id))
    for doc in docs.scalars():
        paths.extend([doc.id_document_path, doc.profile_image_path])

    certs = await db.execute(select(Certificate.file_path).where(Certificate.member_id == member.id))
    paths.extend(certs.scalars())

    cpd = await db.execute(select(CpdRecord.document_path).where(CpdRecord.member_id == member.id))
    paths.extend(cpd.scalars())

    proofs = await db.execute(select(PaymentUploadLog.file_path).where(PaymentUploadLog.member_id == member.id))
    paths.extend(proofs.scalars())

    fees = await db.execute(select(MemberPayment.proof_path).where(MemberPayment.member_id == member.id))
    paths.extend(fees.scalars())

    return sorted({p for p in paths if p})


async def delete_application(db: AsyncSession, member: Member) -> list[str]:
    """Delete a member and (via ON DELETE CASCADE) all dependent rows.

    Returns the file paths to remove once the transaction has committed.
    """
    paths = await member_file_paths(db, member)
    await db.delete(member)
    await db.flush()
    logger.info("Deleted application %s (%d files queued for removal)", member.id, len(paths))
    return paths
