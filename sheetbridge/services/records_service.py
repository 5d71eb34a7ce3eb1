# sheetbridge/services/records_service.py
import logging
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from sheetbridge.errors import DuplicateError
from sheetbridge.models import Record, SubmittedRecord

log = logging.getLogger(__name__)


async def find_by_email(session: AsyncSession, email: str) -> Optional[SubmittedRecord]:
    result = await session.execute(select(SubmittedRecord).where(SubmittedRecord.email == email))
    return result.scalar_one_or_none()


async def check_and_reserve(session: AsyncSession, record: Record) -> SubmittedRecord:
    """Stores ``record`` unless its email is taken.

    The lookup only gives a friendlier answer; two racing submissions can both
    pass it, and the unique index on ``email`` rejects the loser at commit.
    """
    if await find_by_email(session, record.email) is not None:
        raise DuplicateError(record.email)

    db_record = SubmittedRecord(name=record.name, email=record.email)
    session.add(db_record)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise DuplicateError(record.email) from exc
    await session.refresh(db_record)
    log.info("Reserved record for %s", record.email)
    return db_record


async def release(session: AsyncSession, email: str) -> None:
    await session.execute(delete(SubmittedRecord).where(SubmittedRecord.email == email))
    await session.commit()
    log.info("Released record for %s", email)
