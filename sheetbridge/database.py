# sheetbridge/database.py
import logging

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from sheetbridge import models  # noqa: F401  registers tables on SQLModel.metadata

log = logging.getLogger(__name__)


class Database:
    def __init__(self, url: str, echo: bool = False):
        self.engine = create_async_engine(url, echo=echo)
        self.sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)

    async def create_db_and_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        log.info("Database tables ready")

    async def dispose(self) -> None:
        await self.engine.dispose()
