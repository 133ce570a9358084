import asyncio
import logging
from typing import Optional
from uuid import UUID

from portal.workers.celery_app import celery_app
from portal.core.database import AsyncSessionLocal
from portal.models.enums import AccessType
from portal.models.file import FileAccessLog

logger = logging.getLogger(__name__)


def run_async(coro):
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def write_access_log(db, file_id: str, user_id: Optional[str], access_type: str) -> FileAccessLog:
    entry = FileAccessLog(
        file_id=UUID(file_id),
        user_id=UUID(user_id) if user_id else None,
        access_type=AccessType(access_type),
    )
    db.add(entry)
    await db.commit()
    return entry


@celery_app.task(bind=True, max_retries=3)
def record_file_access_task(self, file_id: str, user_id: Optional[str], access_type: str):
    async def _record():
        async with AsyncSessionLocal() as db:
            entry = await write_access_log(db, file_id, user_id, access_type)
            return {"id": str(entry.id), "file_id": file_id, "access_type": access_type}

    try:
        return run_async(_record())
    except Exception as e:
        logger.warning("Access log write failed for file %s: %s", file_id, e)
        self.retry(exc=e, countdown=10)
