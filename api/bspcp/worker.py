"""Celery worker configuration.

Runs the nightly backup on a beat schedule. Start with:

    celery -A bspcp.worker worker --beat
"""

import asyncio
import logging

from celery import Celery
from celery.schedules import crontab

from bspcp.core.config import settings
from bspcp.core.database import Database
from bspcp.services.backup import create_backup

logger = logging.getLogger(__name__)

celery_app = Celery(
    "bspcp",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone=settings.timezone,
    enable_utc=True,
    beat_schedule={
        "nightly-backup": {
            "task": "bspcp.worker.nightly_backup",
            "schedule": crontab(hour=2, minute=0),
        },
    },
)


async def _run_backup() -> dict:
    database = Database(settings.database_url)
    try:
        async with database.session_factory() as db:
            record = await create_backup(settings, db, created_by="scheduler")
            await db.commit()
            return {"id": record.id, "filename": record.filename, "filesize": record.filesize}
    finally:
        await database.dispose()


@celery_app.task(name="bspcp.worker.nightly_backup")
def nightly_backup() -> dict:
    result = asyncio.run(_run_backup())
    logger.info("Scheduled backup %s written", result["filename"])
    return result
