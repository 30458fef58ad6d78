import asyncio
import logging
import json
import time
import uuid
from datetime import datetime, timezone

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy import select

from common.config import settings
from common.models import Reminder, ReminderStatus, User, UserSettings
from common.dates import format_long_datetime, resolve_timezone
from common.email import email_adapter
from common.reminders import transition_status

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("worker")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)

# DB Setup
engine = create_async_engine(settings.DATABASE_URL)
AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# Redis Setup
redis_client = redis.from_url(settings.REDIS_URL or "redis://localhost:6379/0", decode_responses=True)

DEFAULT_QUEUE = "default_queue"
DLQ = "dead_letter_queue"
MAX_ATTEMPTS = 5
REMINDERS_CHECK = "reminders.check"


async def process_job(job_data: dict):
    topic = job_data.get("topic")
    payload = job_data.get("payload", {})
    job_id = job_data.get("job_id")
    attempt = job_data.get("attempt", 1)

    logger.info(f"Processing job: {topic} (id: {job_id}, attempt: {attempt})")

    try:
        if topic == REMINDERS_CHECK:
            await handle_reminders_check(job_id, payload)
        else:
            logger.warning(f"Unknown topic: {topic}")
            return
    except Exception as e:
        logger.error(f"Job failed (attempt {attempt}): {e}")
        if attempt < MAX_ATTEMPTS:
            job_data["attempt"] = attempt + 1
            wait_time = min(2 ** attempt, 60)
            logger.info(f"Retrying in {wait_time}s...")
            await asyncio.sleep(wait_time)
            await redis_client.rpush(DEFAULT_QUEUE, json.dumps(job_data))
        else:
            logger.error(f"Job exceeded max attempts, moving to DLQ: {job_id}")
            await redis_client.rpush(DLQ, json.dumps(job_data))


async def _deliver(reminder: Reminder, user: User | None, user_settings: UserSettings | None) -> bool:
    if user is None or not user.email:
        logger.warning(f"Skipping reminder {reminder.id}: no email for user {reminder.user_id}")
        return False
    tz_name = user_settings.timezone if user_settings is not None and user_settings.timezone else "UTC"
    reminder_time = reminder.reminder_time
    if reminder_time.tzinfo is None:
        reminder_time = reminder_time.replace(tzinfo=timezone.utc)
    local_time = format_long_datetime(reminder_time.astimezone(resolve_timezone(tz_name)))
    await email_adapter.send_reminder(user.email, reminder.title, reminder.description, local_time)
    return True


async def handle_reminders_check(job_id: str, payload: dict) -> int:
    """Email every pending reminder that is due and mark it sent.

    A failed send leaves the reminder pending so the next check retries it.
    """
    now = utc_now()
    sent = 0
    async with AsyncSessionLocal() as db:
        rows = (await db.execute(
            select(Reminder, User, UserSettings)
            .outerjoin(User, User.id == Reminder.user_id)
            .outerjoin(UserSettings, UserSettings.user_id == Reminder.user_id)
            .where(Reminder.status == ReminderStatus.pending, Reminder.reminder_time <= now)
            .order_by(Reminder.reminder_time.asc())
        )).all()
        logger.info(f"Found {len(rows)} due reminders")

        for reminder, user, user_settings in rows:
            try:
                delivered = await _deliver(reminder, user, user_settings)
            except Exception as e:
                logger.error(f"Failed to send reminder {reminder.id}: {e}")
                continue
            if not delivered:
                continue
            reminder.status = transition_status(reminder.status, ReminderStatus.sent)
            reminder.updated_at = utc_now()
            await db.commit()
            sent += 1

    logger.info(f"Reminder check {job_id} complete: {sent} sent")
    return sent


async def worker_loop():
    logger.info("Worker started, listening for jobs...")
    last_check = 0.0
    while True:
        try:
            if time.monotonic() - last_check >= settings.REMINDER_CHECK_INTERVAL_SECONDS:
                last_check = time.monotonic()
                await process_job({"job_id": str(uuid.uuid4()), "topic": REMINDERS_CHECK, "payload": {}})
            result = await redis_client.blpop(DEFAULT_QUEUE, timeout=5)
            if result:
                _, raw_data = result
                job_data = json.loads(raw_data)
                await process_job(job_data)
        except Exception as e:
            logger.error(f"Error in worker loop: {e}")
            await asyncio.sleep(5)

if __name__ == "__main__":
    asyncio.run(worker_loop())
