"""
Scheduled unread-message reminders.

Every few minutes, recipients with messages left unread for longer than the
configured delay get one push reminder, at most once per delay window.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import get_settings
from app.database import async_session
from app.errors import MessageStoreError
from app.services.message_store import SqlMessageStore
from app.services.push import PushNotifier, push_notifier

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

REMINDER_TITLE = "💬 Messages non lus"
REMINDER_TAG = "unread-reminder"

# recipient_id -> last reminder time (UTC)
last_reminded: Dict[str, datetime] = {}


def reminder_body(count: int) -> str:
    if count == 1:
        return "Vous avez 1 message non lu"
    return f"Vous avez {count} messages non lus"


async def send_unread_reminders(
    store: Optional[SqlMessageStore] = None,
    push: Optional[PushNotifier] = None,
    now: Optional[datetime] = None,
) -> int:
    """Push a reminder to each recipient with stale unread messages. Returns reminders sent."""
    settings = get_settings()
    store = store or SqlMessageStore(async_session)
    push = push or push_notifier
    now = now or datetime.utcnow()
    delay = timedelta(minutes=settings.unread_reminder_delay_min)

    try:
        counts = await store.unread_by_recipient(now - delay)
    except MessageStoreError as e:
        logger.error(f"Unread reminder query failed: {e}")
        return 0

    sent = 0
    for recipient_id, count in counts.items():
        last = last_reminded.get(recipient_id)
        if last is not None and now - last < delay:
            continue
        if await push.notify(recipient_id, REMINDER_TITLE, reminder_body(count), url="/messages", tag=REMINDER_TAG):
            last_reminded[recipient_id] = now
            sent += 1

    logger.info(f"Unread reminders: {sent} sent for {len(counts)} recipients")
    return sent


def start_scheduler():
    """Start the scheduler with the unread reminder job, if enabled."""
    settings = get_settings()
    if not settings.unread_reminder_enabled:
        logger.info("Unread reminders disabled, scheduler not started")
        return

    scheduler.add_job(
        send_unread_reminders,
        IntervalTrigger(minutes=settings.unread_reminder_interval_min),
        id='unread_message_reminders',
        name='Push reminders for unread messages',
        replace_existing=True
    )

    scheduler.start()
    logger.info(f"Scheduler started - unread reminders every {settings.unread_reminder_interval_min} min")


def stop_scheduler():
    """Stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
