"""
Table-wide realtime feed of inserted messages.

Every subscriber sees every insert; filtering down to a conversation is the
subscriber's job. When REDIS_URL is configured, inserts are also fanned out
to the other API instances over a Redis pub/sub channel.
"""
from typing import Callable, Dict, Optional, Any
from itertools import count
import asyncio
import json
import logging
import uuid

import redis.asyncio as aioredis

from app.config import get_settings
from app.schemas.message import Message

logger = logging.getLogger(__name__)

FeedCallback = Callable[[Message], None]


class Subscription:
    def __init__(self, subscription_id: int, callback: FeedCallback):
        self.id = subscription_id
        self.callback = callback
        self.active = True


class MessageFeed:
    def __init__(self, channel: str = "messages:inserts"):
        self._subscribers: Dict[int, Subscription] = {}
        self._ids = count(1)
        self.channel = channel
        self.instance_id = uuid.uuid4().hex
        self.redis: Optional[Any] = None
        self._listener: Optional[asyncio.Task] = None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: FeedCallback) -> Subscription:
        subscription = Subscription(next(self._ids), callback)
        self._subscribers[subscription.id] = subscription
        return subscription

    def unsubscribe(self, subscription: Optional[Subscription]) -> None:
        if subscription is None:
            return
        subscription.active = False
        self._subscribers.pop(subscription.id, None)

    def deliver(self, message: Message) -> None:
        """Hand an insert event to every local subscriber, in subscription order."""
        for subscription in list(self._subscribers.values()):
            # Unsubscribed by an earlier callback in this same round
            if not subscription.active:
                continue
            try:
                subscription.callback(message)
            except Exception:
                logger.exception("Feed subscriber %s failed on message %s", subscription.id, message.id)

    async def publish(self, message: Message) -> None:
        self.deliver(message)
        if not self.redis:
            return
        try:
            await self.redis.publish(
                self.channel,
                json.dumps({"origin": self.instance_id, "message": message.model_dump(mode="json")}),
            )
        except Exception:
            logger.exception("Failed to publish message %s to redis", message.id)

    def handle_remote(self, raw: Any) -> None:
        """Deliver a row published by another instance."""
        data = json.loads(raw)
        if data.get("origin") == self.instance_id:
            return
        payload = data.get("message")
        if payload:
            self.deliver(Message.model_validate(payload))


async def _redis_listener(feed: MessageFeed) -> None:
    pubsub = feed.redis.pubsub()
    await pubsub.subscribe(feed.channel)
    async for item in pubsub.listen():
        if item is None:
            continue
        if item['type'] == 'message':
            try:
                feed.handle_remote(item['data'])
            except Exception:
                logger.exception('Error processing feed message from redis')


feed = MessageFeed()


def get_feed() -> MessageFeed:
    return feed


def init_feed() -> None:
    """Connect the Redis bridge if REDIS_URL is configured. Needs a running loop."""
    if feed.redis is not None:
        return

    settings = get_settings()
    feed.channel = settings.message_feed_channel
    if not settings.redis_url:
        logger.info("REDIS_URL not configured, message feed is local to this instance")
        return

    try:
        feed.redis = aioredis.from_url(settings.redis_url)
        feed._listener = asyncio.get_running_loop().create_task(_redis_listener(feed))
        logger.info(f"Message feed bridged over redis channel {feed.channel}")
    except Exception as e:
        logger.exception(f'Failed to initialize Redis client: {e}')
        feed.redis = None


async def close_feed() -> None:
    if feed._listener is not None:
        feed._listener.cancel()
        try:
            await feed._listener
        except asyncio.CancelledError:
            pass
        feed._listener = None
    if feed.redis is not None:
        await feed.redis.aclose()
        feed.redis = None
