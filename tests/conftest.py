# tests/conftest.py
from __future__ import annotations

import os
import uuid
from datetime import datetime, timedelta
from itertools import count
from typing import Iterable, List, Optional

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("PUSH_FUNCTION_URL", "")
os.environ.setdefault("REDIS_URL", "")

from app.errors import MessageStoreError
from app.schemas.message import Message, NewMessage
from app.services.feed import MessageFeed
from app.services.thread_identity import is_conversation_message

BASE_TIME = datetime(2026, 1, 1, 12, 0, 0)

SELLER = "seller-0001"
BUYER = "buyer-0002"
OTHER = "buyer-0003"


class FakeStore:
    """In-memory message store; inserts are published on the feed like the SQL store."""

    def __init__(self, feed: Optional[MessageFeed] = None):
        self.feed = feed
        self.rows: List[Message] = []
        self.fail_select = False
        self.fail_insert = False
        self.fail_mark_read = False
        self.mark_read_calls: List[tuple] = []
        self.inserted: List[NewMessage] = []
        self._clock = count(1)

    def _next_time(self) -> datetime:
        return BASE_TIME + timedelta(seconds=next(self._clock))

    def add(self, sender_id: str, recipient_id: str, content: str = "Bonjour",
            product_id: Optional[str] = None, is_read: bool = False,
            created_at: Optional[datetime] = None) -> Message:
        message = Message(
            id=uuid.uuid4(),
            sender_id=sender_id,
            recipient_id=recipient_id,
            product_id=product_id,
            content=content,
            is_read=is_read,
            created_at=created_at or self._next_time(),
        )
        self.rows.append(message)
        return message

    def get(self, message_id) -> Message:
        return next(m for m in self.rows if m.id == message_id)

    async def select_conversation(self, viewer_id, counterpart_id, product_id=None):
        if self.fail_select:
            raise MessageStoreError("select failed")
        matching = [m for m in self.rows if is_conversation_message(m, viewer_id, counterpart_id, product_id)]
        return sorted(matching, key=lambda m: m.created_at)

    async def insert(self, new_message: NewMessage) -> Message:
        if self.fail_insert:
            raise MessageStoreError("insert failed")
        self.inserted.append(new_message)
        message = Message(id=uuid.uuid4(), created_at=self._next_time(), **new_message.model_dump())
        self.rows.append(message)
        if self.feed is not None:
            await self.feed.publish(message)
        return message

    async def mark_read(self, message_ids: Iterable, recipient_id: str) -> int:
        ids = set(message_ids)
        self.mark_read_calls.append((ids, recipient_id))
        if self.fail_mark_read:
            raise MessageStoreError("update failed")
        changed = 0
        for i, row in enumerate(self.rows):
            if row.id in ids and row.recipient_id == recipient_id and not row.is_read:
                self.rows[i] = row.model_copy(update={"is_read": True})
                changed += 1
        return changed


class FakePush:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[dict] = []

    async def notify(self, recipient_id, title, body, url="/messages", tag="new-message") -> bool:
        self.calls.append({"recipient_id": recipient_id, "title": title, "body": body, "url": url, "tag": tag})
        if self.fail:
            raise RuntimeError("push endpoint down")
        return True


@pytest.fixture()
def feed() -> MessageFeed:
    return MessageFeed()


@pytest.fixture()
def store(feed: MessageFeed) -> FakeStore:
    return FakeStore(feed)


@pytest.fixture()
def push() -> FakePush:
    return FakePush()
