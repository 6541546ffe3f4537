import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Tuple
from uuid import UUID

from sqlalchemy import select, and_, or_, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.errors import MessageStoreError
from app.models.message import MessageRow
from app.schemas.message import Message, NewMessage, ConversationSummary
from app.services.feed import MessageFeed
from app.services.thread_identity import generate_thread_id

logger = logging.getLogger(__name__)


class MessageStore(Protocol):
    async def select_conversation(self, viewer_id: str, counterpart_id: str,
                                  product_id: Optional[str] = None) -> List[Message]: ...

    async def insert(self, new_message: NewMessage) -> Message: ...

    async def mark_read(self, message_ids: Iterable[UUID], recipient_id: str) -> int: ...


def _pair_condition(viewer_id: str, counterpart_id: str):
    return or_(
        and_(MessageRow.sender_id == viewer_id, MessageRow.recipient_id == counterpart_id),
        and_(MessageRow.sender_id == counterpart_id, MessageRow.recipient_id == viewer_id),
    )


def _subject_condition(product_id: Optional[str]):
    if not product_id:
        return MessageRow.product_id.is_(None)
    return MessageRow.product_id == product_id


class SqlMessageStore:
    """Message store over the `messages` table.

    Successful inserts are published on the feed, which plays the role of the
    database change stream for subscribers.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], feed: Optional[MessageFeed] = None):
        self.session_factory = session_factory
        self.feed = feed

    async def select_conversation(self, viewer_id: str, counterpart_id: str,
                                  product_id: Optional[str] = None) -> List[Message]:
        stmt = (
            select(MessageRow)
            .where(_pair_condition(viewer_id, counterpart_id), _subject_condition(product_id))
            .order_by(MessageRow.created_at.asc())
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise MessageStoreError(f"Failed to load conversation: {e}") from e
        return [Message.model_validate(row) for row in rows]

    async def insert(self, new_message: NewMessage) -> Message:
        row = MessageRow(**new_message.model_dump())
        try:
            async with self.session_factory() as db:
                db.add(row)
                await db.commit()
                await db.refresh(row)
        except SQLAlchemyError as e:
            raise MessageStoreError(f"Failed to insert message: {e}") from e

        message = Message.model_validate(row)
        if self.feed is not None:
            await self.feed.publish(message)
        return message

    async def mark_read(self, message_ids: Iterable[UUID], recipient_id: str) -> int:
        ids = list(message_ids)
        if not ids:
            return 0
        stmt = (
            update(MessageRow)
            .where(
                MessageRow.id.in_(ids),
                MessageRow.recipient_id == recipient_id,
                MessageRow.is_read == False,
            )
            .values(is_read=True)
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                await db.commit()
        except SQLAlchemyError as e:
            raise MessageStoreError(f"Failed to mark messages read: {e}") from e
        return result.rowcount

    async def list_conversations(self, viewer_id: str) -> List[ConversationSummary]:
        """Inbox for a user: one entry per (counterpart, product), newest first."""
        stmt = (
            select(MessageRow)
            .where(or_(MessageRow.sender_id == viewer_id, MessageRow.recipient_id == viewer_id))
            .order_by(MessageRow.created_at.asc())
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise MessageStoreError(f"Failed to load conversations: {e}") from e

        grouped: Dict[Tuple[str, Optional[str]], List[MessageRow]] = {}
        for row in rows:
            counterpart = row.recipient_id if row.sender_id == viewer_id else row.sender_id
            grouped.setdefault((counterpart, row.product_id), []).append(row)

        out = []
        for (counterpart, product_id), messages in grouped.items():
            latest = messages[-1]
            out.append(
                ConversationSummary(
                    thread_id=generate_thread_id(viewer_id, counterpart, product_id),
                    counterpart_id=counterpart,
                    product_id=product_id,
                    last_message=latest.content,
                    last_message_at=latest.created_at,
                    unread_count=sum(1 for m in messages if m.recipient_id == viewer_id and not m.is_read),
                )
            )
        out.sort(key=lambda c: c.last_message_at, reverse=True)
        return out

    async def unread_by_recipient(self, older_than: datetime) -> Dict[str, int]:
        """Count unread messages per recipient, considering only messages created before `older_than`."""
        stmt = (
            select(MessageRow.recipient_id, func.count(MessageRow.id))
            .where(MessageRow.is_read == False, MessageRow.created_at <= older_than)
            .group_by(MessageRow.recipient_id)
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return {recipient_id: count for recipient_id, count in result.all()}
        except SQLAlchemyError as e:
            raise MessageStoreError(f"Failed to count unread messages: {e}") from e
