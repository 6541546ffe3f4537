"""
Live view of one conversation.

A MessageThread keeps, for a (viewer, counterpart, product) triple, an
in-memory list of messages that is loaded once from the store and then
grown from the table-wide insert feed. Incoming messages are marked read
in the background; outgoing messages go through the store and come back
through the feed like any other insert.
"""
import asyncio
import enum
import logging
from typing import Callable, Coroutine, Iterable, List, Optional, Set, Any
from uuid import UUID

from app.errors import InvalidConversation, MessageStoreError
from app.models.message import MediaType
from app.schemas.message import Message, NewMessage
from app.services.feed import MessageFeed, Subscription
from app.services.message_store import MessageStore
from app.services.push import PushNotifier, preview
from app.services.thread_identity import (
    generate_thread_id,
    is_conversation_message,
    other_participant,
    validate_participants,
)

logger = logging.getLogger(__name__)

PUSH_TITLE = "💬 Nouveau message"
PUSH_URL = "/messages"
PUSH_TAG = "new-message"
ATTACHMENT_PREFIX = "📎"
DEFAULT_ATTACHMENT_NAME = "Pièce jointe"


class ThreadState(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    LIVE = "live"


def attachment_placeholder(media_name: Optional[str]) -> str:
    return f"{ATTACHMENT_PREFIX} {media_name or DEFAULT_ATTACHMENT_NAME}"


class MessageThread:
    def __init__(
        self,
        store: MessageStore,
        feed: MessageFeed,
        push: PushNotifier,
        viewer_id: str,
        seller_id: str,
        buyer_id: str,
        product_id: Optional[str] = None,
        on_message: Optional[Callable[[Message], None]] = None,
        preview_length: int = 80,
    ):
        self.store = store
        self.feed = feed
        self.push = push
        self.viewer_id = viewer_id
        self.seller_id = seller_id
        self.buyer_id = buyer_id
        self.product_id = product_id or None
        self.on_message = on_message
        self.preview_length = preview_length

        self._messages: List[Message] = []
        self._ids: Set[UUID] = set()
        self._state = ThreadState.IDLE
        self._generation = 0
        self._subscription: Optional[Subscription] = None
        self._sending = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def thread_id(self) -> str:
        return generate_thread_id(self.seller_id, self.buyer_id, self.product_id)

    @property
    def counterpart_id(self) -> str:
        return other_participant(self.viewer_id, self.seller_id, self.buyer_id)

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def state(self) -> ThreadState:
        return self._state

    @property
    def loading(self) -> bool:
        return self._state == ThreadState.LOADING

    @property
    def sending(self) -> bool:
        return self._sending

    def _check_participants(self) -> None:
        validate_participants(self.seller_id, self.buyer_id)
        if self.viewer_id not in (self.seller_id, self.buyer_id):
            raise InvalidConversation("Viewer is not a participant of this conversation")

    async def start(self) -> None:
        """Load history and go live. Invalid triples leave the thread idle."""
        self._teardown()
        try:
            self._check_participants()
        except InvalidConversation as e:
            logger.warning(f"Not syncing thread {self.seller_id}/{self.buyer_id}: {e}")
            return

        self._generation += 1
        generation = self._generation
        self._state = ThreadState.LOADING
        # Subscribe before fetching so inserts racing the fetch are not lost
        self._subscription = self.feed.subscribe(self._on_feed_event)
        logger.info(f"Thread {self.thread_id} subscribed for viewer {self.viewer_id}")
        await self._load(generation)

    def stop(self) -> None:
        self._teardown()
        self._generation += 1

    async def retarget(self, seller_id: str, buyer_id: str, product_id: Optional[str] = None) -> None:
        """Switch to another conversation; the old subscription is closed first."""
        if (seller_id, buyer_id, product_id or None) == (self.seller_id, self.buyer_id, self.product_id):
            return
        self.stop()
        self.seller_id = seller_id
        self.buyer_id = buyer_id
        self.product_id = product_id or None
        self._messages = []
        self._ids = set()
        await self.start()

    async def refetch(self) -> None:
        if self._state == ThreadState.IDLE:
            return
        await self._load(self._generation)

    async def __aenter__(self) -> "MessageThread":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _teardown(self) -> None:
        if self._subscription is not None:
            self.feed.unsubscribe(self._subscription)
            self._subscription = None
            logger.info(f"Thread {self.thread_id} unsubscribed for viewer {self.viewer_id}")
        self._state = ThreadState.IDLE

    async def _load(self, generation: int) -> None:
        counterpart_id = self.counterpart_id
        try:
            history = await self.store.select_conversation(self.viewer_id, counterpart_id, self.product_id)
        except Exception as e:
            logger.warning(f"Failed to load history for thread {self.thread_id}: {e}")
            history = []

        if generation != self._generation:
            logger.debug(f"Discarding stale history for {self.viewer_id}/{counterpart_id}")
            return

        self._merge_history(history)
        self._state = ThreadState.LIVE

        unread = [m.id for m in history if m.recipient_id == self.viewer_id and not m.is_read]
        if unread:
            self._spawn(self._mark_read(unread))

    def _merge_history(self, history: List[Message]) -> None:
        # Feed events delivered during the load stay, after the history
        history_ids = {m.id for m in history}
        live = [m for m in self._messages if m.id not in history_ids]
        self._messages = list(history) + live
        self._ids = history_ids | {m.id for m in live}

    def _on_feed_event(self, message: Message) -> None:
        if self._state == ThreadState.IDLE:
            return
        if not is_conversation_message(message, self.viewer_id, self.counterpart_id, self.product_id):
            return
        if message.id in self._ids:
            return

        self._messages.append(message)
        self._ids.add(message.id)

        if message.recipient_id == self.viewer_id and not message.is_read:
            self._spawn(self._mark_read([message.id]))
        if self.on_message is not None:
            self.on_message(message)

    async def _mark_read(self, message_ids: Iterable[UUID]) -> None:
        ids = list(message_ids)
        try:
            await self.store.mark_read(ids, self.viewer_id)
        except Exception as e:
            logger.warning(f"Failed to mark {len(ids)} message(s) read in thread {self.thread_id}: {e}")

    async def send(
        self,
        content: str,
        media_url: Optional[str] = None,
        media_type: Optional[MediaType] = None,
        media_name: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> bool:
        """Insert a message for the counterpart. Returns False if nothing was stored.

        The message is not appended locally; it shows up through the feed.
        """
        text = (content or "").strip()
        if not text and not media_url:
            return False
        try:
            self._check_participants()
        except InvalidConversation as e:
            logger.warning(f"Refusing to send in thread {self.seller_id}/{self.buyer_id}: {e}")
            return False

        recipient_id = self.counterpart_id
        new_message = NewMessage(
            sender_id=self.viewer_id,
            recipient_id=recipient_id,
            product_id=self.product_id,
            subject=subject or None,
            content=text or attachment_placeholder(media_name),
            media_url=media_url or None,
            media_type=media_type or None,
            media_name=media_name or None,
        )

        self._sending = True
        try:
            stored = await self.store.insert(new_message)
        except MessageStoreError as e:
            logger.warning(f"Failed to send message in thread {self.thread_id}: {e}")
            return False
        finally:
            self._sending = False

        self._spawn(self._notify(recipient_id, stored.content))
        return True

    async def _notify(self, recipient_id: str, content: str) -> None:
        try:
            await self.push.notify(
                recipient_id,
                PUSH_TITLE,
                preview(content, self.preview_length),
                url=PUSH_URL,
                tag=PUSH_TAG,
            )
        except Exception as e:
            logger.debug(f"Push to {recipient_id} failed: {e}")

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for outstanding read-marks and pushes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
