import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from app.config import get_settings
from app.dependencies import (
    TOKEN_COOKIE_NAME,
    get_current_user_id,
    get_message_store,
    get_push_notifier,
    user_id_from_token,
)
from app.errors import InvalidConversation, MessageStoreError
from app.schemas.message import (
    ConversationSummary,
    Message,
    MessageDto,
    SendMessageRequest,
    SendMessageResponse,
)
from app.services.feed import get_feed
from app.services.message_store import SqlMessageStore
from app.services.message_thread import MessageThread
from app.services.push import PushNotifier
from app.services.thread_identity import generate_thread_id, validate_participants

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)


def _make_message_dto(msg: Message, current_user_id: str) -> MessageDto:
    return MessageDto(
        id=msg.id,
        thread_id=generate_thread_id(msg.sender_id, msg.recipient_id, msg.product_id),
        sender_id=msg.sender_id,
        recipient_id=msg.recipient_id,
        product_id=msg.product_id,
        subject=msg.subject,
        content=msg.content,
        media_url=msg.media_url,
        media_type=msg.media_type,
        media_name=msg.media_name,
        created_at=msg.created_at,
        is_mine=msg.sender_id == current_user_id,
        is_read=msg.is_read,
    )


def _open_thread(store, push: PushNotifier, viewer_id: str, counterpart_id: str,
                 product_id: Optional[str], on_message=None) -> MessageThread:
    return MessageThread(
        store,
        get_feed(),
        push,
        viewer_id=viewer_id,
        seller_id=counterpart_id,
        buyer_id=viewer_id,
        product_id=product_id,
        on_message=on_message,
        preview_length=settings.push_preview_length,
    )


@router.get("", response_model=List[ConversationSummary])
async def get_my_conversations(
    user_id: str = Depends(get_current_user_id),
    store: SqlMessageStore = Depends(get_message_store),
):
    """Inbox: one entry per counterpart and product, newest first."""
    try:
        return await store.list_conversations(user_id)
    except MessageStoreError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/thread", response_model=List[MessageDto])
async def get_thread(
    counterpart: str = Query(...),
    product: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    store: SqlMessageStore = Depends(get_message_store),
):
    """Conversation history; incoming unread messages are marked read."""
    try:
        validate_participants(user_id, counterpart)
    except InvalidConversation as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        history = await store.select_conversation(user_id, counterpart, product)
    except MessageStoreError as e:
        raise HTTPException(status_code=502, detail=str(e))

    unread = [m.id for m in history if m.recipient_id == user_id and not m.is_read]
    if unread:
        try:
            await store.mark_read(unread, user_id)
        except MessageStoreError as e:
            logger.warning(f"Failed to mark messages read for {user_id}: {e}")

    return [_make_message_dto(m, user_id) for m in history]


@router.post("/thread", response_model=SendMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    body: SendMessageRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    store: SqlMessageStore = Depends(get_message_store),
    push: PushNotifier = Depends(get_push_notifier),
):
    try:
        validate_participants(user_id, body.counterpart_id)
    except InvalidConversation as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not body.content.strip() and not body.media_url:
        raise HTTPException(status_code=400, detail="Message is empty")

    thread = _open_thread(store, push, user_id, body.counterpart_id, body.product_id)
    ok = await thread.send(
        body.content,
        media_url=body.media_url,
        media_type=body.media_type,
        media_name=body.media_name,
        subject=body.subject,
    )
    if not ok:
        raise HTTPException(status_code=502, detail="Could not send message")

    # Push runs after the response
    background_tasks.add_task(thread.wait_idle)
    return SendMessageResponse(success=True, thread_id=thread.thread_id)


@router.websocket("/ws")
async def thread_websocket(
    websocket: WebSocket,
    counterpart: str = Query(...),
    product: Optional[str] = Query(None),
    token: Optional[str] = Query(None),
    store: SqlMessageStore = Depends(get_message_store),
    push: PushNotifier = Depends(get_push_notifier),
):
    """Live conversation: a snapshot of the history, then every new message.

    Text frames from the client are sent as messages in the conversation.
    """
    await websocket.accept()
    user_id = user_id_from_token(token or websocket.cookies.get(TOKEN_COOKIE_NAME))
    if not user_id:
        await websocket.close(code=1008)
        return

    try:
        validate_participants(user_id, counterpart)
    except InvalidConversation:
        await websocket.close(code=1008)
        return

    outbox: asyncio.Queue = asyncio.Queue()
    thread = _open_thread(store, push, user_id, counterpart, product, on_message=outbox.put_nowait)

    async def forward() -> None:
        while True:
            msg = await outbox.get()
            await websocket.send_json({
                "event": "message:new",
                "message": _make_message_dto(msg, user_id).model_dump(mode="json", by_alias=True),
            })

    async with thread:
        snapshot = thread.messages
        # Anything queued so far is already part of the snapshot
        while not outbox.empty():
            outbox.get_nowait()
        await websocket.send_json({
            "event": "thread:snapshot",
            "threadId": thread.thread_id,
            "messages": [_make_message_dto(m, user_id).model_dump(mode="json", by_alias=True) for m in snapshot],
        })

        forwarder = asyncio.create_task(forward())
        try:
            while True:
                text = await websocket.receive_text()
                ok = await thread.send(text)
                await websocket.send_json({"event": "message:sent", "success": ok})
        except WebSocketDisconnect:
            pass
        finally:
            forwarder.cancel()
            await thread.wait_idle()
