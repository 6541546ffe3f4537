from app.schemas.message import (
    Message,
    NewMessage,
    SendMessageRequest,
    SendMessageResponse,
    MessageDto,
    ConversationSummary,
)

__all__ = [
    "Message", "NewMessage",
    "SendMessageRequest", "SendMessageResponse",
    "MessageDto", "ConversationSummary",
]
