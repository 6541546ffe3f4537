"""
Conversation identity.

A conversation is never stored. Both parties derive the same id from the
participant pair (order-normalized) and the optional product the
conversation is about, so a seller and a buyer converge on one thread
without negotiating.
"""
from typing import Optional

from app.errors import InvalidConversation
from app.schemas.message import Message

NO_SUBJECT = "general"
SEPARATOR = ":"


def generate_thread_id(user_a: str, user_b: str, product_id: Optional[str] = None) -> str:
    first, second = (user_a, user_b) if user_a < user_b else (user_b, user_a)
    return SEPARATOR.join((first, second, product_id or NO_SUBJECT))


def validate_participants(user_a: Optional[str], user_b: Optional[str]) -> None:
    if not user_a or not user_b:
        raise InvalidConversation("Both participant ids are required")
    if user_a == user_b:
        raise InvalidConversation("Cannot message yourself")


def other_participant(viewer_id: str, user_a: str, user_b: str) -> str:
    """Return whichever configured participant is not the viewer."""
    return user_b if viewer_id == user_a else user_a


def is_conversation_message(
    message: Message,
    viewer_id: str,
    counterpart_id: str,
    product_id: Optional[str] = None,
) -> bool:
    """True if the message belongs to the (viewer, counterpart, product) conversation."""
    pair_matches = (
        (message.sender_id == viewer_id and message.recipient_id == counterpart_id)
        or (message.sender_id == counterpart_id and message.recipient_id == viewer_id)
    )
    # Exact match: a general conversation only takes messages without a product
    return pair_matches and message.product_id == (product_id or None)
