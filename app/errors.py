class MessagingError(Exception):
    """Base class for messaging failures."""


class InvalidConversation(MessagingError):
    """Participant ids are missing, equal, or do not include the viewer."""


class EmptyMessage(MessagingError):
    """A message with neither text nor media."""


class MessageStoreError(MessagingError):
    """The message store rejected a read or write."""
