class ChatError(Exception):
    """Base class for recoverable chat failures."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MessageValidationError(ChatError, ValueError):

    status_code = 422


class CannotClaimOwnItem(ChatError):

    status_code = 403

    def __init__(self, message: str = "You cannot claim an item you reported") -> None:
        super().__init__(message)


class ItemNotFound(ChatError):

    status_code = 404

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Item {item_id} not found")


class ConversationNotFound(ChatError):

    status_code = 404

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation {conversation_id} not found")


class NotParticipant(ChatError):

    status_code = 403

    def __init__(self, message: str = "Not a participant in this conversation") -> None:
        super().__init__(message)


class BackendError(ChatError):
    """The data store or the realtime layer failed; the action may be retried."""

    status_code = 503


class InvalidCursor(ChatError):

    def __init__(self, cursor: str) -> None:
        super().__init__(f"Invalid cursor {cursor!r}")
