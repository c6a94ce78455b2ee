"""Chat domain errors.

Every logical failure carries a stable ``code`` (sent to clients as-is) and the
HTTP status used when it surfaces through a REST endpoint.
"""


class ChatError(Exception):

    code = "ChatError"
    status_code = 400

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)


class Unauthorized(ChatError):
    """Missing or invalid credentials."""

    code = "Unauthorized"
    status_code = 401


class NotAParticipant(ChatError):
    """User is not a participant of this conversation."""

    code = "NotAParticipant"
    status_code = 403


class ConversationNotFound(ChatError):
    """Conversation not found."""

    code = "ConversationNotFound"
    status_code = 404


class UserNotFound(ChatError):
    """User not found."""

    code = "UserNotFound"
    status_code = 404


class EmptyMessage(ChatError):
    """Message text cannot be empty."""

    code = "EmptyMessage"
    status_code = 400


class MessageTooLong(ChatError):
    """Message text is too long."""

    code = "MessageTooLong"
    status_code = 400


class InvalidParticipant(ChatError):
    """Cannot start a conversation with yourself."""

    code = "InvalidParticipant"
    status_code = 400


class BadRequest(ChatError):
    """Malformed event."""

    code = "BadRequest"
    status_code = 400


class InternalError(ChatError):
    """Something went wrong on our side. Try again."""

    code = "InternalError"
    status_code = 500


class ConnectionLost(Exception):
    """Raised by a connection handle whose socket is gone. Triggers cleanup only."""
