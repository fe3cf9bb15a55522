class ChatError(Exception):
    """Base class for failures reported back through the acknowledgment."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_ack(self) -> dict:
        return {"success": False, "message": self.message, "error": self.code}


class ValidationError(ChatError):
    pass


class AlreadyExists(ChatError):
    pass


class NotFound(ChatError):
    pass


class Unauthorized(ChatError):
    pass


class NotMember(ChatError):
    pass
