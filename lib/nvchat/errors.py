"""Exception types raised by nvchat."""


class ChatError(Exception):
    """Base class for all nvchat errors."""


class ConfigError(ChatError):
    """Invalid flag, environment value or persisted setting."""


class ConversationError(ChatError):
    """The conversation file could not be read or written."""


class HistoryLimitError(ChatError):
    """The conversation already holds as many messages as allowed."""

    def __init__(self, path, count: int, limit: int):
        self.path = path
        self.count = count
        self.limit = limit
        super().__init__(
            f"conversation message limit reached ({count} messages, limit {limit})"
        )


class APIError(ChatError):
    """The API answered with an HTTP error status."""

    def __init__(self, status: int, reason: str, body: str):
        self.status = status
        self.reason = reason
        self.body = body
        super().__init__(f"API error: {status} {reason}\n{body}".rstrip())


class TransportError(ChatError):
    """The request never produced an HTTP response."""


class EmptyResponseError(ChatError):
    """A non-streaming response carried no assistant text."""

    def __init__(self, body: str):
        self.body = body
        super().__init__("no assistant content parsed from response")
