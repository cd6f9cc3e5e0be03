class DatabotError(Exception):
    """Base class for every error raised by the bot."""


class ConfigError(DatabotError):
    """Settings are missing or invalid; the service must not start."""


class AuthError(DatabotError):
    """Inbound webhook call did not carry the expected shared secret."""


class UpstreamTransportError(DatabotError):
    """A Telegram Bot API call failed or reported non-success."""


class PersistenceError(DatabotError):
    """The store rejected a read or write."""


class ValidationError(DatabotError):
    """Malformed command arguments.

    ``usage`` is the Markdown hint sent back to the chat.
    """

    def __init__(self, usage: str) -> None:
        super().__init__(usage)
        self.usage = usage
