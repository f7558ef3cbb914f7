"""Exception hierarchy for replybot."""


class ReplyBotError(Exception):
    """Base class for all replybot errors."""


class ConfigError(ReplyBotError):
    """Invalid or unusable configuration."""


class GenerationError(ReplyBotError):
    """A response provider failed to produce a reply."""

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.provider = provider


class GenerationTimeout(GenerationError):
    """A response provider did not answer within the configured timeout."""


class ProviderNotReady(GenerationError):
    """The response generator is disabled or failed its connectivity probe."""


class SendError(ReplyBotError):
    """An outbound message could not be delivered to the transport."""

    def __init__(self, message: str, recipient: str = ""):
        super().__init__(message)
        self.recipient = recipient


class TransportNotReady(SendError):
    """The transport client is not connected."""
