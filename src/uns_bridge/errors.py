"""Exceptions for uns-bridge: connection faults, tag reads, publishes, shutdown and mapping load."""


class UnsBridgeError(Exception):
    """Base exception for uns-bridge."""

    pass


class BridgeConnectionError(UnsBridgeError):
    """Raised when a tag source or message sink cannot connect, or loses its session mid-run."""

    def __init__(
        self,
        message: str,
        *,
        endpoint: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.cause = cause
        super().__init__(message)


class TagReadError(UnsBridgeError):
    """A single tag could not be read during read_all; the tag is reported absent."""

    def __init__(
        self,
        tag: str,
        message: str | None = None,
        *,
        node: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.tag = tag
        self.node = node
        self.cause = cause
        super().__init__(message or f"Failed to read tag {tag!r}")


class PublishError(UnsBridgeError):
    """A publish to one topic failed (broker unreachable, ack timeout, rejected message)."""

    def __init__(self, topic: str, message: str | None = None, *, cause: BaseException | None = None) -> None:
        self.topic = topic
        self.cause = cause
        super().__init__(message or f"Failed to publish to {topic!r}")


class ShutdownError(UnsBridgeError):
    """Raised internally when releasing an endpoint fails; logged, never propagated to the caller."""

    def __init__(self, endpoint: str, message: str, *, cause: BaseException | None = None) -> None:
        self.endpoint = endpoint
        self.cause = cause
        super().__init__(message)


class MappingError(UnsBridgeError):
    """Raised when the topic mapping table (or a register map) is invalid at load time."""

    def __init__(self, message: str, *, suffix: str | None = None, tag: str | None = None) -> None:
        self.suffix = suffix
        self.tag = tag
        super().__init__(message)
