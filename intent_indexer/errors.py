class IndexerError(Exception):
    """Base class for errors raised by intent-indexer."""


class RpcTimeoutError(IndexerError):
    def __init__(self, label: str, timeout: float):
        super().__init__(f"RPC call '{label}' timed out after {timeout:.1f}s")
        self.label = label
        self.timeout = timeout


class SubscriptionError(IndexerError):
    """The push transport refused or dropped a subscription."""


class LogDecodeError(IndexerError):
    """A raw chain log could not be decoded into an OrderStatusChangedEvent."""


class NetworkConfigurationError(IndexerError):
    """A network adapter is missing required configuration.

    Never retried: no amount of waiting fixes a configuration error.
    """
