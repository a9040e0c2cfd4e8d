"""Error hierarchy for the order stream client.

All client errors inherit from OrderStreamError so callers can catch the
whole family at the process boundary while still handling specific failure
modes where recovery is possible.
"""


class OrderStreamError(Exception):
    """Base exception for all order stream errors."""
    pass


class ConfigError(OrderStreamError):
    """Missing or invalid startup configuration."""
    pass


class OrderStreamAuthError(OrderStreamError):
    """Nonce fetch, key loading or signing failure."""
    pass


class OrderStreamConnectionError(OrderStreamError):
    """Transport could not be opened."""
    pass


class OrderValidationError(OrderStreamError):
    """A queued order payload is structurally invalid."""

    def __init__(self, message: str, payload=None):
        super().__init__(message)
        self.payload = payload
