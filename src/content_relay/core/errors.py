"""Custom exception hierarchy for the content relay."""


class RelayError(Exception):
    """Base exception for all content relay errors."""


# --- Configuration ---
class ConfigError(RelayError):
    """Invalid or missing configuration."""


# --- Codec ---
class SerializationError(RelayError):
    """A record or payload could not be turned into an event."""


class DeserializationError(RelayError):
    """An event payload could not be decoded into its model."""

    def __init__(self, event_type: str, reason: str):
        self.event_type = event_type
        self.reason = reason
        super().__init__(f"Cannot decode {event_type} payload: {reason}")


# --- Transport ---
class TransportError(RelayError):
    """Communication with the bus or a collaborating service failed."""


class BusNotStartedError(TransportError):
    """Publish attempted before the bus was started."""


# --- Lookup ---
class NotFoundError(RelayError):
    """A remote record does not exist.

    Raised inside clients only; read paths translate it into ``None``.
    """
