"""Error taxonomy for the detection engine."""


class RiskwatchError(Exception):
    """Base class for engine errors."""


class StoreUnavailableError(RiskwatchError):
    """The event store or audit trail could not be reached.

    Raised by storage adapters; contained by the fallback layer and never
    surfaced to callers.
    """


class ValidationError(RiskwatchError):
    """Malformed detector or caller input. Surfaced to the caller."""


class EventNotFoundError(RiskwatchError):
    """No security event exists with the requested id."""

    def __init__(self, event_id: str):
        super().__init__(f"Security event {event_id} not found")
        self.event_id = event_id


class NotificationFailure(RiskwatchError):
    """An alert notification could not be dispatched. Logged only."""
