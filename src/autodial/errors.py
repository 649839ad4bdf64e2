"""Error taxonomy for the call orchestrator.

Only conditions a caller has to branch on are exceptions. Low-confidence
input, turn/time limits and partial finalization failures are ordinary
values (an ``unclear`` signal, a session ``end_reason``, a
``FinalizationResult``), not raised errors.
"""


class AutodialError(Exception):
    """Base class for everything raised by this package."""


class SessionNotFound(AutodialError):
    """The call has no live session: never started, expired, or already terminal."""

    def __init__(self, call_id: str):
        super().__init__(f"no active session for call {call_id}")
        self.call_id = call_id


class SessionAlreadyExists(AutodialError):
    def __init__(self, call_id: str):
        super().__init__(f"session already exists for call {call_id}")
        self.call_id = call_id


class StaleTurn(AutodialError):
    """A concurrent turn committed first; the computed turn must be redone."""


class GenerationFailure(AutodialError):
    """The text generator was unreachable, timed out, or returned nothing usable."""


class RecordNotFound(AutodialError):
    def __init__(self, key: str):
        super().__init__(f"no record found for {key}")
        self.key = key


class DialFailure(AutodialError):
    """The telephony provider refused or failed to place an outbound call."""


class RecordStoreUnavailable(AutodialError):
    """The record store could not be reached, or its circuit breaker is open."""

    def __init__(self, key: str, reason: str = ""):
        super().__init__(f"record store unavailable for {key}" + (f": {reason}" if reason else ""))
        self.key = key
