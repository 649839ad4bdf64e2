from enum import Enum

TERMINAL_STATES = {"completed", "aborted"}
# States whose reply carries a structured field, not just yes/no.
FIELD_STATES = {"appointment", "email_collection"}


class State(Enum):
    GREETING = "greeting"
    INTEREST_CHECK = "interest_check"
    APPOINTMENT = "appointment"
    ALTERNATIVES = "alternatives"
    EMAIL_COLLECTION = "email_collection"
    CLOSING = "closing"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self.value in TERMINAL_STATES

    @property
    def expects_field(self) -> bool:
        return self.value in FIELD_STATES


class Signal(Enum):
    AFFIRMATIVE = "affirmative"
    NEGATIVE = "negative"
    UNCLEAR = "unclear"


class Outcome(str, Enum):
    APPOINTMENT_SCHEDULED = "appointment_scheduled"
    INTERESTED = "interested"
    INTERESTED_ALTERNATIVES = "interested_alternatives"
    NOT_INTERESTED = "not_interested"
    NO_RESPONSE = "no_response"
    ERROR = "error"
