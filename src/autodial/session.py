from dataclasses import dataclass, field
from typing import Optional

from autodial.states import Outcome, State


@dataclass(frozen=True)
class Customer:
    record_id: str
    name: str
    phone: str
    product: str = ""
    enquiry_date: str = ""
    email: str = ""

    @classmethod
    def from_record(cls, record: dict) -> "Customer":
        """Build a Customer from a record-store row (normalized sheet headers)."""
        return cls(
            record_id=str(record.get("id") or record.get("customerid") or record.get("phone", "")),
            name=record.get("name", "") or "there",
            phone=record.get("phone", ""),
            product=record.get("carmodel") or record.get("product", ""),
            enquiry_date=record.get("enquirydate", ""),
            email=(record.get("email") or "").strip().lower(),
        )


@dataclass(frozen=True)
class Turn:
    speaker: str  # "agent" | "customer"
    text: str
    timestamp: float
    state: str
    confidence: Optional[float] = None
    sentiment: Optional[str] = None


@dataclass
class CallContext:
    # Owned by interest_check
    still_interested: Optional[bool] = None

    # Owned by appointment
    wants_appointment: Optional[bool] = None
    appointment_time: str = ""

    # Owned by alternatives
    wants_alternatives: Optional[bool] = None

    # Owned by email_collection
    email: str = ""

    sentiment_trend: str = "stable"
    sentiment_history: list = field(default_factory=list)

    def merge(self, facts: dict) -> None:
        """Set facts that are still unset. An already-set fact is never replaced."""
        for name, value in facts.items():
            if value is None or value == "":
                continue
            if not hasattr(self, name):
                continue
            current = getattr(self, name)
            if current is None or current == "":
                setattr(self, name, value)


@dataclass
class CallSession:
    call_id: str
    customer: Customer
    state: State = State.GREETING

    turn_count: int = 0
    transcript: tuple = ()
    context: CallContext = field(default_factory=CallContext)
    reprompted: set = field(default_factory=set)

    created_at: float = 0.0
    last_activity_at: float = 0.0

    terminal: bool = False
    end_reason: str = ""
    forced_outcome: Optional[Outcome] = None

    def append_turn(self, turn: Turn) -> None:
        self.transcript = self.transcript + (turn,)

    def last_turns(self, n: int = 3) -> tuple:
        return self.transcript[-n:] if n > 0 else ()

    def abort(self, reason: str, outcome: Optional[Outcome] = None) -> None:
        self.state = State.ABORTED
        self.terminal = True
        self.end_reason = reason
        self.forced_outcome = outcome
