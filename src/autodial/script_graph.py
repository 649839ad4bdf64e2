"""Static conversation script: (state, signal) -> edge.

Pure lookups only. The turn processor interprets this table; nothing here
touches a session or performs I/O.
"""

from dataclasses import dataclass, field

from autodial.session import CallContext, Customer
from autodial.states import Signal, State


@dataclass(frozen=True)
class Edge:
    next_state: State
    prompt: str
    terminal: bool = False
    # Context facts owned by the source state, recorded when this edge is taken.
    facts: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Transition:
    state: State
    prompt: str
    terminal: bool = False
    reprompt: bool = False
    facts: dict = field(default_factory=dict)


GREETING_PROMPT = (
    "Hi {name}, this is {agent} from {business}. You recently enquired about "
    "the {product}. Is now a good time to talk?"
)

INTEREST_PROMPT = "I just wanted to check. Are you still interested in the {product}?"
APPOINTMENT_PROMPT = (
    "Great! Would you like to arrange an appointment to see or test drive the {product}?"
)
ALTERNATIVES_PROMPT = (
    "No problem, sometimes the exact model isn't the right fit. Would you be "
    "interested in hearing about similar options we currently have available?"
)
EMAIL_PROMPT = "Perfect! What's the best email address to send those options to?"

# Closing lines, one per way of reaching closing.
CLOSE_BUSY = "No problem at all! I'll give you a call back at a better time. Have a great day, {name}!"
CLOSE_APPOINTMENT = (
    "Perfect! I'll get that appointment{time_clause} set up and we'll send you "
    "a confirmation shortly. Thanks {name}!"
)
CLOSE_DECLINED = (
    "No problem at all, {name}. Thank you for your time, and feel free to "
    "contact us if anything changes. Have a great day!"
)
CLOSE_EMAIL = "Thanks {name}! I'll send the details to {email} shortly. Have a great day!"
CLOSE_NO_EMAIL = (
    "No worries, {name}. You can always reach us at {business} if you'd like "
    "those options later. Have a great day!"
)

TURN_LIMIT_LINE = (
    "I don't want to keep you any longer. Someone from our team will follow up "
    "with you. Thanks for your time, goodbye!"
)
ERROR_LINE = (
    "I apologize, but I'm having some technical difficulties. Let me have "
    "someone call you back shortly. Goodbye!"
)
SESSION_GONE_LINE = "Thank you for your time. We'll follow up with you soon. Goodbye!"
VOICEMAIL_LINE = (
    "Hi, this is {agent} from {business}. We're following up on your recent "
    "enquiry. Please call us back at your convenience. Thank you!"
)

EDGES = {
    (State.GREETING, Signal.AFFIRMATIVE): Edge(State.INTEREST_CHECK, INTEREST_PROMPT),
    (State.GREETING, Signal.NEGATIVE): Edge(State.CLOSING, CLOSE_BUSY, terminal=True),

    (State.INTEREST_CHECK, Signal.AFFIRMATIVE): Edge(
        State.APPOINTMENT, APPOINTMENT_PROMPT, facts={"still_interested": True},
    ),
    (State.INTEREST_CHECK, Signal.NEGATIVE): Edge(
        State.ALTERNATIVES, ALTERNATIVES_PROMPT, facts={"still_interested": False},
    ),

    (State.APPOINTMENT, Signal.AFFIRMATIVE): Edge(
        State.CLOSING, CLOSE_APPOINTMENT, terminal=True, facts={"wants_appointment": True},
    ),
    (State.APPOINTMENT, Signal.NEGATIVE): Edge(
        State.ALTERNATIVES, ALTERNATIVES_PROMPT, facts={"wants_appointment": False},
    ),

    (State.ALTERNATIVES, Signal.AFFIRMATIVE): Edge(
        State.EMAIL_COLLECTION, EMAIL_PROMPT, facts={"wants_alternatives": True},
    ),
    (State.ALTERNATIVES, Signal.NEGATIVE): Edge(
        State.CLOSING, CLOSE_DECLINED, terminal=True, facts={"wants_alternatives": False},
    ),

    (State.EMAIL_COLLECTION, Signal.AFFIRMATIVE): Edge(State.CLOSING, CLOSE_EMAIL, terminal=True),
    (State.EMAIL_COLLECTION, Signal.NEGATIVE): Edge(State.CLOSING, CLOSE_NO_EMAIL, terminal=True),
}

REPROMPTS = {
    State.GREETING: "I just want to make sure, is this a good time for a quick chat about the {product}?",
    State.INTEREST_CHECK: "Just to confirm, are you still looking for the {product}, or has your situation changed?",
    State.APPOINTMENT: "Would you like to schedule a time to come in and see the {product}?",
    State.ALTERNATIVES: "Would you like me to send you information about similar options that might interest you?",
    State.EMAIL_COLLECTION: "Could you please spell out your email address so I can send you those options?",
}

# Canned line per target state, used when the text generator is unavailable.
FALLBACK_LINES = {
    State.GREETING: GREETING_PROMPT,
    State.INTEREST_CHECK: INTEREST_PROMPT,
    State.APPOINTMENT: APPOINTMENT_PROMPT,
    State.ALTERNATIVES: ALTERNATIVES_PROMPT,
    State.EMAIL_COLLECTION: EMAIL_PROMPT,
    State.CLOSING: CLOSE_DECLINED,
}

# Goal handed to the generator for each target state.
STATE_GOALS = {
    State.INTEREST_CHECK: "Ask whether they are still interested in the product they enquired about.",
    State.APPOINTMENT: "They're interested. Ask if they want to schedule an appointment or test drive.",
    State.ALTERNATIVES: "They're not going ahead with the original product. Ask if they'd like to hear about similar options.",
    State.EMAIL_COLLECTION: "They want similar options. Ask for the best email address to send them to.",
}


def resolve(state: State, signal: Signal, reprompt_used: bool) -> Transition:
    """Resolve the next step for a classified utterance.

    ``unclear`` re-prompts in place once per state; a second ``unclear``
    falls through to the negative edge.
    """
    if state.is_terminal or state == State.CLOSING:
        raise ValueError(f"no outgoing edges from {state.value}")

    if signal == Signal.UNCLEAR:
        if not reprompt_used:
            return Transition(state=state, prompt=REPROMPTS[state], reprompt=True)
        signal = Signal.NEGATIVE

    edge = EDGES[(state, signal)]
    return Transition(
        state=edge.next_state,
        prompt=edge.prompt,
        terminal=edge.terminal,
        facts=dict(edge.facts),
    )


def render(
    template: str,
    customer: Customer,
    context: CallContext,
    agent_name: str,
    business_name: str,
) -> str:
    time_clause = f" for {context.appointment_time}" if context.appointment_time else ""
    return template.format(
        name=customer.name,
        product=customer.product or "vehicle you asked about",
        agent=agent_name,
        business=business_name,
        email=context.email or "your email",
        time_clause=time_clause,
    )
