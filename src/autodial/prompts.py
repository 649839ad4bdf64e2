from autodial.intent import IntentResult
from autodial.script_graph import STATE_GOALS
from autodial.session import CallSession

PERSONA = """You are {agent}, a friendly sales representative from {business}, making a follow-up call to a customer who enquired about a product.

VOICE & PERSONA
- Tone: warm, relaxed, professional. Never pushy.
- Keep it under 30 words. ONE question at a time.
- Sound natural and human-like, not robotic. Use the customer's first name sparingly.
- Adapt to the customer's energy. If they seem rushed, be brief.
- If they sound frustrated, acknowledge it in a few words and move on.

RULES
1. NEVER repeat a question already answered.
2. NEVER promise prices, discounts, availability or delivery dates.
3. NEVER say an appointment is booked; say someone will confirm it.
4. If asked if you're AI: "I'm the virtual assistant for {business}."
5. Only speak the line. No stage directions, no quotes, no lists."""


def _customer_block(session: CallSession) -> str:
    c = session.customer
    lines = [
        "## CUSTOMER",
        f"- Name: {c.name}",
        f"- Product of interest: {c.product or 'unknown'}",
        f"- Enquiry date: {c.enquiry_date or 'recently'}",
    ]
    ctx = session.context
    if ctx.still_interested is not None:
        lines.append(f"- Still interested: {'yes' if ctx.still_interested else 'no'}")
    if ctx.wants_appointment is not None:
        lines.append(f"- Wants appointment: {'yes' if ctx.wants_appointment else 'no'}")
    if ctx.appointment_time:
        lines.append(f"- Preferred time: {ctx.appointment_time}")
    return "\n".join(lines)


def get_system_prompt(
    session: CallSession,
    next_state,
    target_line: str,
    intent: IntentResult,
    agent_name: str,
    business_name: str,
) -> str:
    persona = PERSONA.format(agent=agent_name, business=business_name)
    goal = STATE_GOALS.get(next_state, "")
    turn_block = f"""## THIS TURN
Current step: {session.state.value}
Next step: {next_state.value}
Customer answer read as: {intent.signal.value} (confidence {intent.confidence:.2f})
Customer sentiment: {intent.sentiment} (trend: {intent.sentiment_trend})

GOAL: {goal}
Say something equivalent to: "{target_line}"
Briefly react to what the customer just said, then ask the question."""
    return f"{persona}\n\n{_customer_block(session)}\n\n{turn_block}"


def build_history(session: CallSession, utterance: str, n: int = 3) -> list[dict]:
    """Last ``n`` transcript turns plus the new utterance, as chat messages."""
    messages = []
    for turn in session.last_turns(n):
        role = "assistant" if turn.speaker == "agent" else "user"
        messages.append({"role": role, "content": turn.text})
    messages.append({"role": "user", "content": utterance})
    return messages
