"""Minimal hand-built TwiML documents for the speech webhook loop."""

from xml.sax.saxutils import escape, quoteattr

VOICE = "Polly.Joanna"


def _say(text: str) -> str:
    return f"<Say voice={quoteattr(VOICE)}>{escape(text)}</Say>"


def gather_response(text: str, action: str, timeout: int = 5, language: str = "en-US") -> str:
    """Speak ``text`` and collect one spoken answer, posted to ``action``.

    If the caller says nothing the document redirects to the same action
    with an empty SpeechResult, which counts as an unclear turn.
    """
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        "<Response>"
        f'<Gather input="speech" action={quoteattr(action)} method="POST" '
        f'speechTimeout="auto" timeout="{int(timeout)}" language={quoteattr(language)}>'
        f"{_say(text)}"
        "</Gather>"
        f'<Redirect method="POST">{escape(action)}</Redirect>'
        "</Response>"
    )


def hangup_response(text: str = "") -> str:
    say = _say(text) if text else ""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f"<Response>{say}<Hangup/></Response>"
    )
