import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from autodial.states import Signal, State

AFFIRMATIVE_KEYWORDS = frozenset({
    "yes", "yeah", "yep", "yup", "sure", "okay", "ok", "alright",
    "definitely", "absolutely", "certainly", "of course", "sounds good",
    "go ahead", "please", "perfect", "great", "fine", "works for me",
    "why not", "let's do it",
})

NEGATIVE_KEYWORDS = frozenset({
    "no", "nope", "nah", "never", "not really", "no thanks", "no thank you",
    "don't think so", "i don't", "i'm not", "not interested", "can't", "won't",
    "i'm good", "pass",
})

# Default "still interested" vocabulary; overridable via INTEREST_KEYWORDS.
INTEREST_KEYWORDS = frozenset({"still interested", "interested", "still looking", "want it"})

STATE_AFFIRMATIVE = {
    State.GREETING: frozenset({"good time", "now is fine", "go on", "i have a minute", "speaking"}),
    State.APPOINTMENT: frozenset({"appointment", "schedule", "book", "test drive", "come in", "visit"}),
    State.ALTERNATIVES: frozenset({"send", "similar", "options", "tell me more"}),
    State.EMAIL_COLLECTION: frozenset(),
}

STATE_NEGATIVE = {
    State.GREETING: frozenset({
        "busy", "later", "bad time", "not now", "not a good time",
        "call back", "call me back", "another time", "driving",
    }),
    State.INTEREST_CHECK: frozenset({"bought", "already bought", "changed my mind", "went with"}),
    State.APPOINTMENT: frozenset({"busy", "not now", "no time"}),
    State.EMAIL_COLLECTION: frozenset({"don't have", "rather not", "no email"}),
}

FILLER_WORDS = frozenset({"um", "uh", "er", "erm", "hmm", "mm", "ah", "oh", "well"})

POSITIVE_WORDS = frozenset({
    "yes", "great", "good", "excellent", "perfect", "love", "interested",
    "definitely", "thanks", "wonderful", "awesome", "nice", "happy",
})
NEGATIVE_WORDS = frozenset({
    "no", "bad", "terrible", "hate", "never", "awful", "annoying", "stop",
    "busy", "angry", "waste", "scam",
})

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
# Speech recognizers often transcribe addresses as "jane at example dot com".
SPOKEN_EMAIL_PATTERN = re.compile(
    r"\b([a-z0-9._%+-]+)\s+at\s+([a-z0-9-]+(?:\s+dot\s+[a-z0-9-]+)+)\b", re.IGNORECASE,
)
DAY_PATTERN = re.compile(
    r"\b(today|tomorrow|tonight|this weekend|next week|"
    r"(?:next |this )?(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday))\b",
    re.IGNORECASE,
)
TIME_PATTERN = re.compile(
    r"\b(\d{1,2}(?::\d{2})?\s*(?:am|pm|a\.m\.|p\.m\.)|\d{1,2}:\d{2}|noon|"
    r"(?:in the )?(?:morning|afternoon|evening))\b",
    re.IGNORECASE,
)
TOKEN_PATTERN = re.compile(r"[a-z0-9']+")


@dataclass(frozen=True)
class IntentResult:
    signal: Signal
    confidence: float
    extracted_fields: dict = field(default_factory=dict)
    sentiment: str = "neutral"
    sentiment_score: float = 0.0
    sentiment_trend: str = "stable"


class IntentClassifier(ABC):
    """Turns one customer utterance into a coarse signal plus extracted facts."""

    @abstractmethod
    def classify(
        self,
        utterance: str,
        state: State,
        sentiment_history: list,
        asr_confidence: Optional[float] = None,
    ) -> IntentResult:
        ...


def tokenize(text: str) -> list[str]:
    tokens = TOKEN_PATTERN.findall(text.lower().replace("’", "'"))
    return [t for t in tokens if t not in FILLER_WORDS]


def count_phrase_tokens(tokens: list[str], phrases, consumed: list[bool]) -> int:
    """Count tokens covered by phrases, longest phrase first.

    Matched positions are marked in ``consumed`` so a token never counts
    twice ("not interested" is not also "interested").
    """
    split = sorted((p.split() for p in phrases), key=len, reverse=True)
    matched = 0
    for words in split:
        n = len(words)
        if not n:
            continue
        i = 0
        while i + n <= len(tokens):
            if tokens[i:i + n] == words and not any(consumed[i:i + n]):
                for j in range(i, i + n):
                    consumed[j] = True
                matched += n
                i += n
            else:
                i += 1
    return matched


def extract_email(text: str) -> str:
    match = EMAIL_PATTERN.search(text)
    if match:
        return match.group(0).lower()
    spoken = SPOKEN_EMAIL_PATTERN.search(text)
    if spoken:
        local = spoken.group(1)
        domain = re.sub(r"\s+dot\s+", ".", spoken.group(2), flags=re.IGNORECASE)
        return f"{local}@{domain}".lower()
    return ""


def extract_time(text: str) -> str:
    """Pull a day and/or time-of-day phrase, e.g. "tomorrow at 3pm"."""
    day = DAY_PATTERN.search(text)
    when = TIME_PATTERN.search(text)
    parts = [m.group(0).strip() for m in (day, when) if m]
    if not parts:
        return ""
    return " at ".join(parts) if day and when else parts[0]


def score_sentiment(tokens: list[str]) -> float:
    pos = sum(1 for t in tokens if t in POSITIVE_WORDS)
    neg = sum(1 for t in tokens if t in NEGATIVE_WORDS)
    if pos + neg == 0:
        return 0.0
    return (pos - neg) / (pos + neg)


def sentiment_label(score: float) -> str:
    if score > 0.1:
        return "positive"
    if score < -0.1:
        return "negative"
    return "neutral"


def sentiment_trend(scores: list) -> str:
    if len(scores) < 2:
        return "stable"
    recent = scores[-3:]
    delta = recent[-1] - recent[0]
    if delta > 0.2:
        return "improving"
    if delta < -0.2:
        return "declining"
    return "stable"


class KeywordIntentClassifier(IntentClassifier):
    """Explainable lexical classifier.

    Confidence is the fraction of (non-filler) tokens covered by the winning
    side's keywords. Anything below ``threshold`` is reported as unclear.
    """

    def __init__(
        self,
        threshold: float = 0.5,
        asr_threshold: float = 0.5,
        affirmative=None,
        negative=None,
        interest=None,
    ):
        self.threshold = threshold
        self.asr_threshold = asr_threshold
        self.affirmative = frozenset(affirmative) if affirmative else AFFIRMATIVE_KEYWORDS
        self.negative = frozenset(negative) if negative else NEGATIVE_KEYWORDS
        self.interest = frozenset(interest) if interest else INTEREST_KEYWORDS

    def vocabulary(self, state: State) -> tuple[frozenset, frozenset]:
        affirmative = self.affirmative | STATE_AFFIRMATIVE.get(state, frozenset())
        if state in (State.INTEREST_CHECK, State.ALTERNATIVES):
            affirmative = affirmative | self.interest
        negative = self.negative | STATE_NEGATIVE.get(state, frozenset())
        return affirmative, negative

    def classify(
        self,
        utterance: str,
        state: State,
        sentiment_history: list,
        asr_confidence: Optional[float] = None,
    ) -> IntentResult:
        tokens = tokenize(utterance)
        score = score_sentiment(tokens)
        trend = sentiment_trend(list(sentiment_history) + [score])

        fields = self._extract_fields(utterance, state)
        signal, confidence = self._lexical_signal(tokens, state)

        # A field the state was waiting for is a decisive answer on its own,
        # unless the words around it decline ("no, I'm busy tomorrow").
        if signal == Signal.NEGATIVE:
            fields = {}
        elif fields:
            signal, confidence = Signal.AFFIRMATIVE, 1.0

        if asr_confidence is not None and asr_confidence < self.asr_threshold:
            signal = Signal.UNCLEAR
            fields = {}
        elif confidence < self.threshold:
            signal = Signal.UNCLEAR

        return IntentResult(
            signal=signal,
            confidence=round(confidence, 3),
            extracted_fields=fields,
            sentiment=sentiment_label(score),
            sentiment_score=score,
            sentiment_trend=trend,
        )

    def _lexical_signal(self, tokens: list[str], state: State) -> tuple[Signal, float]:
        if not tokens:
            return Signal.UNCLEAR, 0.0
        affirmative, negative = self.vocabulary(state)
        consumed = [False] * len(tokens)
        # Negative phrases first: they tend to be longer ("not interested").
        neg = count_phrase_tokens(tokens, negative, consumed)
        pos = count_phrase_tokens(tokens, affirmative, consumed)
        if pos == neg:
            return Signal.UNCLEAR, 0.0
        if pos > neg:
            return Signal.AFFIRMATIVE, pos / len(tokens)
        return Signal.NEGATIVE, neg / len(tokens)

    def _extract_fields(self, utterance: str, state: State) -> dict:
        if not state.expects_field:
            return {}
        if state == State.EMAIL_COLLECTION:
            email = extract_email(utterance)
            return {"email": email} if email else {}
        if state == State.APPOINTMENT:
            when = extract_time(utterance)
            return {"appointment_time": when} if when else {}
        return {}
