import pytest

from autodial.intent import (
    KeywordIntentClassifier,
    count_phrase_tokens,
    extract_email,
    extract_time,
    score_sentiment,
    sentiment_label,
    sentiment_trend,
    tokenize,
)
from autodial.states import Signal, State


@pytest.fixture
def clf():
    return KeywordIntentClassifier()


class TestTokenize:
    def test_drops_filler_words(self):
        assert tokenize("Um, well, yeah I guess") == ["yeah", "i", "guess"]

    def test_normalizes_curly_apostrophe(self):
        assert tokenize("I’m busy") == ["i'm", "busy"]


class TestPhraseMatching:
    def test_longer_phrase_consumes_tokens(self):
        tokens = ["not", "interested"]
        consumed = [False, False]
        assert count_phrase_tokens(tokens, {"not interested"}, consumed) == 2
        assert count_phrase_tokens(tokens, {"interested"}, consumed) == 0

    def test_not_interested_is_negative(self, clf):
        result = clf.classify("I'm not interested", State.INTEREST_CHECK, [])
        assert result.signal == Signal.NEGATIVE


class TestSignal:
    def test_plain_yes(self, clf):
        result = clf.classify("yes", State.GREETING, [])
        assert result.signal == Signal.AFFIRMATIVE
        assert result.confidence == 1.0

    def test_plain_no(self, clf):
        result = clf.classify("no", State.GREETING, [])
        assert result.signal == Signal.NEGATIVE
        assert result.confidence == 1.0

    def test_state_specific_negative_at_greeting(self, clf):
        result = clf.classify("I'm busy right now, call me back later", State.GREETING, [])
        assert result.signal == Signal.NEGATIVE
        assert result.confidence == pytest.approx(5 / 8, abs=0.001)

    def test_hedged_answer_is_unclear(self, clf):
        result = clf.classify("hmm yeah maybe we will see", State.INTEREST_CHECK, [])
        assert result.signal == Signal.UNCLEAR
        assert result.confidence == pytest.approx(0.2)

    def test_tie_is_unclear(self, clf):
        result = clf.classify("yes no", State.GREETING, [])
        assert result.signal == Signal.UNCLEAR
        assert result.confidence == 0.0

    def test_empty_utterance_is_unclear(self, clf):
        assert clf.classify("", State.GREETING, []).signal == Signal.UNCLEAR

    def test_low_asr_confidence_forces_unclear(self, clf):
        result = clf.classify("yes", State.GREETING, [], asr_confidence=0.3)
        assert result.signal == Signal.UNCLEAR

    def test_threshold_is_configurable(self):
        strict = KeywordIntentClassifier(threshold=0.9)
        assert strict.classify("yes please tell me", State.GREETING, []).signal == Signal.UNCLEAR

    def test_vocabulary_override(self):
        custom = KeywordIntentClassifier(affirmative={"aye"})
        assert custom.classify("aye", State.GREETING, []).signal == Signal.AFFIRMATIVE
        assert custom.classify("yes", State.GREETING, []).signal == Signal.UNCLEAR

    def test_interest_keywords_only_where_relevant(self, clf):
        affirmative, _ = clf.vocabulary(State.INTEREST_CHECK)
        assert "still interested" in affirmative
        affirmative, _ = clf.vocabulary(State.GREETING)
        assert "still interested" not in affirmative


class TestFieldExtraction:
    def test_email_is_decisive(self, clf):
        result = clf.classify("it's jane@example.com", State.EMAIL_COLLECTION, [])
        assert result.signal == Signal.AFFIRMATIVE
        assert result.confidence == 1.0
        assert result.extracted_fields == {"email": "jane@example.com"}

    def test_spoken_email(self):
        assert extract_email("my email is jane at example dot co dot uk") == "jane@example.co.uk"
        assert extract_email("Jane at Example dot com") == "jane@example.com"

    def test_no_email_outside_email_collection(self, clf):
        result = clf.classify("jane@example.com", State.GREETING, [])
        assert result.extracted_fields == {}

    def test_appointment_time(self, clf):
        result = clf.classify("how about tomorrow at 3pm", State.APPOINTMENT, [])
        assert result.signal == Signal.AFFIRMATIVE
        assert result.extracted_fields == {"appointment_time": "tomorrow at 3pm"}

    def test_declined_appointment_keeps_no_time(self, clf):
        result = clf.classify("No, I'm busy tomorrow", State.APPOINTMENT, [])
        assert result.signal == Signal.NEGATIVE
        assert result.extracted_fields == {}

    def test_hedged_decline_with_a_day_is_not_a_booking(self, clf):
        result = clf.classify("no thanks, not next week", State.APPOINTMENT, [])
        assert result.signal != Signal.AFFIRMATIVE
        assert result.extracted_fields == {}

    def test_extract_time_day_only(self):
        assert extract_time("next friday works") == "next friday"
        assert extract_time("no idea") == ""

    def test_low_asr_confidence_drops_fields(self, clf):
        result = clf.classify("jane@example.com", State.EMAIL_COLLECTION, [], asr_confidence=0.1)
        assert result.signal == Signal.UNCLEAR
        assert result.extracted_fields == {}


class TestSentiment:
    def test_score_range(self):
        assert score_sentiment(["yes", "great", "thanks"]) == 1.0
        assert score_sentiment(["no", "waste"]) == -1.0
        assert score_sentiment(["hello"]) == 0.0
        assert score_sentiment(["great", "busy"]) == 0.0

    def test_labels(self):
        assert sentiment_label(0.5) == "positive"
        assert sentiment_label(0.05) == "neutral"
        assert sentiment_label(-0.5) == "negative"

    def test_trend(self):
        assert sentiment_trend([0.5]) == "stable"
        assert sentiment_trend([0.0, 0.0, 1.0]) == "improving"
        assert sentiment_trend([1.0, 0.5, 0.0]) == "declining"
        assert sentiment_trend([-1.0, 0.0, 0.1, 0.2]) == "stable"

    def test_classify_reports_trend_against_history(self, clf):
        result = clf.classify("no this is a waste", State.GREETING, [1.0, 0.5])
        assert result.sentiment == "negative"
        assert result.sentiment_trend == "declining"
