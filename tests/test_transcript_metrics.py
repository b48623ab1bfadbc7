import pytest

from app.schemas import EndSessionRequest
from app.transcript_metrics import (
    count_filler_words,
    create_mock_transcript,
    extract_transcript_text,
    generate_metrics,
    sentiment_score,
    speaking_pace_wpm,
    talk_time_ratio,
)

# Three trainee turns, two prospect turns, forty words, no fillers or sentiment keywords
SCENARIO_A = [
    {"speaker": "user", "message": "Hello Maria, thanks for taking the time to meet with me today."},
    {"speaker": "client", "message": "Sure, what did you want to discuss?"},
    {"speaker": "user", "message": "Our platform helps teams track every customer call automatically."},
    {"speaker": "client", "message": "How much does it cost per seat?"},
    {"speaker": "user", "message": "Pricing starts at forty dollars."},
]


def test_scenario_a_metrics():
    assert len(extract_transcript_text(SCENARIO_A).split()) == 40
    m = generate_metrics(SCENARIO_A, 185)
    assert m == {
        "talkTimeRatio": 0.6,
        "fillerWordsCount": 0,
        "speakingPaceWpm": 13,
        "sentimentScore": 0.5,
    }


def test_generate_metrics_is_deterministic():
    t = create_mock_transcript()
    assert generate_metrics(t, 300) == generate_metrics(t, 300)


def test_empty_transcript_is_valid():
    assert generate_metrics([], 60) == {
        "talkTimeRatio": 0,
        "fillerWordsCount": 0,
        "speakingPaceWpm": 0,
        "sentimentScore": 0.5,
    }
    assert talk_time_ratio(None) == 0


def test_talk_time_ratio_speaker_markers():
    t = [
        {"speaker": "USER", "message": "a"},
        {"speaker": "You", "message": "b"},
        {"speaker": "speaker_1", "message": "c"},
        {"speaker": "agent", "message": "d"},
    ]
    assert talk_time_ratio(t) == 0.75
    assert 0 <= talk_time_ratio(create_mock_transcript()) <= 1


def test_filler_words_phrases_and_punctuation():
    t = [{"speaker": "user", "message": "Um, you know, it is sort of UM basically ready"}]
    # um x2, you know, sort of, basically
    assert count_filler_words(t) == 5
    assert count_filler_words([{"speaker": "user", "message": "It works, right? Okay? Sure"}]) == 2
    # "right" without the question mark is not a filler
    assert count_filler_words([{"speaker": "user", "message": "That is the right plan"}]) == 0


def test_filler_words_monotone_under_concatenation():
    t1 = [{"speaker": "user", "message": "Well, I mean, it works"}]
    t2 = [{"speaker": "client", "message": "uh okay so what next"}]
    assert count_filler_words(t1 + t2) >= count_filler_words(t1)


def test_filler_words_respect_word_boundaries():
    t = [{"speaker": "user", "message": "Summer umbrella super"}]
    assert count_filler_words(t) == 0


def test_sentiment_ratio():
    t = [{"speaker": "client", "message": "This is great and excellent but the price is a problem"}]
    assert sentiment_score(t) == pytest.approx(2 / 3)
    assert sentiment_score([{"speaker": "client", "message": "Send me the contract"}]) == 0.5


@pytest.mark.parametrize("duration", [0, -10, None])
def test_speaking_pace_without_positive_duration(duration):
    assert speaking_pace_wpm(SCENARIO_A, duration) == 0


def test_speaking_pace_rounds_half_up():
    t = [{"speaker": "user", "message": "hello"}]
    # 1 word over 2 minutes = 0.5 wpm
    assert speaking_pace_wpm(t, 120) == 1


def test_missing_keys_are_treated_as_empty():
    t = [{"speaker": "user"}, {"message": "hello there"}]
    assert extract_transcript_text(t) == "hello there"
    assert talk_time_ratio(t) == 0.5


def test_mock_transcript_shape():
    t = create_mock_transcript()
    assert len(t) == 5
    assert all(set(m) == {"speaker", "message"} for m in t)
    assert len(extract_transcript_text(t)) > 20


def test_request_schema_keeps_missing_speaker_unattributed():
    raw = [{"message": "hello there"}, {"speaker": "user", "message": "hi"}]
    body = EndSessionRequest.model_validate({"sessionId": "demo-1", "durationSeconds": 60.0, "transcript": raw})
    parsed = body.transcript_dicts()
    assert parsed[0]["speaker"] == ""
    assert talk_time_ratio(parsed) == talk_time_ratio(raw) == 0.5
