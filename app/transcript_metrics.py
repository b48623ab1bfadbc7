"""Deterministic conversational metrics over a finished transcript.

Every function is total: an empty transcript is valid input. Talk time is a
message-count proxy (share of messages spoken by the trainee), not a timing
measure, and sentiment is a bag-of-keywords polarity ratio.
"""
import math
import re
from typing import Any, Dict, List, Mapping, Optional, Pattern, Sequence

USER_SPEAKER_MARKERS = ("user", "you", "speaker_1")

FILLER_WORDS = (
    "um", "uh", "er", "ah", "like", "you know", "sort of", "kind of",
    "basically", "actually", "literally", "totally", "right?", "okay?",
    "so", "well", "i mean", "you see", "let me think",
)

POSITIVE_WORDS = (
    "great", "excellent", "good", "amazing", "wonderful", "fantastic",
    "perfect", "love", "like", "enjoy", "happy", "pleased", "satisfied",
    "confident", "excited", "interested", "impressive", "outstanding",
)

NEGATIVE_WORDS = (
    "bad", "terrible", "awful", "horrible", "hate", "dislike", "angry",
    "frustrated", "disappointed", "concerned", "worried", "difficult",
    "problem", "issue", "challenging", "confusing", "unclear", "wrong",
)

NEUTRAL_SENTIMENT = 0.5

Transcript = Sequence[Mapping[str, Any]]


def _compile(words: Sequence[str]) -> List[Pattern[str]]:
    # Lookarounds instead of \b so entries ending in punctuation ("right?") still match
    return [re.compile(r"(?<!\w)" + re.escape(w) + r"(?!\w)", re.IGNORECASE) for w in words]


_FILLER_PATTERNS = _compile(FILLER_WORDS)
_POSITIVE_PATTERNS = _compile(POSITIVE_WORDS)
_NEGATIVE_PATTERNS = _compile(NEGATIVE_WORDS)


def _field(msg: Mapping[str, Any], key: str) -> str:
    val = msg.get(key) if isinstance(msg, Mapping) else None
    return val if isinstance(val, str) else ""


def _count(patterns: Sequence[Pattern[str]], text: str) -> int:
    return sum(len(p.findall(text)) for p in patterns)


def extract_transcript_text(transcript: Optional[Transcript]) -> str:
    if not transcript:
        return ""
    return " ".join(_field(m, "message") for m in transcript).strip()


def talk_time_ratio(transcript: Optional[Transcript]) -> float:
    if not transcript:
        return 0
    user_count = 0
    for msg in transcript:
        speaker = _field(msg, "speaker").lower()
        if any(marker in speaker for marker in USER_SPEAKER_MARKERS):
            user_count += 1
    return user_count / len(transcript)


def count_filler_words(transcript: Optional[Transcript]) -> int:
    # Entries are counted independently; overlaps across entries are not deduplicated
    return _count(_FILLER_PATTERNS, extract_transcript_text(transcript).lower())


def sentiment_score(transcript: Optional[Transcript]) -> float:
    text = extract_transcript_text(transcript).lower()
    positive = _count(_POSITIVE_PATTERNS, text)
    negative = _count(_NEGATIVE_PATTERNS, text)
    if positive + negative == 0:
        return NEUTRAL_SENTIMENT
    return positive / (positive + negative)


def speaking_pace_wpm(transcript: Optional[Transcript], duration_seconds: Optional[float]) -> int:
    if not isinstance(duration_seconds, (int, float)) or isinstance(duration_seconds, bool):
        return 0
    if duration_seconds <= 0:
        return 0
    word_count = len(extract_transcript_text(transcript).split())
    # Round half up
    return int(math.floor(word_count / (duration_seconds / 60) + 0.5))


def generate_metrics(transcript: Optional[Transcript], duration_seconds: Optional[float]) -> Dict[str, Any]:
    return {
        "talkTimeRatio": talk_time_ratio(transcript),
        "fillerWordsCount": count_filler_words(transcript),
        "speakingPaceWpm": speaking_pace_wpm(transcript, duration_seconds),
        "sentimentScore": sentiment_score(transcript),
    }


def create_mock_transcript() -> List[Dict[str, str]]:
    """Canned sales exchange used when no usable transcript exists."""
    return [
        {
            "speaker": "user",
            "message": "Hi there! I'm really excited to talk about our new product. It's absolutely amazing and I think you'll love it.",
        },
        {"speaker": "client", "message": "Tell me more about it. What makes it special?"},
        {
            "speaker": "user",
            "message": "Well, um, it's like really good because, you know, it solves the main problem that, uh, most people have.",
        },
        {"speaker": "client", "message": "I see. Can you be more specific about the problem it solves?"},
        {
            "speaker": "user",
            "message": "Absolutely! It basically saves time and, sort of, makes everything more efficient for your team.",
        },
    ]
