"""
Keyword gate in front of the extraction model.

A message only costs a model call if it is a plausible size for a single piece
of feedback and mentions at least one intent keyword. Missing some feedback is
acceptable; a false positive costs one wasted call.
"""

from typing import Iterable

MIN_LENGTH = 10
MAX_LENGTH = 10000

FEATURE_REQUEST_KEYWORDS = [
    'feature', 'request', 'wish', 'would be nice', 'would love', 'could you add',
    'can you add', 'please add', 'need', 'want', 'missing', 'should have',
    'it would be great', 'idea', 'suggestion', 'propose',
]

BUG_KEYWORDS = [
    'bug', 'broken', "doesn't work", 'not working', 'error', 'crash', 'issue',
    'problem', 'fail', 'wrong', 'incorrect', 'stuck', 'freeze', 'slow',
]

COMPLAINT_KEYWORDS = [
    'frustrated', 'annoyed', 'disappointed', 'hate', 'terrible', 'awful',
    'useless', 'waste', "can't believe", 'ridiculous', 'unacceptable',
]

PRAISE_KEYWORDS = [
    'love', 'amazing', 'great', 'awesome', 'fantastic', 'helpful', 'thank you',
    'best', 'perfect', 'exactly what i needed', 'game changer',
]

QUESTION_KEYWORDS = [
    'how do i', 'is there a way', 'can i', 'is it possible', 'does it support',
]

FEEDBACK_KEYWORDS = (
    FEATURE_REQUEST_KEYWORDS
    + BUG_KEYWORDS
    + COMPLAINT_KEYWORDS
    + PRAISE_KEYWORDS
    + QUESTION_KEYWORDS
)


def contains_keyword(text: str, keywords: Iterable[str]) -> bool:
    """Case-insensitive substring match against any keyword."""
    lowered = text.lower()
    return any(keyword.lower() in lowered for keyword in keywords)


def might_contain_feedback(text: str) -> bool:
    return contains_keyword(text, FEEDBACK_KEYWORDS)


def should_process(text: str) -> bool:
    """Decide whether a message is worth sending to the extraction model."""
    if not text or len(text.strip()) < MIN_LENGTH:
        return False

    if len(text) > MAX_LENGTH:
        return False

    return might_contain_feedback(text)
