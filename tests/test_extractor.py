"""
Tests for the extraction step
"""

import pytest

from pulseboard.errors import LimitError, TransportError
from pulseboard.nlp.extractor import (
    FeedbackExtractor, find_first_json_object, parse_extraction_response,
)
from pulseboard.nlp.prompts import build_extraction_prompt
from fakes import DARK_MODE_RESPONSE, FakeChatClient, extraction_response, feedback_item


def test_extracts_items_and_usage():
    """A valid response yields typed items plus token usage and cost."""
    extractor = FeedbackExtractor(FakeChatClient(DARK_MODE_RESPONSE), model='gpt-4o-mini')
    result = extractor.extract("Would love a dark mode")

    assert result.success is True
    assert len(result.items) == 1
    assert result.items[0].type == 'feature_request'
    assert result.items[0].title == "Add dark mode support"
    assert result.input_tokens == 120
    assert result.output_tokens == 60
    assert result.cost_cents > 0


def test_tolerates_prose_around_json():
    """The first JSON object is found even when wrapped in prose."""
    text = "Sure! Here is the analysis:\n" + DARK_MODE_RESPONSE + "\nLet me know {if} you need more."
    items, _ = parse_extraction_response(text)
    assert len(items) == 1


def test_has_feedback_false_means_no_items():
    """Items are discarded when the model says there is no feedback."""
    text = extraction_response(feedback_item(), has_feedback=False, skip_reason="greeting")
    items, skip_reason = parse_extraction_response(text)
    assert items == []
    assert skip_reason == "greeting"


def test_multiple_items_are_independent():
    text = extraction_response(
        feedback_item(),
        feedback_item(title="Export crashes on large files", type="bug_report", urgency="high")
    )
    items, _ = parse_extraction_response(text)
    assert [item.type for item in items] == ['feature_request', 'bug_report']


def test_long_titles_are_truncated():
    items, _ = parse_extraction_response(extraction_response(feedback_item(title="x" * 120)))
    assert len(items[0].title) == 80


def test_invalid_enum_is_a_parse_error():
    """A value outside the contract fails the whole response but keeps usage."""
    response = extraction_response(feedback_item(type="rant"))
    result = FeedbackExtractor(FakeChatClient(response), model='gpt-4o-mini').extract("hate it")

    assert result.success is False
    assert result.error_kind == 'parse_error'
    assert result.items == []
    assert result.input_tokens == 120


def test_confidence_out_of_range_is_a_parse_error():
    result = FeedbackExtractor(
        FakeChatClient(extraction_response(feedback_item(confidence=1.5))), model='gpt-4o-mini'
    ).extract("love it")
    assert result.error_kind == 'parse_error'


def test_missing_json_is_a_parse_error():
    result = FeedbackExtractor(FakeChatClient("I could not find any feedback."), model='gpt-4o-mini').extract("hi")
    assert result.success is False
    assert result.error_kind == 'parse_error'


def test_transport_failure_is_reported():
    extractor = FeedbackExtractor(FakeChatClient(TransportError("timeout")), model='gpt-4o-mini')
    result = extractor.extract("The app is broken")

    assert result.success is False
    assert result.error_kind == 'transport_error'
    assert result.items == []


def test_rate_limit_propagates():
    extractor = FeedbackExtractor(FakeChatClient(LimitError("slow down", retry_after=5)), model='gpt-4o-mini')
    with pytest.raises(LimitError):
        extractor.extract("The app is broken")


def test_find_first_json_object_skips_non_objects():
    assert find_first_json_object('[1, 2] {"a": {"b": 1}}') == {'a': {'b': 1}}


def test_prompt_includes_context():
    prompt = build_extraction_prompt("dark mode please", {
        'source': 'Slack', 'channel': 'C1', 'user_name': 'Dana', 'previous_messages': ['earlier note']
    })
    assert "Source: Slack" in prompt
    assert "Channel: C1" in prompt
    assert "From: Dana" in prompt
    assert "earlier note" in prompt
    assert "dark mode please" in prompt


def test_prompt_without_context():
    prompt = build_extraction_prompt("dark mode please")
    assert not prompt.startswith("Context:")
