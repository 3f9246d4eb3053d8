import json
import logging
import time
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Tuple

import openai
from openai import OpenAI

from pulseboard.errors import LimitError, ParseError, TransportError
from pulseboard.models.feedback import FEEDBACK_TYPES, SENTIMENTS, URGENCIES
from .costs import estimate_cost_cents
from .prompts import EXTRACTION_SYSTEM_PROMPT, build_extraction_prompt

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 80


@dataclass
class Completion:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ExtractedItem:
    type: str
    title: str
    description: str
    quote: str
    confidence: float
    sentiment: str
    urgency: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ExtractionResult:
    success: bool
    model: str
    items: List[ExtractedItem] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    cost_cents: float = 0.0
    latency_ms: int = 0
    skip_reason: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None  # transport_error, parse_error


def _retry_after(exc: openai.APIStatusError) -> Optional[float]:
    try:
        value = exc.response.headers.get('retry-after')
        return float(value) if value is not None else None
    except (AttributeError, ValueError):
        return None


class OpenAIChatClient:
    """Chat completion provider: ``complete(prompt, system) -> Completion``."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", max_tokens: int = 2048,
                 timeout: float = 30.0):
        # Retries belong to the job orchestrator, not the SDK
        self.client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.model = model
        self.max_tokens = max_tokens

    def complete(self, prompt: str, system: str) -> Completion:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
            )
        except openai.RateLimitError as e:
            raise LimitError(f"Extraction provider rate limited: {e}", retry_after=_retry_after(e)) from e
        except openai.APIError as e:
            raise TransportError(f"Extraction provider call failed: {e}") from e

        usage = response.usage
        return Completion(
            text=response.choices[0].message.content or "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


def find_first_json_object(text: str) -> dict:
    """Return the first top-level JSON object embedded in ``text``.

    The model sometimes wraps its answer in prose, so every ``{`` is tried as
    a starting point until one decodes to an object.
    """
    decoder = json.JSONDecoder()
    start = text.find('{')
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value
        start = text.find('{', start + 1)
    raise ParseError("No JSON object found in model response")


def _require_choice(item: dict, key: str, choices: Tuple[str, ...], index: int) -> str:
    value = item.get(key)
    if value not in choices:
        raise ParseError(f"feedback_items[{index}].{key} must be one of {choices}, got {value!r}")
    return value


def _optional_text(item: dict, key: str, index: int) -> str:
    value = item.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ParseError(f"feedback_items[{index}].{key} must be a string")
    return value.strip()


def _validate_item(item, index: int) -> ExtractedItem:
    if not isinstance(item, dict):
        raise ParseError(f"feedback_items[{index}] is not an object")

    title = item.get('title')
    if not isinstance(title, str) or not title.strip():
        raise ParseError(f"feedback_items[{index}].title is missing")

    confidence = item.get('confidence')
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise ParseError(f"feedback_items[{index}].confidence must be a number")
    if not 0.0 <= confidence <= 1.0:
        raise ParseError(f"feedback_items[{index}].confidence out of range: {confidence}")

    return ExtractedItem(
        type=_require_choice(item, 'type', FEEDBACK_TYPES, index),
        title=title.strip()[:MAX_TITLE_LENGTH],
        description=_optional_text(item, 'description', index),
        quote=_optional_text(item, 'quote', index),
        confidence=float(confidence),
        sentiment=_require_choice(item, 'sentiment', SENTIMENTS, index),
        urgency=_require_choice(item, 'urgency', URGENCIES, index),
    )


def parse_extraction_response(text: str) -> Tuple[List[ExtractedItem], Optional[str]]:
    """Validate a model response against the extraction contract.

    Returns the items and the optional skip reason; raises ``ParseError`` when
    the response does not conform.
    """
    payload = find_first_json_object(text)

    has_feedback = payload.get('has_feedback')
    if not isinstance(has_feedback, bool):
        raise ParseError("has_feedback must be a boolean")

    skip_reason = payload.get('skip_reason')
    if skip_reason is not None and not isinstance(skip_reason, str):
        raise ParseError("skip_reason must be a string")

    raw_items = payload.get('feedback_items', [])
    if raw_items is None:
        raw_items = []
    if not isinstance(raw_items, list):
        raise ParseError("feedback_items must be a list")

    items = [_validate_item(item, i) for i, item in enumerate(raw_items)]

    if not has_feedback:
        return [], skip_reason
    return items, skip_reason


def items_from_payload(payload: dict) -> List[ExtractedItem]:
    """Rebuild items from a checkpointed extraction payload."""
    return [ExtractedItem(**item) for item in payload.get('items', [])]


class FeedbackExtractor:
    def __init__(self, client, model: str):
        """
        Initialize the extractor.

        ``client`` is any object with ``complete(prompt, system) -> Completion``;
        ``model`` names the model for cost accounting.
        """
        self.client = client
        self.model = model

    def extract(self, message: str, context: Optional[dict] = None) -> ExtractionResult:
        """Extract feedback items from one customer message.

        Transport and parse failures come back as ``success=False`` with no
        items. A provider rate limit raises ``LimitError`` so the caller can
        requeue.
        """
        prompt = build_extraction_prompt(message, context)
        start_time = time.monotonic()

        try:
            completion = self.client.complete(prompt, EXTRACTION_SYSTEM_PROMPT)
        except TransportError as e:
            latency_ms = int((time.monotonic() - start_time) * 1000)
            logger.warning(f"Extraction transport failure: {e}")
            return ExtractionResult(
                success=False,
                model=self.model,
                latency_ms=latency_ms,
                error=str(e),
                error_kind='transport_error',
            )

        latency_ms = int((time.monotonic() - start_time) * 1000)
        cost_cents = estimate_cost_cents(self.model, completion.input_tokens, completion.output_tokens)
        result = ExtractionResult(
            success=True,
            model=self.model,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            cost_cents=cost_cents,
            latency_ms=latency_ms,
        )

        try:
            result.items, result.skip_reason = parse_extraction_response(completion.text)
        except ParseError as e:
            logger.warning(f"Extraction parse failure: {e}")
            result.success = False
            result.items = []
            result.error = f"Failed to parse model response: {e}"
            result.error_kind = 'parse_error'

        return result
