"""
Test doubles for model clients, the dispatcher and HTTP
"""

import json

from pulseboard.errors import TransportError
from pulseboard.nlp.extractor import Completion


def extraction_response(*items, has_feedback=True, skip_reason=None):
    """Serialize a model response in the extraction contract."""
    return json.dumps({
        'has_feedback': has_feedback,
        'feedback_items': list(items),
        'skip_reason': skip_reason
    })


def feedback_item(title="Add dark mode support", type="feature_request", confidence=0.9,
                  description="User wants a dark theme for night usage", **overrides):
    item = {
        'type': type,
        'title': title,
        'description': description,
        'quote': "Would love a dark mode",
        'confidence': confidence,
        'sentiment': 'neutral',
        'urgency': 'normal'
    }
    item.update(overrides)
    return item


DARK_MODE_RESPONSE = extraction_response(feedback_item())


class FakeChatClient:
    """Returns queued responses in order; the last one repeats. Exceptions are raised."""

    def __init__(self, *responses):
        self.responses = list(responses) or [DARK_MODE_RESPONSE]
        self.calls = []

    def complete(self, prompt, system):
        self.calls.append(prompt)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return Completion(text=response, input_tokens=120, output_tokens=60)


class FakeEmbeddingClient:
    """Maps substrings of the input to fixed vectors."""

    def __init__(self, vectors=None, default=(1.0, 0.0, 0.0), failures=None):
        self.vectors = vectors or {}
        self.default = default
        self.failures = failures or {}
        self.calls = []

    def embed(self, text, dims):
        self.calls.append(text)
        for key, error in self.failures.items():
            if key in text:
                raise error
        for key, vector in self.vectors.items():
            if key in text:
                return list(vector), 12
        return list(self.default), 12


class FailingEmbeddingClient(FakeEmbeddingClient):
    def embed(self, text, dims):
        self.calls.append(text)
        raise TransportError("embedding service unavailable")


class RecordingDispatcher:
    def __init__(self):
        self.sent = []

    def send(self, event, payload, countdown=None):
        self.sent.append((event, payload, countdown))
        return f"task-{len(self.sent)}"

    def events(self, name):
        return [payload for event, payload, _ in self.sent if event == name]


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=b""):
        self.status_code = status_code
        self._json = json_data
        self.content = content

    def json(self):
        return self._json


class FakeHttpSession:
    """Stands in for ``requests.Session``; returns queued responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.requests.append({'url': url, 'params': params, 'headers': headers})
        return self.responses.pop(0)

