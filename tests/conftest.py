import json

import pytest

from profseg.fields import identify_fields
from profseg.thresholds import compute_thresholds


SCENARIO_ROWS = [
    {"amt": 10, "cnt": 1, "fee": 1},
    {"amt": 100, "cnt": 10, "fee": 5},
    {"amt": 12, "cnt": 2, "fee": 2},
    {"amt": 15, "cnt": 3, "fee": 3},
    {"amt": 11, "cnt": 1, "fee": 4},
]


class FakeClient:
    """Stands in for the chat endpoint: returns a canned reply or raises."""

    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def complete(self, messages, config=None):
        self.calls.append((list(messages), config))
        if self.error is not None:
            raise self.error
        if isinstance(self.reply, str):
            return self.reply
        return json.dumps(self.reply)


@pytest.fixture
def rows():
    return [dict(r) for r in SCENARIO_ROWS]


@pytest.fixture
def fields(rows):
    return identify_fields(rows)


@pytest.fixture
def thresholds(rows):
    return compute_thresholds(rows, "amt", "cnt", method="iqr", upper_multiplier=1.5, lower_multiplier=0)


@pytest.fixture
def fake_client():
    return FakeClient
