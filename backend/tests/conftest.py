import os

# Settings are read once at import time; pin them before medqa.main loads.
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("GEMINI_KEY", "")
os.environ.setdefault("HF_API_KEY", "")

import httpx
import pytest

from medqa.cache import AnswerCache
from medqa.providers import ProviderOutcome, ProviderResult


class FakeProvider:
    """Stands in for a ProviderClient and records every call."""

    def __init__(self, name, source, results):
        self.name = name
        self.source = source
        self.model = f"{name}-model"
        self.configured = True
        self.results = list(results)
        self.calls = []

    async def generate(self, question):
        self.calls.append(question)
        return self.results.pop(0)


def ok(answer="Myocardial infarction is ischemic necrosis of heart muscle."):
    return ProviderResult.success(answer)


def fail(outcome: ProviderOutcome, detail="upstream said no"):
    return ProviderResult.failure(outcome, detail)


@pytest.fixture
def cache():
    return AnswerCache(capacity=1000)


@pytest.fixture
def make_http_client():
    """Build an AsyncClient whose requests go to the given handler."""
    def _make(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make
