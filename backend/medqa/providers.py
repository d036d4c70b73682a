"""Shared contract for the generative-text providers behind the gateway."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

import httpx

logger = logging.getLogger(__name__)

DISCLAIMER = "For actual patient care, always consult a physician."
DISCLAIMER_PHRASE = "consult a physician"


class ProviderOutcome(str, Enum):
    SUCCESS = "success"
    SAFETY_BLOCKED = "safety_blocked"
    QUOTA_EXCEEDED = "quota_exceeded"
    EMPTY_OR_TOO_SHORT = "empty_or_too_short"
    TRANSPORT_FAILURE = "transport_failure"
    NOT_CONFIGURED = "not_configured"


@dataclass
class ProviderResult:
    outcome: ProviderOutcome
    answer: str | None = None
    # Raw provider diagnostics. Never shown to callers outside development mode.
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is ProviderOutcome.SUCCESS

    @classmethod
    def success(cls, answer: str) -> "ProviderResult":
        return cls(ProviderOutcome.SUCCESS, answer=answer)

    @classmethod
    def failure(cls, outcome: ProviderOutcome, detail: str | None = None) -> "ProviderResult":
        return cls(outcome, detail=detail)


class ProviderClient(ABC):
    """One upstream text-generation backend.

    Implementations classify every failure into a ProviderResult instead of
    raising, and make at most one network call per generate().
    """

    name: str = "provider"

    def __init__(self, http_client: httpx.AsyncClient, api_key: str, model: str, timeout: float):
        self.http_client = http_client
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @property
    @abstractmethod
    def source(self) -> str:
        """Tag reported to callers as the answer's source."""

    @abstractmethod
    def build_prompt(self, question: str) -> str:
        ...

    @abstractmethod
    async def generate(self, question: str) -> ProviderResult:
        ...

    async def _post(self, url: str, **kwargs) -> httpx.Response | ProviderResult:
        """POST with this client's timeout.

        Returns the response, or a TRANSPORT_FAILURE result for timeouts and
        connection errors. HTTP error statuses are left to the caller.
        """
        try:
            return await self.http_client.post(url, timeout=self.timeout, **kwargs)
        except httpx.TimeoutException:
            logger.warning(f"{self.name} request timed out after {self.timeout}s")
            return ProviderResult.failure(
                ProviderOutcome.TRANSPORT_FAILURE,
                f"{self.name} request timed out after {self.timeout}s",
            )
        except httpx.HTTPError as e:
            logger.warning(f"{self.name} request failed: {e}")
            return ProviderResult.failure(
                ProviderOutcome.TRANSPORT_FAILURE, f"{self.name} request failed: {e}"
            )
