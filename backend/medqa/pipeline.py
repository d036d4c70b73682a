import logging
from dataclasses import dataclass, field
from enum import Enum

from medqa.cache import AnswerCache, normalize_cache_key
from medqa.providers import ProviderClient, ProviderOutcome, ProviderResult
from medqa.sanitizer import validate_question

logger = logging.getLogger(__name__)

CACHE_SOURCE = "cloud_cache"

SAFETY_BLOCKED_MESSAGE = "Question blocked by safety filters. Ask strictly educational questions."
NOT_CONFIGURED_MESSAGE = "Backend not configured. Please set GEMINI_KEY environment variable."
QUOTA_EXCEEDED_MESSAGE = "Daily AI quota exceeded. Cached answers still available. Try again tomorrow."
UNAVAILABLE_MESSAGE = "AI temporarily unavailable. Try again in a few minutes."


class PipelineOutcome(str, Enum):
    CACHE_HIT = "cache_hit"
    PRIMARY_SUCCESS = "primary_success"
    FALLBACK_SUCCESS = "fallback_success"
    REJECTED_INPUT = "rejected_input"
    SAFETY_BLOCKED = "safety_blocked"
    NOT_CONFIGURED = "not_configured"
    ALL_PROVIDERS_FAILED = "all_providers_failed"
    QUOTA_EXHAUSTED_NO_FALLBACK = "quota_exhausted_no_fallback"


@dataclass
class PipelineResponse:
    status_code: int
    body: dict
    outcome: PipelineOutcome
    attempts: list[tuple[str, ProviderOutcome]] = field(default_factory=list)


class AnswerPipeline:
    """Validate -> cache -> primary -> fallback(s) -> write-through.

    providers is walked in order; the first entry is the required primary,
    whose missing configuration is fatal. Identical questions arriving
    together may both miss the cache and both call upstream; nothing
    deduplicates in-flight requests.
    """

    def __init__(
        self,
        cache: AnswerCache,
        providers: list[ProviderClient],
        max_question_length: int = 2000,
        debug: bool = False,
    ):
        if not providers:
            raise ValueError("AnswerPipeline needs at least one provider")
        self.cache = cache
        self.providers = providers
        self.max_question_length = max_question_length
        self.debug = debug

    @property
    def primary(self) -> ProviderClient:
        return self.providers[0]

    async def answer(self, raw_question: str | None) -> PipelineResponse:
        question, rejection = validate_question(raw_question, self.max_question_length)
        if rejection:
            logger.info(f"Rejected question ({rejection.name}): {question[:100]!r}")
            return PipelineResponse(
                400, {"error": rejection.message}, PipelineOutcome.REJECTED_INPUT
            )

        cache_key = normalize_cache_key(question)
        cached = self.cache.lookup(cache_key)
        if cached is not None:
            logger.info(f"Cache hit: {question!r}")
            return PipelineResponse(
                200,
                {"answer": cached, "source": CACHE_SOURCE, "cached": True},
                PipelineOutcome.CACHE_HIT,
            )

        logger.info(f"Cache miss: {question!r} - calling {self.primary.name}")
        return await self._walk_providers(question, cache_key)

    async def _walk_providers(self, question: str, cache_key: str) -> PipelineResponse:
        attempts: list[tuple[str, ProviderOutcome]] = []
        failures: list[ProviderResult] = []

        for index, provider in enumerate(self.providers):
            result = await provider.generate(question)
            attempts.append((provider.name, result.outcome))

            if result.ok:
                return self._success(question, cache_key, provider, result, index, attempts)

            logger.warning(
                f"{provider.name} failed ({result.outcome.value}) for {question!r}: {result.detail}"
            )

            # Only the primary's safety verdict is final; later ones count as failures
            if result.outcome is ProviderOutcome.SAFETY_BLOCKED and index == 0:
                return PipelineResponse(
                    400, {"error": SAFETY_BLOCKED_MESSAGE},
                    PipelineOutcome.SAFETY_BLOCKED, attempts,
                )

            if result.outcome is ProviderOutcome.NOT_CONFIGURED and index == 0:
                logger.error(f"Primary provider {provider.name} is not configured")
                return PipelineResponse(
                    500, {"error": NOT_CONFIGURED_MESSAGE},
                    PipelineOutcome.NOT_CONFIGURED, attempts,
                )

            failures.append(result)

        return self._all_failed(question, failures, attempts)

    def _success(
        self,
        question: str,
        cache_key: str,
        provider: ProviderClient,
        result: ProviderResult,
        index: int,
        attempts: list[tuple[str, ProviderOutcome]],
    ) -> PipelineResponse:
        self.cache.insert(cache_key, result.answer)
        logger.info(
            f"Cached answer from {provider.name}: {question!r} | Total cached: {self.cache.size}"
        )
        outcome = PipelineOutcome.PRIMARY_SUCCESS if index == 0 else PipelineOutcome.FALLBACK_SUCCESS
        return PipelineResponse(
            200,
            {
                "answer": result.answer,
                "source": provider.source,
                "cached": False,
                "cache_size": self.cache.size,
            },
            outcome,
            attempts,
        )

    def _all_failed(
        self,
        question: str,
        failures: list[ProviderResult],
        attempts: list[tuple[str, ProviderOutcome]],
    ) -> PipelineResponse:
        summary = ", ".join(f"{name}={outcome.value}" for name, outcome in attempts)
        logger.error(f"All providers failed for {question!r}: {summary}")

        if failures and failures[0].outcome is ProviderOutcome.QUOTA_EXCEEDED:
            return PipelineResponse(
                429,
                {"error": QUOTA_EXCEEDED_MESSAGE, "quota_exceeded": True},
                PipelineOutcome.QUOTA_EXHAUSTED_NO_FALLBACK,
                attempts,
            )

        body = {"error": UNAVAILABLE_MESSAGE}
        if self.debug:
            body["details"] = "; ".join(f.detail or f.outcome.value for f in failures)
        return PipelineResponse(500, body, PipelineOutcome.ALL_PROVIDERS_FAILED, attempts)
