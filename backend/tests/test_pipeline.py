import pytest

from conftest import FakeProvider, fail, ok
from medqa.cache import normalize_cache_key
from medqa.pipeline import (
    CACHE_SOURCE, NOT_CONFIGURED_MESSAGE, QUOTA_EXCEEDED_MESSAGE,
    SAFETY_BLOCKED_MESSAGE, UNAVAILABLE_MESSAGE, AnswerPipeline, PipelineOutcome,
)
from medqa.providers import ProviderOutcome

QUESTION = "What causes chest pain in MI?"


def make_pipeline(cache, primary_results, fallback_results=(), debug=False):
    primary = FakeProvider("gemini", "gemini_2.5_flash", primary_results)
    fallback = FakeProvider("huggingface", "hf_mistral_7b_instruct_v0.2", fallback_results)
    return AnswerPipeline(cache, [primary, fallback], debug=debug), primary, fallback


@pytest.mark.asyncio
async def test_primary_success_writes_through(cache):
    pipeline, primary, fallback = make_pipeline(cache, [ok("Primary answer about MI.")])

    result = await pipeline.answer(QUESTION)

    assert result.status_code == 200
    assert result.outcome is PipelineOutcome.PRIMARY_SUCCESS
    assert result.body == {
        "answer": "Primary answer about MI.",
        "source": "gemini_2.5_flash",
        "cached": False,
        "cache_size": 1,
    }
    assert cache.lookup(normalize_cache_key(QUESTION)) == "Primary answer about MI."
    assert primary.calls == [QUESTION]
    assert fallback.calls == []


@pytest.mark.asyncio
async def test_cache_hit_makes_no_provider_calls(cache):
    cache.insert(normalize_cache_key(QUESTION), "Cached answer.")
    pipeline, primary, fallback = make_pipeline(cache, [])

    result = await pipeline.answer("what causes chest pain in mi?")

    assert result.status_code == 200
    assert result.outcome is PipelineOutcome.CACHE_HIT
    assert result.body == {"answer": "Cached answer.", "source": CACHE_SOURCE, "cached": True}
    assert primary.calls == []
    assert fallback.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("question, message", [
    ("hi", "Please enter a complete question (minimum 3 characters)"),
    ("my chest hurts, should I take aspirin", "Educational questions only. Rephrase (e.g., 'What causes chest pain in MI?')"),
])
async def test_rejected_input_never_reaches_providers(cache, question, message):
    pipeline, primary, fallback = make_pipeline(cache, [])

    result = await pipeline.answer(question)

    assert result.status_code == 400
    assert result.outcome is PipelineOutcome.REJECTED_INPUT
    assert result.body == {"error": message}
    assert primary.calls == []
    assert fallback.calls == []


@pytest.mark.asyncio
async def test_rejection_happens_before_cache_lookup(cache):
    cache.insert(normalize_cache_key("my chest hurts"), "should never be served")
    pipeline, _, _ = make_pipeline(cache, [])

    result = await pipeline.answer("my chest hurts")
    assert result.status_code == 400


@pytest.mark.asyncio
async def test_safety_block_is_authoritative(cache):
    pipeline, _, fallback = make_pipeline(cache, [fail(ProviderOutcome.SAFETY_BLOCKED)], [ok()])

    result = await pipeline.answer(QUESTION)

    assert result.status_code == 400
    assert result.outcome is PipelineOutcome.SAFETY_BLOCKED
    assert result.body == {"error": SAFETY_BLOCKED_MESSAGE}
    assert fallback.calls == []
    assert cache.size == 0


@pytest.mark.asyncio
async def test_primary_not_configured_is_500_without_fallback(cache):
    pipeline, _, fallback = make_pipeline(cache, [fail(ProviderOutcome.NOT_CONFIGURED)], [ok()])

    result = await pipeline.answer(QUESTION)

    assert result.status_code == 500
    assert result.outcome is PipelineOutcome.NOT_CONFIGURED
    assert result.body == {"error": NOT_CONFIGURED_MESSAGE}
    assert fallback.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("primary_failure", [
    ProviderOutcome.QUOTA_EXCEEDED,
    ProviderOutcome.TRANSPORT_FAILURE,
    ProviderOutcome.EMPTY_OR_TOO_SHORT,
])
async def test_recoverable_failures_fall_back(cache, primary_failure):
    pipeline, _, fallback = make_pipeline(
        cache, [fail(primary_failure)], [ok("Fallback answer about MI.")]
    )

    result = await pipeline.answer(QUESTION)

    assert result.status_code == 200
    assert result.outcome is PipelineOutcome.FALLBACK_SUCCESS
    assert result.body["source"] == "hf_mistral_7b_instruct_v0.2"
    assert result.body["cached"] is False
    assert fallback.calls == [QUESTION]
    assert cache.lookup(normalize_cache_key(QUESTION)) == "Fallback answer about MI."


@pytest.mark.asyncio
async def test_quota_then_fallback_then_cache_hit(cache):
    pipeline, primary, fallback = make_pipeline(
        cache, [fail(ProviderOutcome.QUOTA_EXCEEDED)], [ok("Fallback answer about MI.")]
    )

    first = await pipeline.answer(QUESTION)
    second = await pipeline.answer(QUESTION)

    assert first.body["source"] == "hf_mistral_7b_instruct_v0.2"
    assert first.body["cached"] is False
    assert second.status_code == 200
    assert second.body["source"] == CACHE_SOURCE
    assert second.body["cached"] is True
    assert len(primary.calls) == 1
    assert len(fallback.calls) == 1


@pytest.mark.asyncio
async def test_quota_on_primary_and_fallback_failure_is_429(cache):
    pipeline, _, _ = make_pipeline(
        cache, [fail(ProviderOutcome.QUOTA_EXCEEDED)], [fail(ProviderOutcome.TRANSPORT_FAILURE)]
    )

    result = await pipeline.answer(QUESTION)

    assert result.status_code == 429
    assert result.outcome is PipelineOutcome.QUOTA_EXHAUSTED_NO_FALLBACK
    assert result.body == {"error": QUOTA_EXCEEDED_MESSAGE, "quota_exceeded": True}


@pytest.mark.asyncio
async def test_quota_with_unconfigured_fallback_is_429(cache):
    pipeline, _, _ = make_pipeline(
        cache, [fail(ProviderOutcome.QUOTA_EXCEEDED)], [fail(ProviderOutcome.NOT_CONFIGURED)]
    )

    result = await pipeline.answer(QUESTION)
    assert result.status_code == 429


@pytest.mark.asyncio
async def test_both_unreachable_is_generic_500(cache):
    pipeline, _, _ = make_pipeline(
        cache,
        [fail(ProviderOutcome.TRANSPORT_FAILURE, "connect refused")],
        [fail(ProviderOutcome.TRANSPORT_FAILURE, "connect refused")],
    )

    result = await pipeline.answer(QUESTION)

    assert result.status_code == 500
    assert result.outcome is PipelineOutcome.ALL_PROVIDERS_FAILED
    assert result.body == {"error": UNAVAILABLE_MESSAGE}
    assert "quota_exceeded" not in result.body
    assert result.attempts == [
        ("gemini", ProviderOutcome.TRANSPORT_FAILURE),
        ("huggingface", ProviderOutcome.TRANSPORT_FAILURE),
    ]
    assert cache.size == 0


@pytest.mark.asyncio
async def test_debug_mode_adds_details(cache):
    pipeline, _, _ = make_pipeline(
        cache,
        [fail(ProviderOutcome.TRANSPORT_FAILURE, "gemini down")],
        [fail(ProviderOutcome.EMPTY_OR_TOO_SHORT, "hf empty")],
        debug=True,
    )

    result = await pipeline.answer(QUESTION)

    assert result.status_code == 500
    assert result.body["details"] == "gemini down; hf empty"


def test_requires_a_provider(cache):
    with pytest.raises(ValueError):
        AnswerPipeline(cache, [])


@pytest.mark.asyncio
async def test_fallback_safety_block_counts_as_failure(cache):
    pipeline, _, fallback = make_pipeline(
        cache, [fail(ProviderOutcome.TRANSPORT_FAILURE)], [fail(ProviderOutcome.SAFETY_BLOCKED)]
    )

    result = await pipeline.answer(QUESTION)

    assert result.status_code == 500
    assert result.outcome is PipelineOutcome.ALL_PROVIDERS_FAILED
    assert result.body == {"error": UNAVAILABLE_MESSAGE}
    assert fallback.calls == [QUESTION]


@pytest.mark.asyncio
async def test_primary_quota_then_fallback_safety_block_is_429(cache):
    pipeline, _, _ = make_pipeline(
        cache, [fail(ProviderOutcome.QUOTA_EXCEEDED)], [fail(ProviderOutcome.SAFETY_BLOCKED)]
    )

    result = await pipeline.answer(QUESTION)
    assert result.status_code == 429
    assert result.body["quota_exceeded"] is True
