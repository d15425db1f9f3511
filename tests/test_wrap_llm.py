"""
wrap_llm Tests

One llm span per call: usage normalization, cost, PII signals, redaction
of recorded copies and error propagation.
"""

import asyncio
import inspect
from types import SimpleNamespace

import pytest

from tylo_lens.observability.lens import TyloLens, normalize_usage
from tylo_lens.cost.tokens import estimate_tokens
from tylo_lens.schemas.trace import RiskLevel, SpanKind


def test_declared_usage_and_cost(lens):
    """Test: 1000 in / 500 out at 1 and 2 per 1K costs 2.0."""
    print("=" * 60)
    print("TEST: Declared usage and cost")
    print("=" * 60)

    def call(request):
        return {"outputText": "Sure.", "usage": {"inputTokens": 1000, "outputTokens": 500}}

    chat = lens.wrap_llm("test-model", call)
    result = chat({"prompt": "Summarize the report"})

    assert result == {"outputText": "Sure.", "usage": {"inputTokens": 1000, "outputTokens": 500}}

    span = lens.get_trace().spans[0]
    assert span.kind == SpanKind.LLM
    assert span.name == "llm.call"
    assert span.model == "test-model"
    assert span.usage.input_tokens == 1000
    assert span.usage.output_tokens == 500
    assert span.usage.total_tokens == 1500
    assert span.cost.total == pytest.approx(2.0)
    assert span.cost.input == pytest.approx(1.0)
    assert span.cost.output == pytest.approx(1.0)
    assert span.cost.currency == "USD"
    assert span.end_time is not None

    print("  ✅ PASSED\n")


def test_missing_usage_is_estimated_on_raw_text(lens):
    """Test: estimates use the unredacted prompt."""
    prompt = "jane.doe.longname@example.com"

    chat = lens.wrap_llm("test-model", lambda request: {"text": "abcd"})
    chat({"prompt": prompt})

    span = lens.get_trace().spans[0]
    assert span.input.prompt == "[REDACTED:email]"
    assert span.usage.input_tokens == estimate_tokens(prompt) == 8
    assert span.usage.output_tokens == 1
    assert span.usage.total_tokens == 9


def test_prompt_redaction_and_pii_signals(lens):
    """Test: recorded prompt is redacted, safety reflects the raw text."""
    chat = lens.wrap_llm("test-model", lambda request: {"outputText": "I will email you."})
    chat(prompt="Contact jane@example.com tomorrow")

    span = lens.get_trace().spans[0]
    assert "jane@example.com" not in span.input.prompt
    assert "[REDACTED:email]" in span.input.prompt
    assert span.safety.pii.has_findings
    assert span.safety.risk == RiskLevel.MEDIUM
    assert span.safety.disclaimer
    assert [e.field for e in span.safety.pii.evidence] == ["prompt"]
    assert "jane@example.com" not in span.safety.pii.evidence[0].before


def test_high_risk_in_output(lens):
    """Test: an SSN in the output makes the span high risk."""
    chat = lens.wrap_llm("test-model", lambda request: {"outputText": "SSN is 123-45-6789"})
    chat("what is the ssn?")

    span = lens.get_trace().spans[0]
    assert span.safety.risk == RiskLevel.HIGH
    assert "123-45-6789" not in span.output.text


def test_redaction_disabled_keeps_raw_text():
    """Test: redact_pii=False records the raw prompt."""
    lens = TyloLens(app={"name": "raw"}, ethics={"redact_pii": False})
    chat = lens.wrap_llm("m", lambda request: {"outputText": "ok"})
    chat({"prompt": "mail jane@example.com"})

    span = lens.get_trace().spans[0]
    assert span.input.prompt == "mail jane@example.com"
    assert span.safety.risk == RiskLevel.MEDIUM


def test_capture_override_per_call_site(lens):
    """Test: capture flags from the call site beat the instance defaults."""
    chat = lens.wrap_llm("test-model", lambda request: {"outputText": "secret answer"},
                         capture={"prompts": False, "outputs": False})
    chat({"prompt": "secret question"})

    span = lens.get_trace().spans[0]
    assert span.input.prompt is None
    assert span.output.text is None
    assert span.usage.input_tokens == estimate_tokens("secret question")


def test_usage_aliases_and_objects():
    """Test: snake_case / prompt_tokens aliases and attribute access."""
    usage = normalize_usage(
        SimpleNamespace(prompt_tokens=12, completion_tokens=3, total_tokens=None),
        "ignored", "ignored", estimate_tokens,
    )
    assert (usage.input_tokens, usage.output_tokens, usage.total_tokens) == (12, 3, 15)

    usage = normalize_usage({"input": 4, "output": float("nan"), "total": 100}, "", "abcdefgh", estimate_tokens)
    assert (usage.input_tokens, usage.output_tokens, usage.total_tokens) == (4, 2, 100)

    usage = normalize_usage({"inputTokens": -5}, "", "", estimate_tokens)
    assert usage.input_tokens == 0


def test_result_object_attributes(lens):
    """Test: output text and usage are read from attributes too."""
    result = SimpleNamespace(output_text="done", usage=SimpleNamespace(input_tokens=7, output_tokens=2))
    chat = lens.wrap_llm("test-model", lambda request: result)
    assert chat("go") is result

    span = lens.get_trace().spans[0]
    assert span.output.text == "done"
    assert span.usage.total_tokens == 9


def test_error_is_recorded_and_reraised(lens):
    """Test: a failing model call ends the span and re-raises unchanged."""
    class ProviderError(Exception):
        pass

    def call(request):
        raise ProviderError("rate limited")

    chat = lens.wrap_llm("test-model", call)
    with pytest.raises(ProviderError, match="rate limited"):
        chat({"prompt": "hi"})

    span = lens.get_trace().spans[0]
    assert span.meta["error"] == "rate limited"
    assert span.end_time is not None
    assert span.usage is None
    assert lens.span_stack == []


def test_async_function_gets_async_wrapper(lens):
    """Test: coroutine functions are wrapped with a coroutine function."""
    async def call(request):
        await asyncio.sleep(0)
        return {"outputText": "async reply", "usage": {"input_tokens": 3, "output_tokens": 4}}

    chat = lens.wrap_llm("test-model", call, name="chat.async", meta={"provider": "fake"})
    assert inspect.iscoroutinefunction(chat)

    result = asyncio.run(chat({"prompt": "ping"}))
    assert result["outputText"] == "async reply"

    span = lens.get_trace().spans[0]
    assert span.name == "chat.async"
    assert span.meta == {"provider": "fake"}
    assert span.usage.total_tokens == 7


def test_llm_span_nests_under_open_span(lens):
    """Test: wrap_llm spans get the enclosing span as parent."""
    chat = lens.wrap_llm("test-model", lambda request: {"outputText": "x"})
    with lens.span(kind="tool", name="agent") as agent:
        chat("step")
    llm_span = lens.get_trace().spans[1]
    assert llm_span.parent_id == agent.span.id


def test_custom_token_estimator():
    """Test: an injected estimator replaces the heuristic."""
    lens = TyloLens(app={"name": "est"}, token_estimator=lambda text: 7)
    chat = lens.wrap_llm("m", lambda request: {"outputText": "whatever"})
    chat("anything")
    assert lens.get_trace().spans[0].usage.total_tokens == 14


def test_unknown_model_costs_nothing(lens):
    """Test: no pricing entry means zero cost, no error."""
    chat = lens.wrap_llm("unpriced-model", lambda request: {"outputText": "x", "usage": {"totalTokens": 10}})
    chat("x")
    cost = lens.get_trace().spans[0].cost
    assert cost.total == 0.0
    assert cost.currency == "USD"


class EchoModel:
    """Callable object with an async __call__ (not a coroutine function itself)."""

    async def __call__(self, request):
        await asyncio.sleep(0)
        return {"outputText": "Echo: " + request["prompt"], "usage": {"inputTokens": 1000, "outputTokens": 500}}


def test_async_callable_object_is_awaited_before_span_ends(lens):
    """Test: an awaitable result is resolved before usage and output are recorded."""
    print("=" * 60)
    print("TEST: async __call__")
    print("=" * 60)

    chat = lens.wrap_llm("test-model", EchoModel())
    pending = chat({"prompt": "hello"})

    span = lens.get_trace().spans[0]
    assert inspect.isawaitable(pending)
    assert span.end_time is None

    result = asyncio.run(pending)
    assert result["outputText"] == "Echo: hello"
    assert span.end_time is not None
    assert span.output.text == "Echo: hello"
    assert span.usage.total_tokens == 1500
    assert span.cost.total == pytest.approx(2.0)
    assert lens.span_stack == []

    print("  ✅ PASSED\n")


def test_lambda_returning_coroutine_records_late_error(lens):
    """Test: an error raised while awaiting is recorded on the span and re-raised."""
    async def failing(request):
        raise TimeoutError("provider timed out")

    chat = lens.wrap_llm("test-model", lambda request: failing(request))

    with pytest.raises(TimeoutError):
        asyncio.run(chat({"prompt": "ping"}))

    span = lens.get_trace().spans[0]
    assert span.meta["error"] == "provider timed out"
    assert span.end_time is not None
    assert span.output is None
