"""
Transparency & Compliance Report Tests
"""

import pytest

from tylo_lens.ethics.report import generate_compliance_report
from tylo_lens.ethics.transparency import annotate_transparency, compute_clarity_score, compute_transparency
from tylo_lens.observability.lens import TyloLens
from tylo_lens.plugins.transparency import TransparencyPlugin
from tylo_lens.schemas.trace import TransparencyWeights


def _reply(text, input_tokens=10, output_tokens=10):
    return lambda request: {
        "outputText": text,
        "usage": {"inputTokens": input_tokens, "outputTokens": output_tokens},
    }


def test_clarity_heuristic():
    """Test: structure helps, refusals hurt, result stays in [0, 1]."""
    structured = (
        "Here is the plan for the release:\n- install the package.\n- run the tests.\n"
        "- publish the build artifacts to the internal registry once everything is green."
    )
    assert compute_clarity_score("") == 0.0
    assert compute_clarity_score(None) == 0.0
    assert compute_clarity_score(structured) > compute_clarity_score("ok")
    assert compute_clarity_score("I cannot do that.") < compute_clarity_score("I can do that.")
    for text in ("!!!!!!", structured, "ok", "```\ncode\n```"):
        assert 0.0 <= compute_clarity_score(text) <= 1.0


def test_empty_trace_scores_midpoint(lens):
    """Test: no spans means score 0, scaled 50."""
    record = compute_transparency(lens.start_trace())
    assert record.tokens == 0
    assert record.score == 0.0
    assert record.score_scaled == 50.0
    assert "T_score" in record.formula


def test_score_uses_declared_usage(lens):
    """Test: clarity weighted by output tokens, normalized by total tokens."""
    lens.wrap_llm("test-model", _reply("Done."))("do it")
    record = compute_transparency(lens.get_trace())

    clarity = compute_clarity_score("Done.")
    assert record.tokens == 20
    assert record.clarity_sum == pytest.approx(clarity * 10)
    assert record.pii_penalty_sum == 0
    assert record.score == pytest.approx(clarity * 10 / 20)
    assert record.score_scaled == pytest.approx((record.score + 1) * 50)


def test_pii_penalty_dominates(lens):
    """Test: one finding costs 1000 weighted points."""
    lens.wrap_llm("test-model", _reply("Noted."))("mail jane@example.com")
    record = compute_transparency(lens.get_trace())
    assert record.pii_penalty_sum == 1000
    assert record.score < 0
    assert record.score_scaled == 0.0

    lighter = compute_transparency(lens.get_trace(), TransparencyWeights(pii=0.0))
    assert lighter.pii_penalty_sum == 0


def test_annotate_backfills_spans(lens):
    """Test: each span gets its own analysis."""
    lens.wrap_llm("test-model", _reply("Done."))("first")
    with lens.span(kind="tool", name="lookup") as tool:
        tool.end(output={"text": "found it."})

    trace = annotate_transparency(lens.get_trace())
    llm_span, tool_span = trace.spans

    assert llm_span.analysis.tokens == 20
    assert llm_span.analysis.pii_count == 0
    assert tool_span.analysis.tokens >= 1
    assert trace.analysis.transparency is not None


def test_plugin_scores_on_export():
    """Test: TransparencyPlugin annotates during export, using the lens estimator."""
    print("=" * 60)
    print("TEST: Transparency plugin")
    print("=" * 60)

    lens = TyloLens(app={"name": "t"}, plugins=[TransparencyPlugin()], token_estimator=lambda text: 3)
    with lens.span(kind="tool", name="step") as step:
        step.end(output={"text": "All good."})

    assert lens.get_trace().analysis is None
    trace = lens.export_trace()

    assert trace.analysis.transparency.tokens == 3
    assert trace.spans[0].analysis.tokens == 3

    lens.dispose()
    print("  ✅ PASSED\n")


def test_compliance_report_contents(lens):
    """Test: Markdown summary with PII counts and totals."""
    lens.wrap_llm("test-model", _reply("Noted.", 1000, 500))("mail jane@example.com")
    lens.use(TransparencyPlugin())
    trace = lens.export_trace()

    report = generate_compliance_report(trace)
    assert report.startswith("# Tylo-Lens Compliance Report")
    assert f"`{trace.trace_id}`" in report
    assert "**test-app**" in report
    assert "- Environment: `test`" in report
    assert "- Spans: **1**" in report
    assert "**1500**" in report
    assert "**2.000000**" in report
    assert "- email: **1**" in report
    assert "Transparency score" in report
    assert "false positives" in report


def test_compliance_report_without_pii(lens):
    lens.wrap_llm("test-model", _reply("Fine."))("hello")
    report = generate_compliance_report(lens.end_trace())
    assert "No PII patterns detected." in report
    assert "Transparency score" not in report
