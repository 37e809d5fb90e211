# =============================================================================
# Unit Tests — Stage Catalogue and Presentation Formatter
# =============================================================================

from __future__ import annotations

import pytest

from insurechat.agents.decoder import DecodedResult, decode_response
from insurechat.agents.formatter import (
    DECISION_PROMPT,
    comparison_rows,
    format_currency,
    ranked_recommendations,
    render_stage,
    score_tier,
)
from insurechat.agents.stages import (
    AUTO_CHAIN,
    STAGES,
    compose_request,
    get_stage,
    prior_stages,
)


# ---------------------------------------------------------------------------
# Test: Stage Catalogue
# ---------------------------------------------------------------------------


class TestStages:
    def test_five_stages_two_gates(self):
        assert [s.endpoint for s in STAGES] == [
            "agent1", "agent2", "agent3", "agent4", "agent5",
        ]
        assert [s.id for s in STAGES if s.gated] == ["stage1", "stage5"]
        assert [s.id for s in AUTO_CHAIN] == ["stage2", "stage3", "stage4", "stage5"]

    def test_prior_stages(self):
        assert prior_stages(get_stage("stage1")) == ()
        assert [s.id for s in prior_stages(get_stage("stage4"))] == [
            "stage1", "stage2", "stage3",
        ]

    def test_unknown_stage(self):
        with pytest.raises(KeyError):
            get_stage("stage9")

    def test_stage1_body_with_feedback(self):
        body = compose_request(get_stage("stage1"), "q", {}, feedback="cheaper")
        assert body == {"data_query": "q", "feedback": "cheaper"}

    def test_stage3_body_carries_prior_results(self):
        results = {
            "stage1": DecodedResult(fields={"summary": "needs"}),
            "stage2": DecodedResult.from_text("optimised plan"),
        }
        body = compose_request(get_stage("stage3"), "q", results)
        assert body == {
            "data_query": "q",
            "analysis_result": {"summary": "needs"},
            "optimization_result": "optimised plan",
        }

    def test_missing_prior_result_raises(self):
        with pytest.raises(KeyError):
            compose_request(get_stage("stage2"), "q", {})


# ---------------------------------------------------------------------------
# Test: Rendering
# ---------------------------------------------------------------------------


class TestRenderStage:
    def test_heading_and_summary(self):
        text = render_stage(get_stage("stage2"), DecodedResult(fields={"summary": "Plan B"}))
        assert text.startswith("### Plan optimisation")
        assert "Plan B" in text
        assert DECISION_PROMPT not in text

    def test_gate_prompt_when_awaiting(self):
        text = render_stage(
            get_stage("stage1"),
            DecodedResult(fields={"summary": "x"}),
            awaiting_decision=True,
        )
        assert text.endswith(DECISION_PROMPT)

    def test_upstream_error_shown(self):
        text = render_stage(
            get_stage("stage3"), DecodedResult(fields={}, error="quota exceeded"),
        )
        assert "quota exceeded" in text
        assert "reported an error" in text

    def test_opaque_text_shown_verbatim(self):
        text = render_stage(get_stage("stage4"), DecodedResult.from_text("All good."))
        assert "All good." in text

    def test_empty_result_has_placeholder(self):
        text = render_stage(get_stage("stage4"), DecodedResult(fields={}))
        assert "No details were returned" in text

    def test_extra_fields_are_listed(self):
        result = DecodedResult(fields={"summary": "s", "risk_level": "low"})
        text = render_stage(get_stage("stage2"), result)
        assert "**Risk level**: low" in text

    def test_evaluator_without_company(self):
        result = decode_response({
            "result": {"evaluator": "EvaluationResult(verdict='none fit')"},
        })
        text = render_stage(get_stage("stage5"), result)
        assert "No matching product was found" in text
        assert "none fit" in text

    def test_evaluator_company_under_other_field_name(self):
        result = decode_response({
            "result": {
                "evaluator": (
                    "EvaluatorOutput(company_match=CompanyMatch(product_id='P1', "
                    "name='Plan A'), benefits_to_add=['X'])"
                ),
            },
        })
        text = render_stage(get_stage("stage5"), result)
        assert "No matching product was found" not in text
        assert "Best matching product:" in text
        assert "Plan A" in text

    def test_evaluator_company_price_formatted(self):
        result = decode_response({
            "result": {
                "evaluator": "CompanyMatch(product_id='P1', name='Plan A', current_price=120000)",
            },
        })
        text = render_stage(get_stage("stage5"), result)
        assert "Plan A" in text
        assert "120.000 ₫" in text


# ---------------------------------------------------------------------------
# Test: Views
# ---------------------------------------------------------------------------


class TestViews:
    def test_comparison_rows(self):
        result = DecodedResult(fields={
            "comparison_table": [
                {"plan_name": "Basic", "premium": 3500000, "coverage": "Inpatient"},
                "not a row",
            ],
        })
        rows = comparison_rows(result)
        assert rows == [{
            "plan_name": "Basic",
            "premium": "3.500.000 ₫",
            "coverage": "Inpatient",
            "exclusions": "—",
            "deductible": "—",
        }]

    def test_comparison_rows_absent(self):
        assert comparison_rows(None) == []
        assert comparison_rows(DecodedResult(fields={"comparison_table": "n/a"})) == []

    def test_recommendations_sorted_with_tiers(self):
        result = DecodedResult(fields={
            "recommendations": [
                {"plan_name": "B", "score": 70},
                {"plan_name": "A", "score": "92", "reason": "Broad cover"},
                {"plan_name": "C"},
            ],
        })
        cards = ranked_recommendations(result)
        assert [c["plan_name"] for c in cards] == ["A", "B", "C"]
        assert [c["tier"] for c in cards] == ["excellent", "fair", "unrated"]
        assert cards[0]["score"] == 92.0
        assert cards[0]["reason"] == "Broad cover"
        assert cards[2]["best_for"] == "—"

    @pytest.mark.parametrize(
        "score, tier",
        [(90, "excellent"), (89.9, "good"), (75, "good"), (60, "fair"), (59, "weak")],
    )
    def test_score_tier_boundaries(self, score, tier):
        assert score_tier(score) == tier

    def test_format_currency(self):
        assert format_currency("120000") == "120.000 ₫"
        assert format_currency(1500) == "1.500 ₫"
        assert format_currency(None) == "—"
        assert format_currency("on request") == "on request"
