# =============================================================================
# Unit Tests — Response Decoder
# =============================================================================
#
# Pure-function tests: no network, no database. Covers the JSON shapes the
# agents return and the repr-style evaluator record of stage 5.
# =============================================================================

from __future__ import annotations

import json

from insurechat.agents.decoder import (
    DecodedResult,
    decode_evaluator,
    decode_record,
    decode_response,
)


# ---------------------------------------------------------------------------
# Test: Result Shapes
# ---------------------------------------------------------------------------


class TestDecodeResponse:
    """Tests for the top-level `{"result": ...}` normalisation."""

    def test_structured_result_used_directly(self):
        result = decode_response({"result": {"summary": "ok", "score": 3}})
        assert result.fields == {"summary": "ok", "score": 3}
        assert result.error is None
        assert result.opaque is False

    def test_json_encoded_result_is_parsed_again(self):
        inner = json.dumps({"summary": "Plan A fits", "recommendations": []})
        result = decode_response({"result": inner})
        assert result.fields["summary"] == "Plan A fits"
        assert result.fields["recommendations"] == []
        assert result.opaque is False

    def test_plain_text_result_kept_opaque(self):
        result = decode_response({"result": "Plan A covers dental care."})
        assert result.opaque is True
        assert result.text == "Plan A covers dental care."
        assert result.fields == {"text": "Plan A covers dental care."}

    def test_malformed_json_result_kept_as_text(self):
        result = decode_response({"result": '{"summary": "cut off'})
        assert result.opaque is True
        assert result.text == '{"summary": "cut off'
        assert result.error is None

    def test_raw_text_body(self):
        result = decode_response("Service says hello")
        assert result.opaque is True
        assert result.text == "Service says hello"

    def test_raw_json_text_body(self):
        result = decode_response('{"result": {"summary": "x"}}')
        assert result.fields == {"summary": "x"}

    def test_body_without_result_field_is_the_result(self):
        result = decode_response({"summary": "direct"})
        assert result.fields == {"summary": "direct"}

    def test_null_result_gives_empty_fields(self):
        result = decode_response({"result": None})
        assert result.fields == {}
        assert result.error is None

    def test_list_result_wrapped(self):
        result = decode_response({"result": [1, 2]})
        assert result.fields == {"items": [1, 2]}

    def test_upstream_error_in_result(self):
        result = decode_response({"result": {"error": "no plans found", "summary": ""}})
        assert result.error == "no plans found"
        assert "error" not in result.fields

    def test_upstream_error_at_top_level(self):
        result = decode_response({"error": "agent crashed"})
        assert result.error == "agent crashed"
        assert result.fields == {}

    def test_null_error_is_absent(self):
        result = decode_response({"result": {"summary": "fine", "error": None}})
        assert result.error is None

    def test_never_raises_on_odd_input(self):
        for body in (None, 42, b"\xff\xfe", "", [], {"result": 3.5}):
            assert isinstance(decode_response(body), DecodedResult)


# ---------------------------------------------------------------------------
# Test: Evaluator Record
# ---------------------------------------------------------------------------


class TestEvaluatorRecord:
    """Tests for the repr-style evaluator payload of stage 5."""

    def test_company_match_nested_in_evaluator(self):
        body = {
            "result": {
                "evaluator": (
                    "CompanyMatch(product_id='P1', name='Plan A', "
                    "current_price=120000)"
                ),
            }
        }
        evaluator = decode_response(body).fields["evaluator"]
        assert evaluator["company"] == {
            "product_id": "P1",
            "name": "Plan A",
            "current_price": "120000",
        }

    def test_full_record_with_named_sub_records(self):
        text = (
            "EvaluationResult(company=CompanyMatch(product_id='P7', "
            "name='Care Plus', current_price=9500000), "
            "market=MarketSummary(average_price=8000000, competitors=3), "
            "benefits_to_add=['Dental', 'Maternity'], verdict='good value')"
        )
        record = decode_record(text)
        assert record["company"]["name"] == "Care Plus"
        assert record["market"] == {"average_price": "8000000", "competitors": "3"}
        assert record["benefits_to_add"] == ["Dental", "Maternity"]
        assert record["verdict"] == "good value"

    def test_sub_records_keyed_by_type_not_field_name(self):
        body = {
            "result": {
                "evaluator": (
                    "EvaluatorOutput(company_match=CompanyMatch(product_id='P1', "
                    "name='Plan A', current_price=120000), "
                    "market_summary=MarketSummary(average_price=100000), "
                    "benefits_to_add=['X', 'Y'])"
                ),
            }
        }
        evaluator = decode_response(body).fields["evaluator"]
        assert evaluator["company"] == {
            "product_id": "P1",
            "name": "Plan A",
            "current_price": "120000",
        }
        assert evaluator["market"] == {"average_price": "100000"}
        assert evaluator["benefits_to_add"] == ["X", "Y"]
        assert "company_match" not in evaluator
        assert "market_summary" not in evaluator

    def test_list_values(self):
        assert decode_record("R(benefits_to_add=['X', 'Y'])") == {
            "benefits_to_add": ["X", "Y"],
        }

    def test_empty_list_is_empty(self):
        assert decode_record("R(benefits_to_add=[])") == {"benefits_to_add": []}

    def test_none_is_absent_not_a_string(self):
        record = decode_record("R(note=None, label='None')")
        assert record["note"] is None
        assert record["label"] == "None"

    def test_quoted_value_with_comma_and_paren(self):
        record = decode_record("R(reason='cheap, (very) good', score=88)")
        assert record == {"reason": "cheap, (very) good", "score": "88"}

    def test_missing_sub_records_decode_to_absence(self):
        evaluator = decode_evaluator("EvaluationResult(verdict='no match')")
        assert evaluator["company"] is None
        assert evaluator["market"] is None
        assert evaluator["verdict"] == "no match"

    def test_positional_sub_record_uses_alias(self):
        record = decode_record(
            "EvaluationResult(MarketSummary(average_price=1), verdict='ok')"
        )
        assert record["market"] == {"average_price": "1"}

    def test_truncated_record_is_tolerated(self):
        record = decode_record("R(company=CompanyMatch(product_id='P1', name='Pl")
        assert record["company"]["product_id"] == "P1"

    def test_dict_evaluator_passes_through(self):
        evaluator = decode_evaluator({"company": {"name": "A"}})
        assert evaluator["company"] == {"name": "A"}
        assert evaluator["market"] is None

    def test_non_record_text_is_kept(self):
        assert decode_evaluator("looks fine") == "looks fine"


# ---------------------------------------------------------------------------
# Test: Forwarding Payload
# ---------------------------------------------------------------------------


class TestAsPayload:
    def test_opaque_result_forwards_text(self):
        assert DecodedResult.from_text("abc").as_payload() == "abc"

    def test_structured_result_forwards_fields(self):
        result = DecodedResult(fields={"summary": "x"})
        assert result.as_payload() == {"summary": "x"}

    def test_error_is_forwarded(self):
        result = DecodedResult(fields={"summary": "x"}, error="partial")
        assert result.as_payload() == {"summary": "x", "error": "partial"}
