"""
Unit tests for the decision parser.

Covers:
- Think-tag and code-fence stripping
- Array / object / embedded-JSON strategies
- Lenient field coercion
- Error preview bounds
"""

import pytest

from autotrader_llm.trader.decision_parser import (
    ParseError,
    TradeDecision,
    decisions_to_json,
    parse_decisions,
    strip_think_tags,
)

SBER_JSON = (
    '[{"action":"BUY","ticker":"SBER","stop_loss":250.0,'
    '"take_profit":290.0,"confidence":80,"reasoning":"momentum"}]'
)


class TestParseDecisions:
    """Test suite for parse_decisions"""

    def test_plain_array(self):
        decisions = parse_decisions(SBER_JSON)
        assert decisions == [TradeDecision(
            action="BUY", ticker="SBER", stop_loss=250.0,
            take_profit=290.0, confidence=80, reasoning="momentum"
        )]

    def test_empty_inputs_return_empty_list(self):
        assert parse_decisions("") == []
        assert parse_decisions("[]") == []
        assert parse_decisions("   ") == []
        assert parse_decisions("```json\n[]\n```") == []

    def test_not_json_raises(self):
        with pytest.raises(ParseError) as exc_info:
            parse_decisions("not json")
        assert "failed to parse AI response as JSON" in str(exc_info.value)

    def test_error_preview_is_bounded(self):
        text = "x" * 1000
        with pytest.raises(ParseError) as exc_info:
            parse_decisions(text)
        assert exc_info.value.preview == "x" * 200

    def test_fences_and_think_tags_give_same_result(self):
        wrapped = f"<think>\nlet me consider [1, 2]\n</think>\n```json\n{SBER_JSON}\n```"
        assert parse_decisions(wrapped) == parse_decisions(SBER_JSON)

    def test_bare_fence_without_language(self):
        assert parse_decisions(f"```\n{SBER_JSON}\n```") == parse_decisions(SBER_JSON)

    def test_single_object(self):
        decisions = parse_decisions('{"action":"SELL","ticker":"GAZP","confidence":60}')
        assert len(decisions) == 1
        assert decisions[0].action == "SELL"
        assert decisions[0].ticker == "GAZP"
        assert decisions[0].stop_loss == 0.0

    def test_array_embedded_in_prose(self):
        text = f"Here are my decisions:\n{SBER_JSON}\nGood luck!"
        assert parse_decisions(text) == parse_decisions(SBER_JSON)

    def test_object_embedded_in_prose(self):
        text = 'I suggest {"action":"HOLD","ticker":"LKOH"} for now.'
        decisions = parse_decisions(text)
        assert [d.action for d in decisions] == ["HOLD"]

    def test_trailing_commas_tolerated(self):
        text = '[{"action":"BUY","ticker":"SBER","stop_loss":250,},]'
        decisions = parse_decisions(text)
        assert decisions[0].stop_loss == 250.0

    def test_order_preserved(self):
        text = '[{"action":"BUY","ticker":"A"},{"action":"SELL","ticker":"B"},{"action":"HOLD","ticker":"C"}]'
        assert [d.ticker for d in parse_decisions(text)] == ["A", "B", "C"]

    def test_scalar_json_is_rejected(self):
        with pytest.raises(ParseError):
            parse_decisions("42")


class TestFieldCoercion:
    """Malformed fields must not abort the rest of the array"""

    def test_bad_fields_fall_back_to_defaults(self):
        text = (
            '[{"action":"BUY","ticker":"SBER","stop_loss":"oops","confidence":"high"},'
            '{"action":"SELL","ticker":"GAZP","confidence":55}]'
        )
        decisions = parse_decisions(text)
        assert len(decisions) == 2
        assert decisions[0].stop_loss == 0.0
        assert decisions[0].confidence == 0
        assert decisions[1].confidence == 55

    def test_numeric_strings_and_floats(self):
        decisions = parse_decisions('[{"action":"buy","ticker":"sber","stop_loss":"250.5","confidence":79.9}]')
        assert decisions[0].action == "BUY"
        assert decisions[0].ticker == "SBER"
        assert decisions[0].stop_loss == 250.5
        assert decisions[0].confidence == 79

    def test_confidence_clamped(self):
        decisions = parse_decisions('[{"confidence":150},{"confidence":-5}]')
        assert [d.confidence for d in decisions] == [100, 0]

    def test_non_object_elements_become_defaults(self):
        decisions = parse_decisions('["junk", {"action":"HOLD","ticker":"X"}]')
        assert decisions[0] == TradeDecision()
        assert decisions[1].action == "HOLD"

    def test_unknown_fields_ignored(self):
        decisions = parse_decisions('[{"action":"BUY","ticker":"X","size":"huge"}]')
        assert decisions[0].ticker == "X"

    def test_unknown_action_kept(self):
        decisions = parse_decisions('[{"action":"SHORT","ticker":"X"}]')
        assert decisions[0].action == "SHORT"


class TestSerialization:

    def test_round_trip(self):
        decisions = [
            TradeDecision(action="BUY", ticker="SBER", stop_loss=250.0, take_profit=290.0,
                          confidence=80, reasoning="momentum"),
            TradeDecision(action="HOLD", ticker="GAZP", reasoning="flat"),
        ]
        assert parse_decisions(decisions_to_json(decisions)) == decisions

    def test_empty_list(self):
        assert decisions_to_json([]) == "[]"

    def test_strip_think_tags_is_non_greedy(self):
        text = "<think>a</think>keep<think>b</think>"
        assert strip_think_tags(text) == "keep"
