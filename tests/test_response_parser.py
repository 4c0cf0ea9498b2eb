import json

from bridgescore.errors import ResponseParseError
from bridgescore.response_parser import (
    DEFAULT_NOTES, DEFAULT_REASONING, Err, Ok, extract_json_object, parse_coaching_reply, parse_step_reply
)
from bridgescore.schemas import BridgeStep, ScoreColor


STEP = BridgeStep(key="qualify", name="Qualify", weight=3, order=2)


class TestExtractJsonObject:
    def test_plain_object(self):
        assert extract_json_object('{"a": 1}') == '{"a": 1}'

    def test_object_inside_prose(self):
        text = 'Sure! Here you go: {"credit": 1, "notes": "ok"} Hope that helps.'

        assert extract_json_object(text) == '{"credit": 1, "notes": "ok"}'

    def test_nested_braces(self):
        text = 'x {"a": {"b": {"c": 1}}} y {"d": 2}'

        assert extract_json_object(text) == '{"a": {"b": {"c": 1}}}'

    def test_braces_inside_strings_ignored(self):
        text = '{"notes": "used } and { and \\" quotes", "credit": 0}'

        assert json.loads(extract_json_object(text))["credit"] == 0

    def test_unbalanced_first_brace_falls_through(self):
        text = 'see {this and then {"credit": 1}'

        assert extract_json_object(text) == '{"credit": 1}'

    def test_no_object(self):
        assert extract_json_object("no json here") is None
        assert extract_json_object("") is None
        assert extract_json_object(None) is None


class TestParseStepReply:
    def test_valid_reply(self):
        raw = '```json\n{"credit": 0.5, "color": "yellow", "notes": "Budget only", "reasoning": "No authority"}\n```'

        result = parse_step_reply(raw, STEP)

        assert isinstance(result, Ok)
        assert result.ok
        score = result.value
        assert score.step == "qualify"
        assert score.step_name == "Qualify"
        assert score.weight == 3
        assert score.credit == 0.5
        assert score.color == ScoreColor.YELLOW
        assert score.notes == "Budget only"
        assert score.reasoning == "No authority"

    def test_missing_notes_and_reasoning_get_defaults(self):
        result = parse_step_reply('{"credit": 1, "color": "green"}', STEP)

        assert result.value.notes == DEFAULT_NOTES
        assert result.value.reasoning == DEFAULT_REASONING

    def test_list_notes_are_joined(self):
        result = parse_step_reply('{"credit": 0, "color": "red", "notes": ["No budget.", "No timeline."]}', STEP)

        assert result.value.notes == "No budget. No timeline."

    def test_out_of_range_credit_is_error(self):
        result = parse_step_reply('{"credit": 2, "color": "green"}', STEP)

        assert isinstance(result, Err)
        assert not result.ok
        assert isinstance(result.error, ResponseParseError)
        assert "credit" in str(result.error)

    def test_non_numeric_credit_is_error(self):
        assert isinstance(parse_step_reply('{"credit": "1", "color": "green"}', STEP), Err)
        assert isinstance(parse_step_reply('{"credit": true, "color": "green"}', STEP), Err)

    def test_missing_credit_is_error(self):
        result = parse_step_reply('{"color": "green"}', STEP)

        assert isinstance(result, Err)

    def test_invalid_color_is_error(self):
        result = parse_step_reply('{"credit": 1, "color": "blue"}', STEP)

        assert isinstance(result, Err)

    def test_mismatched_color_is_rederived(self):
        result = parse_step_reply('{"credit": 1, "color": "red"}', STEP)

        assert result.value.color == ScoreColor.GREEN

    def test_no_json_keeps_raw_response(self):
        result = parse_step_reply("I cannot score this call.", STEP)

        assert isinstance(result, Err)
        assert result.error.raw_response == "I cannot score this call."

    def test_array_without_object_is_error(self):
        assert isinstance(parse_step_reply('[1, 0.5, 0]', STEP), Err)


class TestParseCoachingReply:
    def test_valid_reply(self):
        raw = json.dumps({
            "thingsTheyDidWell": ["Good rapport", "Clear agenda", "Strong close"],
            "areasForImprovement": [
                {"area": "Budget", "howToImprove": "Ask about budget early", "bridgeStep": "qualify"},
            ],
        })

        result = parse_coaching_reply(raw)

        assert isinstance(result, Ok)
        assert result.value.things_they_did_well == ["Good rapport", "Clear agenda", "Strong close"]
        assert result.value.areas_for_improvement[0].bridge_step == "qualify"

    def test_long_lists_truncated_to_three(self):
        raw = json.dumps({
            "thingsTheyDidWell": ["a", "b", "c", "d", "e"],
            "areasForImprovement": [
                {"area": str(i), "howToImprove": "x", "bridgeStep": "qa"} for i in range(5)
            ],
        })

        result = parse_coaching_reply(raw)

        assert len(result.value.things_they_did_well) == 3
        assert len(result.value.areas_for_improvement) == 3

    def test_empty_lists_are_error(self):
        raw = json.dumps({"thingsTheyDidWell": [], "areasForImprovement": []})

        assert isinstance(parse_coaching_reply(raw), Err)

    def test_malformed_area_is_error(self):
        raw = json.dumps({
            "thingsTheyDidWell": ["a"],
            "areasForImprovement": [{"area": "Budget"}],
        })

        assert isinstance(parse_coaching_reply(raw), Err)

    def test_not_json_is_error(self):
        assert isinstance(parse_coaching_reply("Great call overall!"), Err)
