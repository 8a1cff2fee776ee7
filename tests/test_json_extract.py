"""Tests for generation/json_extract.py."""

import pytest

from generation.json_extract import extract_json_with_array


class TestExtractJsonWithArray:
    def test_plain_json(self):
        assert extract_json_with_array('{"changes": [], "summary": "s"}', "changes") == {
            "changes": [], "summary": "s",
        }

    def test_surrounding_whitespace(self):
        assert extract_json_with_array('\n\n  {"changes": [1]}  \n', "changes") == {"changes": [1]}

    @pytest.mark.parametrize("fence", ["```json", "```JSON", "```"])
    def test_fenced_block(self, fence):
        text = f'Sure! Here you go:\n{fence}\n{{"changes": [{{"type": "update"}}]}}\n```\nDone.'
        assert extract_json_with_array(text, "changes") == {"changes": [{"type": "update"}]}

    def test_object_embedded_in_prose(self):
        text = 'I thought about it. {"changes": [], "summary": "nothing to do"} Hope that helps.'
        assert extract_json_with_array(text, "changes")["summary"] == "nothing to do"

    def test_braces_inside_strings(self):
        text = 'Result: {"changes": [], "summary": "use {curly} and \\"quoted\\" braces }"} end'
        assert extract_json_with_array(text, "changes")["summary"] == 'use {curly} and "quoted" braces }'

    def test_skips_objects_without_the_array(self):
        text = 'First {"note": "draft"} then {"changes": "not a list"} finally {"changes": [2]}'
        assert extract_json_with_array(text, "changes") == {"changes": [2]}

    def test_nested_object_is_found_via_outer(self):
        text = 'x {"plan": {"changes": []}, "changes": [3]} y'
        assert extract_json_with_array(text, "changes") == {"plan": {"changes": []}, "changes": [3]}

    @pytest.mark.parametrize("text", [
        "",
        "no json here",
        '{"changes": [1, 2',
        "[1, 2, 3]",
        '{"summary": "missing array"}',
    ])
    def test_nothing_usable(self, text):
        assert extract_json_with_array(text, "changes") is None
