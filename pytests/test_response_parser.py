from __future__ import annotations

import pytest

from utils.errors import ParseError
from utils.response_parser import parse_model_json


@pytest.mark.parametrize(
    "raw",
    [
        '{"a":1}',
        '   \n {"a":1} \n\t',
        '```json\n{"a":1}\n```',
        '```JSON\n{"a":1}\n```',
        '```\n{"a":1}\n```',
        '```\n{"a":1}',
        'noise {"a":1} noise',
        'Here is the extracted metadata you asked for:\n\n{"a":1}\n\nLet me know if you need more.',
    ],
)
def test_lenient_inputs_parse_to_the_object(raw):
    assert parse_model_json(raw, "doc.pdf") == {"a": 1}


def test_nested_objects_survive():
    raw = '```json\n{"company_name": "ΑΛΦΑ ΕΠΕ", "representatives": [{"name": "Χ", "is_active": true}]}\n```'
    out = parse_model_json(raw, "doc.pdf")
    assert out["company_name"] == "ΑΛΦΑ ΕΠΕ"
    assert out["representatives"][0]["is_active"] is True


@pytest.mark.parametrize("raw", [None, "", "   \n"])
def test_empty_input_fails(raw):
    with pytest.raises(ParseError, match="Empty response from model"):
        parse_model_json(raw, "doc.pdf")


def test_non_json_fails_with_unexpected_content():
    with pytest.raises(ParseError, match="Unexpected content"):
        parse_model_json("not json", "doc.pdf")


def test_broken_object_fails_and_carries_label():
    with pytest.raises(ParseError, match="Failed to parse JSON for doc.pdf") as ei:
        parse_model_json('{"a": 1, "b": }', "doc.pdf")
    assert ei.value.label == "doc.pdf"
    assert ei.value.code == "malformed_response"


def test_multiple_broken_markdown_sections_fail():
    raw = '```json\n{"a": 1\n```\nand also\n```json\n"b": 2}\n```'
    with pytest.raises(ParseError):
        parse_model_json(raw, "doc.pdf")


def test_non_object_json_is_rejected():
    with pytest.raises(ParseError):
        parse_model_json("[1, 2, 3]", "doc.pdf")
