import json

import pytest

from conftest import AI_PAYLOAD
from dishola.search.response_parser import (
    parse_json_payload,
    repair_truncated_array,
    strip_code_fences,
    validate_recommendations,
)


def test_strip_code_fences_variants():
    assert strip_code_fences('```json\n[1, 2]\n```') == "[1, 2]"
    assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  [3]  ') == "[3]"
    assert strip_code_fences('```json\n[{"a": 1}, {"b"') == '[{"a": 1}, {"b"'


def test_parse_plain_and_fenced_json():
    text = json.dumps(AI_PAYLOAD)
    assert parse_json_payload(text) == AI_PAYLOAD
    assert parse_json_payload(f"```json\n{text}\n```") == AI_PAYLOAD


def test_non_json_response_is_rejected():
    assert parse_json_payload("Sorry, I can't help with that.") is None
    assert parse_json_payload("") is None


def test_truncated_array_recovers_complete_elements():
    full = json.dumps(AI_PAYLOAD)
    cut = full[: full.index('"Margherita"') + 5]

    recovered = parse_json_payload(cut)

    assert recovered == AI_PAYLOAD[:1]


def test_truncated_array_with_nothing_complete_is_none():
    assert parse_json_payload('[{"dish": {"name": "Pho"') is None


@pytest.mark.parametrize("text", [
    "[",
    "[,,,",
    "[1, 2, {",
    "[\"unterminated",
    "{\"dish\": ",
    "[]]",
    "[{}, {}, ]",
    "not json",
    "[" * 50,
])
def test_repair_never_raises(text):
    result = repair_truncated_array(text)
    assert isinstance(result, list)


def test_repair_ignores_text_that_is_not_an_array():
    assert repair_truncated_array('{"a": 1}') == []


def test_validation_drops_incomplete_elements():
    payload = AI_PAYLOAD + [
        {"dish": {"name": "No Rating"}, "restaurant": {"name": "Somewhere"}},
        {"dish": {"name": "No Restaurant", "rating": "4"}},
        {"dish": {"name": "", "rating": "4"}, "restaurant": {"name": "Blank"}},
        "just a string",
    ]

    valid = validate_recommendations(payload)

    assert [rec.dish.name for rec in valid] == ["Pepperoni Slice", "Margherita"]


def test_validation_coerces_numbers_and_nulls():
    payload = [{
        "dish": {"name": "Taco", "rating": 4.5, "description": None},
        "restaurant": {"name": "Stand", "lat": 37.79, "lng": -122.39, "address": None},
    }]

    [rec] = validate_recommendations(payload)

    assert rec.dish.rating == "4.5"
    assert rec.dish.description == ""
    assert rec.restaurant.lat == "37.79"
    assert rec.restaurant.address == ""


def test_validation_of_non_array_is_empty():
    assert validate_recommendations({"dish": {}}) == []
