"""Extraction of the map payload from assistant replies."""

from journeymap.agents.destination_normalizer import destinations_from_text
from journeymap.agents.payload_extractor import (
    classify_payload,
    extract_structured_data,
    find_balanced_regions,
)
from journeymap.schemas import PayloadKind


def test_single_fenced_block_is_parsed_and_removed():
    text = 'Here is your trip.\n```json\n{"name": "Hoi An", "lat": 15.88, "lng": 108.33}\n```\nEnjoy!'
    result = extract_structured_data(text)

    assert result.structured_data is not None
    assert result.structured_data.kind is PayloadKind.SINGLE_PLACE
    assert result.structured_data.data == {"name": "Hoi An", "lat": 15.88, "lng": 108.33}
    assert "```" not in result.cleaned_text
    assert result.cleaned_text.startswith("Here is your trip.")
    assert result.cleaned_text.endswith("Enjoy!")


def test_backward_scan_skips_malformed_last_block():
    text = (
        "Plan:\n"
        '```json\n[{"day": 1, "destinations": [{"name": "Hue"}]}]\n```\n'
        "and a broken one\n"
        '```json\n{"name": "Da Nang", "lat": \n```'
    )
    result = extract_structured_data(text)

    assert result.structured_data is not None
    assert result.structured_data.kind is PayloadKind.ITINERARY
    assert result.structured_data.data[0]["destinations"][0]["name"] == "Hue"
    # the malformed block stays in the prose, the parsed one is gone
    assert '"Da Nang"' in result.cleaned_text
    assert '"Hue"' not in result.cleaned_text


def test_last_parseable_fenced_block_wins():
    text = '```\n{"name": "First"}\n```\ntext\n```json\n{"name": "Second"}\n```'
    result = extract_structured_data(text)

    assert result.structured_data.data == {"name": "Second"}
    assert '"First"' in result.cleaned_text


def test_untagged_fence_around_prose_is_ignored():
    text = '```\njust some quoted prose\n```\nDetails: {"name": "Sa Pa", "lat": 22.34, "lng": 103.84}'
    result = extract_structured_data(text)

    assert result.structured_data.data["name"] == "Sa Pa"
    assert result.cleaned_text.endswith("Details:")


def test_brace_inside_string_does_not_split_region():
    text = 'Some prose {"a": "}"} trailing words'

    assert find_balanced_regions(text) == [(11, 21)]
    result = extract_structured_data(text)
    assert result.structured_data.data == {"a": "}"}
    assert result.cleaned_text == "Some prose  trailing words"


def test_escaped_quote_does_not_end_string():
    text = r'Note {"name": "The \"Old\" Quarter }", "lat": 21.03, "lng": 105.85} done'
    result = extract_structured_data(text)

    assert result.structured_data is not None
    assert result.structured_data.data["name"] == 'The "Old" Quarter }'


def test_bare_regions_are_tried_from_the_end():
    text = 'First {"name": "A"} then [1, 2 and finally {"name": "B"}'
    result = extract_structured_data(text)

    assert result.structured_data.data == {"name": "B"}
    assert '{"name": "A"}' in result.cleaned_text


def test_bare_itinerary_is_taken_as_one_top_level_region():
    payload = (
        '[{"day": 1, "destinations": ['
        '{"name": "Hoan Kiem Lake", "lat": 21.0288, "lng": 105.8525}, '
        '{"name": "Temple of Literature", "lat": 21.0293, "lng": 105.8355}]}, '
        '{"day": 2, "destinations": ['
        '{"name": "Ha Long Bay", "lat": 20.91, "lng": 107.18}]}]'
    )
    text = "Here is your trip. " + payload + " Have fun!"

    assert find_balanced_regions(text) == [(19, 19 + len(payload))]

    result = extract_structured_data(text)
    assert result.structured_data.kind is PayloadKind.ITINERARY
    assert result.cleaned_text == "Here is your trip.  Have fun!"

    cleaned, _, points = destinations_from_text(text)
    assert cleaned == result.cleaned_text
    assert [(p.day, p.name) for p in points] == [
        (1, "Hoan Kiem Lake"),
        (1, "Temple of Literature"),
        (2, "Ha Long Bay"),
    ]


def test_unbalanced_opener_does_not_hide_later_regions():
    text = 'Prices [from {"name": "Sa Pa", "lat": 22.34, "lng": 103.84} onwards'
    assert find_balanced_regions(text) == [(13, 59)]


def test_leading_label_is_stripped():
    text = '```\nJSON: {"name": "Ha Long Bay"}\n```'
    result = extract_structured_data(text)

    assert result.structured_data.data == {"name": "Ha Long Bay"}
    assert result.cleaned_text == ""


def test_no_payload_leaves_text_unchanged():
    text = "  Vietnam is lovely in spring. Try {this} or [that].  "
    result = extract_structured_data(text)

    assert result.structured_data is None
    assert result.cleaned_text == text


def test_scalar_json_is_not_a_payload():
    result = extract_structured_data("```json\n42\n```")

    assert result.structured_data is None


def test_classify_payload_kinds():
    assert classify_payload([{"day": 1, "destinations": []}]).kind is PayloadKind.ITINERARY
    assert classify_payload([{"name": "Hue"}]).kind is PayloadKind.PLACE_LIST
    assert classify_payload({"name": "Hue"}).kind is PayloadKind.SINGLE_PLACE

    wrapped = classify_payload({"days": [{"day": 2, "destinations": []}]})
    assert wrapped.kind is PayloadKind.ITINERARY
    assert wrapped.data == [{"day": 2, "destinations": []}]
    assert classify_payload("text") is None
