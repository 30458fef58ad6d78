from common.tagged import COMPLETE_MARKER, parse_tagged_response, render_tagged_response, strip_tags


def test_parse_extracts_values_still_needed_and_suggestions():
    text = (
        "<title>Meet with investors</title>\n"
        "<date>2024-04-28T09:00:00</date>\n"
        "<follow_up>How urgent is this meeting? (1-5)</follow_up>\n"
        "<still_needed>urgency, time</still_needed>\n"
        '<suggestion type="time" value="2024-04-28T09:30:00">9:30 AM</suggestion>'
        '<suggestion type="date" value="2024-04-29T09:00:00">Monday</suggestion>'
    )
    parsed = parse_tagged_response(text)
    assert parsed.title == "Meet with investors"
    assert parsed.date == "2024-04-28T09:00:00"
    assert parsed.urgency is None
    assert parsed.still_needed == ["urgency", "time"]
    assert parsed.complete is False
    assert [s.display for s in parsed.suggestions] == ["9:30 AM", "Monday"]
    assert parsed.suggestions[0].to_dict() == {"type": "time", "value": "2024-04-28T09:30:00", "display": "9:30 AM"}
    assert parsed.display_text() == "How urgent is this meeting? (1-5)"


def test_missing_or_empty_tags_leave_fields_unknown():
    parsed = parse_tagged_response("<title></title>\nSure, what is it?")
    assert parsed.values() == {}
    assert parsed.still_needed == []
    assert parsed.display_text() == "Sure, what is it?"


def test_tag_split_across_lines_is_ignored():
    parsed = parse_tagged_response("<title>Call\nmom</title>")
    assert parsed.title is None


def test_complete_marker_sets_complete():
    parsed = parse_tagged_response("<title>Pay rent</title><date>2024-05-01T09:00:00</date><urgency>3</urgency><todo_complete>")
    assert parsed.complete is True
    assert parsed.values() == {"title": "Pay rent", "date": "2024-05-01T09:00:00", "urgency": "3"}


def test_unknown_suggestion_type_is_not_collected():
    parsed = parse_tagged_response('<suggestion type="place" value="office">Office</suggestion>')
    assert parsed.suggestions == []


def test_render_lists_missing_fields_in_order():
    text = render_tagged_response({"title": "Buy milk"}, "When should this be done?")
    assert text == (
        "<title>Buy milk</title>\n"
        "<follow_up>When should this be done?</follow_up>\n"
        "<still_needed>date,urgency</still_needed>"
    )
    reparsed = parse_tagged_response(text)
    assert reparsed.still_needed == ["date", "urgency"]


def test_render_marks_complete_when_all_fields_known():
    values = {"title": "Buy milk", "date": "2024-06-01T09:00:00", "urgency": "3.0"}
    text = render_tagged_response(values, "Done")
    assert text.endswith(COMPLETE_MARKER)
    assert "<still_needed>" not in text


def test_strip_tags():
    assert strip_tags("<b>hi</b> there ") == "hi there"
