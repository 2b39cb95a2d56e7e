"""
Tests for the inbound webhook payload normalizer.

No network or database access; every test feeds a body straight into
normalize_payload() or one of its strategies.
"""

import json
import time

import pytest

from app.models.inbound_email import RawEmailFields
from app.services.payload_normalizer import (
    FULL_SCAN_ELEMENT_CEILING,
    MAX_SCANNED_ELEMENTS,
    array_elements,
    decode_body,
    is_array_like,
    match_array,
    match_nested_message,
    match_patterns,
    match_recipient_object,
    match_simple_object,
    normalize_payload,
    sample_indices,
)

SENDER = "alice@example.com"
RECIPIENT = "User123@tasks.taskmatrix.app"
SUBJECT = "Quarterly review"
TEXT = "Please prepare the slides for Thursday."


def _simple_payload(**overrides) -> dict:
    payload = {"from": SENDER, "to": RECIPIENT, "subject": SUBJECT, "text": TEXT}
    payload.update(overrides)
    return payload


def _email_element() -> dict:
    return {"from": SENDER, "to": RECIPIENT, "subject": SUBJECT, "body-plain": TEXT}


def _filler(index: int) -> str:
    return f"mime-part-{index:05d}"


def _massive_list(size: int, email_at: int) -> list:
    elements = [_filler(i) for i in range(size)]
    elements[email_at] = _email_element()
    return elements


# ===========================================================================
# Strategy 1: string / bytes bodies
# ===========================================================================

class TestDecodeBody:
    def test_json_text_is_parsed(self):
        assert decode_body('{"from": "a@b.co"}') == {"from": "a@b.co"}

    def test_bytes_are_decoded(self):
        assert decode_body(b'{"subject": "Hi"}') == {"subject": "Hi"}

    def test_double_encoded_json_is_unwrapped(self):
        body = json.dumps(json.dumps(_simple_payload()))
        assert decode_body(body) == _simple_payload()

    def test_non_json_text_is_kept(self):
        assert decode_body("From: a@b.co") == "From: a@b.co"

    def test_invalid_utf8_is_replaced(self):
        assert decode_body(b"caf\xff") == "caf\ufffd"


# ===========================================================================
# Strategies 2-4: object shapes
# ===========================================================================

class TestObjectStrategies:
    def test_nested_message_headers(self):
        body = {
            "event-data": {
                "message": {
                    "headers": {"from": SENDER, "to": RECIPIENT, "subject": SUBJECT},
                    "body-plain": TEXT,
                    "body-html": "<p>hi</p>",
                }
            }
        }
        result = match_nested_message(body)

        assert result == RawEmailFields(SENDER, RECIPIENT, SUBJECT, TEXT, "<p>hi</p>")

    def test_nested_message_falls_back_to_message_fields(self):
        body = {"event-data": {"message": {"from": SENDER, "to": RECIPIENT, "subject": SUBJECT}}}
        assert match_nested_message(body).is_complete()

    def test_nested_message_ignores_other_shapes(self):
        assert match_nested_message({"event-data": "nope"}) is None
        assert match_nested_message(["event-data"]) is None

    def test_recipient_object(self):
        body = {
            "sender": SENDER,
            "recipient": RECIPIENT,
            "subject": SUBJECT,
            "stripped-text": TEXT,
            "body-html": "<b>x</b>",
        }
        result = match_recipient_object(body)

        assert result == RawEmailFields(SENDER, RECIPIENT, SUBJECT, TEXT, "<b>x</b>")

    def test_recipient_object_requires_recipient(self):
        assert match_recipient_object({"sender": SENDER}) is None

    def test_simple_object_is_case_insensitive(self):
        body = {"From": SENDER, "To": RECIPIENT, "Subject": SUBJECT, "TextBody": TEXT, "HtmlBody": "<i>x</i>"}
        result = match_simple_object(body)

        assert result == RawEmailFields(SENDER, RECIPIENT, SUBJECT, TEXT, "<i>x</i>")

    def test_simple_object_address_lists_and_objects(self):
        body = {
            "from": {"email": SENDER, "name": "Alice"},
            "to": [{"email": RECIPIENT, "name": "Tasks"}, {"email": "cc@example.com"}],
            "subject": SUBJECT,
        }
        result = match_simple_object(body)

        assert result.sender_email == SENDER
        assert result.recipient_email == RECIPIENT

    def test_simple_object_requires_an_email_key(self):
        assert match_simple_object({"event": "delivered"}) is None


# ===========================================================================
# Strategy 5: arrays
# ===========================================================================

class TestArrayHelpers:
    def test_is_array_like(self):
        assert is_array_like({"0": "a", "1": "b"}) is True
        assert is_array_like({"0": "a", "meta": "b"}) is True
        assert is_array_like({"0": "a", "meta": "b", "more": "c"}) is False
        assert is_array_like({}) is False
        assert is_array_like(["0"]) is False

    def test_array_like_values_are_ordered_numerically(self):
        assert array_elements({"10": "c", "2": "b", "1": "a", "x": "skip"}) == ["a", "b", "c"]

    def test_array_elements_of_non_array(self):
        assert array_elements({"from": SENDER}) is None

    def test_overlong_digit_keys_are_not_indices(self):
        assert is_array_like({"9" * 5000: "x"}) is False
        assert array_elements({"9" * 5000: "x", "1": "a"}) == ["a"]

    def test_sample_indices_small_array_has_no_duplicates(self):
        assert sample_indices(5, window=100) == [0, 1, 2, 3, 4]

    def test_sample_indices_windows(self):
        indices = sample_indices(50_000, window=100)

        assert len(indices) == 300
        assert indices[:3] == [0, 1, 2]
        assert 24_950 in indices and 25_049 in indices
        assert 49_900 in indices and 49_999 in indices
        assert 37_777 not in indices


class TestSmallArrays:
    def test_first_email_element_wins(self):
        body = [{"event": "delivered"}, _simple_payload(), _simple_payload(subject="Second")]
        result = normalize_payload(body)

        assert result.is_complete()
        assert result.subject == SUBJECT

    def test_json_string_element(self):
        body = ["noise", json.dumps(_simple_payload())]
        assert normalize_payload(body).is_complete()

    def test_array_like_object(self):
        body = {"0": {"event": "opened"}, "1": _email_element(), "2": {"event": "clicked"}}
        result = normalize_payload(body)

        assert result == RawEmailFields(SENDER, RECIPIENT, SUBJECT, TEXT, "")

    def test_array_without_email_is_empty(self):
        result = match_array([{"event": "opened"}] * 3)
        assert result == RawEmailFields()

    def test_non_array_is_not_applicable(self):
        assert match_array("text") is None


class TestMassiveArrays:
    SIZE = 50_000

    def test_hit_in_middle_window(self):
        body = _massive_list(self.SIZE, email_at=25_000)
        result = normalize_payload(body)

        assert result.sender_email == SENDER
        assert result.recipient_email == RECIPIENT
        assert result.subject == SUBJECT
        assert result.text == TEXT

    def test_hit_in_end_window_of_array_like_object(self):
        body = {str(i): value for i, value in enumerate(_massive_list(self.SIZE, email_at=49_990))}
        result = normalize_payload(body)

        assert result.is_complete()
        assert result.subject == SUBJECT

    def test_fields_accumulate_across_sampled_elements(self):
        body = [_filler(i) for i in range(self.SIZE)]
        body[3] = {"headers": {"from": SENDER}}
        body[25_010] = {"message": {"headers": {"to": RECIPIENT, "subject": SUBJECT}}}
        result = normalize_payload(body)

        assert result.sender_email == SENDER
        assert result.recipient_email == RECIPIENT
        assert result.subject == SUBJECT

    def test_raw_label_element_in_sampled_window(self):
        body = [_filler(i) for i in range(self.SIZE)]
        body[10] = f"From: Alice <{SENDER}>\nTo: {RECIPIENT}\nSubject: {SUBJECT}"
        result = normalize_payload(body)

        assert result.is_complete()
        assert result.sender_email == SENDER

    def test_unsampled_offset_is_a_known_miss(self):
        # 37,777 lies outside the start, middle and end windows, the array is
        # above the full-scan ceiling, and the bounded regex fallback only
        # reaches the first few thousand elements.
        assert self.SIZE >= FULL_SCAN_ELEMENT_CEILING
        body = _massive_list(self.SIZE, email_at=37_777)
        result = normalize_payload(body)

        assert not result.is_complete()
        assert result.sender_email == ""
        assert result.subject == ""

    def test_unsampled_offset_below_ceiling_is_found_by_full_scan(self):
        size = 5_000
        assert MAX_SCANNED_ELEMENTS < size < FULL_SCAN_ELEMENT_CEILING
        body = _massive_list(size, email_at=1_234)
        result = normalize_payload(body)

        assert result.is_complete()
        assert result.text == TEXT


# ===========================================================================
# Strategy 6: regex fallback
# ===========================================================================

class TestPatternFallback:
    def test_json_key_patterns(self):
        text = json.dumps({"envelope": {"sender": SENDER, "recipient": RECIPIENT}, "subject": SUBJECT})
        result = match_patterns(text)

        assert result.sender_email == SENDER
        assert result.recipient_email == RECIPIENT
        assert result.subject == SUBJECT

    def test_json_escapes_are_decoded(self):
        text = json.dumps({"subject": 'Say "hi"', "body": "line1\nline2"})
        result = match_patterns(text)

        assert result.subject == 'Say "hi"'
        assert result.text == "line1\nline2"

    def test_plain_text_headers(self):
        body = f"From: Alice <{SENDER}>\nTo: {RECIPIENT}\nSubject: {SUBJECT}\n\n{TEXT}"
        result = normalize_payload(body)

        assert result.sender_email == SENDER
        assert result.recipient_email == RECIPIENT
        assert result.subject == SUBJECT

    def test_structured_values_are_not_overwritten(self):
        body = {"from": SENDER, "subject": SUBJECT, "note": f"from: other@example.com to: {RECIPIENT}"}
        result = normalize_payload(body)

        assert result.sender_email == SENDER
        assert result.recipient_email == RECIPIENT

    def test_nested_unknown_shape(self):
        body = {"payload": {"mail": {"from": SENDER, "to": RECIPIENT, "subject": SUBJECT, "html": "<p>x</p>"}}}
        result = normalize_payload(body)

        assert result.is_complete()
        assert result.html == "<p>x</p>"

    @pytest.mark.parametrize("body", [
        "from: x " * 6000,
        "from:" * 20_000,
        "To: Someone " * 5000,
        ["from: x " * 5] * 5000,
    ])
    def test_repeated_labels_without_address_stay_fast(self, body):
        started = time.perf_counter()
        result = normalize_payload(body)
        elapsed = time.perf_counter() - started

        assert result.sender_email == ""
        assert elapsed < 2.0

    def test_display_name_is_bounded(self):
        text = "From: " + "x" * 500 + f" <{SENDER}>"
        assert match_patterns(text).sender_email == ""
        assert match_patterns(f"From: Alice Example <{SENDER}>").sender_email == SENDER


# ===========================================================================
# normalize_payload end to end
# ===========================================================================

class TestNormalizePayload:
    def test_simple_object_round_trip(self):
        result = normalize_payload(_simple_payload())
        assert result == RawEmailFields(SENDER, RECIPIENT, SUBJECT, TEXT, "")

    def test_values_are_trimmed(self):
        result = normalize_payload(_simple_payload(subject="  Padded  "))
        assert result.subject == "Padded"

    def test_json_bytes_body(self):
        result = normalize_payload(json.dumps(_simple_payload()).encode())
        assert result.is_complete()

    def test_form_fields_dict(self):
        body = {"sender": SENDER, "recipient": RECIPIENT, "subject": SUBJECT, "body-plain": TEXT}
        result = normalize_payload(body)

        assert result == RawEmailFields(SENDER, RECIPIENT, SUBJECT, TEXT, "")

    def test_missing_fields_stay_empty(self):
        result = normalize_payload({"from": SENDER})

        assert result.sender_email == SENDER
        assert result.missing_fields() == ["to", "subject"]

    @pytest.mark.parametrize("body", [
        None, 0, 3.5, True, "", "   ", b"", b"\xff\xfe\x00", [], {}, [[]], [None, 1, "x"],
        {"0": None}, '{"unterminated": ', "null", '"just a string"',
        {"from": None, "to": 5, "subject": ["", None]},
        {"event-data": {"message": {"headers": ["not", "a", "dict"]}}},
        {"9" * 5000: "x"},
        json.dumps({"9" * 5000: "x", "1": {"from": "a@b.co"}}),
    ])
    def test_never_raises(self, body):
        result = normalize_payload(body)
        assert isinstance(result, RawEmailFields)

    def test_overlong_numeric_key_is_ignored(self):
        body = json.dumps({"9" * 5000: "x", "1": _simple_payload()})
        result = normalize_payload(body)

        assert result.is_complete()
        assert result.sender_email == SENDER
