import json
from datetime import datetime, timedelta, timezone

import pytest

from mqbridge.core.envelope import from_hex, to_hex, wrap_for_mq, wrap_for_pubsub
from mqbridge.core.message import Message


def test_wrap_for_mq_embeds_id_and_payload():
    message = Message(message_id="123", payload=b"hello", source_id="sub")
    assert wrap_for_mq(message) == '"googleID": 123\r"Content": {\rhello}'


def test_wrap_for_mq_keeps_json_payload_verbatim():
    message = Message(message_id="42", payload=b'{"a": 1}', source_id="sub")
    assert wrap_for_mq(message) == '"googleID": 42\r"Content": {\r{"a": 1}}'


def test_wrap_for_mq_replaces_invalid_utf8():
    message = Message(message_id="7", payload=b"ok\xff", source_id="sub")
    assert wrap_for_mq(message).endswith("ok�}")


def test_to_hex_is_two_lowercase_digits_per_byte():
    assert to_hex(b"\x00\x0a\xff\x10") == "000aff10"
    assert to_hex(b"") == ""


def test_from_hex_reverses_to_hex():
    msg_id = bytes(range(0, 240, 10))
    assert from_hex(to_hex(msg_id)) == msg_id


def test_from_hex_rejects_non_hex():
    with pytest.raises(ValueError):
        from_hex("zz")


def test_wrap_for_pubsub_text_message():
    message = Message(
        message_id="00ab", payload='say "hé"'.encode(), source_id="Q1", format="MQSTR"
    )
    data, attributes = wrap_for_pubsub(message)

    assert data.decode() == '"say \\"hé\\""'
    assert json.loads(data) == 'say "hé"'
    assert attributes == {"origin": "ibm-mq", "msgId": "00ab"}


def test_wrap_for_pubsub_binary_message():
    message = Message(message_id="01", payload=b"\x00\x01\xff", source_id="Q1", format="")
    data, _ = wrap_for_pubsub(message)
    assert data == b'{"type":"Buffer","data":[0,1,255]}'


def test_message_age_counts_from_receipt():
    received = datetime.now(timezone.utc) - timedelta(seconds=5)
    message = Message(message_id="1", payload=b"", source_id="sub", timestamp=received)
    assert 5 <= message.age_seconds < 60
