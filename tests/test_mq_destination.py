import threading
import time

import pytest

from mqbridge.core.message import Message
from mqbridge.core.outcome import TransportError
from mqbridge.core.state import BridgeState
from mqbridge.destinations.mq import MQDestination
from mqbridge.mq.interfaces import ObjectKind, OpenMode, PutOption

SEQUENCE = ["connect", "open", "put", "close", "disconnect"]


def make_destination(fake_mq, no_wait, kind="queue", **extra):
    config = {
        "queue_manager": "QM1",
        "target": "DEV.QUEUE.1" if kind == "queue" else "dev/sensors",
        "kind": kind,
        "publishing": no_wait,
    }
    config.update(extra)
    return MQDestination(config, fake_mq.factory)


@pytest.fixture
def message():
    return Message(message_id="123", payload=b"hello", source_id="projects/p/subscriptions/s")


def test_queue_put_wraps_payload_and_sets_flags(fake_mq, no_wait, message):
    destination = make_destination(fake_mq, no_wait)
    assert destination.connect()

    destination.send(message)

    assert fake_mq.names() == SEQUENCE
    _, target, mode = fake_mq.last("open")
    assert target.kind is ObjectKind.QUEUE
    assert mode is OpenMode.OUTPUT

    _, handle, payload, options, fmt = fake_mq.last("put")
    assert payload == b'"googleID": 123\r"Content": {\rhello}'
    assert options == PutOption.NO_SYNCPOINT | PutOption.NEW_MSG_ID | PutOption.NEW_CORREL_ID
    assert fmt == "MQSTR"
    assert fake_mq.last("close") == ("close", handle)


def test_topic_put_warns_if_no_subscribers(fake_mq, no_wait, message):
    destination = make_destination(fake_mq, no_wait, kind="topic")

    destination.send(message)

    _, target, _ = fake_mq.last("open")
    assert target.kind is ObjectKind.TOPIC
    assert target.name == "dev/sensors"
    options = fake_mq.last("put")[3]
    assert PutOption.WARN_IF_NO_SUBS_MATCHED in options
    assert PutOption.NO_SYNCPOINT in options


def test_raw_put_skips_envelope(fake_mq, no_wait, message):
    destination = make_destination(fake_mq, no_wait, envelope=False)

    destination.send(message)

    assert fake_mq.last("put")[2] == b"hello"


def test_client_mode_descriptor_is_passed_to_connect(fake_mq, no_wait, message):
    destination = make_destination(
        fake_mq,
        no_wait,
        connection_name="mq.example.com(1414)",
        channel="DEV.APP.SVRCONN",
        user="app",
        password="secret",
    )

    destination.send(message)

    descriptor = fake_mq.last("connect")[1]
    assert descriptor.client_mode
    assert descriptor.queue_manager == "QM1"
    assert "secret" not in repr(descriptor)


def test_open_failure_skips_put_and_close_but_disconnects(fake_mq, no_wait, message):
    no_wait["retry_attempts"] = 1
    fake_mq.fail("open", TransportError("MQOPEN", reason=2085))
    destination = make_destination(fake_mq, no_wait)

    with pytest.raises(TransportError):
        destination.send(message)

    assert fake_mq.names() == ["connect", "open", "disconnect"]


def test_connect_failure_releases_nothing(fake_mq, no_wait, message):
    no_wait["retry_attempts"] = 1
    fake_mq.fail("connect", TransportError("MQCONN", reason=2059))
    destination = make_destination(fake_mq, no_wait)

    with pytest.raises(TransportError):
        destination.send(message)

    assert fake_mq.names() == ["connect"]


def test_transient_failure_is_retried_on_a_fresh_connection(fake_mq, no_wait, message):
    fake_mq.fail("open", TransportError("MQOPEN", reason=2009))
    destination = make_destination(fake_mq, no_wait)

    destination.send(message)

    assert fake_mq.names() == ["connect", "open", "disconnect"] + SEQUENCE
    assert fake_mq.connections == 2


def test_put_failure_releases_handles_once_per_attempt(fake_mq, no_wait, message):
    errors = [TransportError("MQPUT", reason=2009) for _ in range(3)]
    fake_mq.fail("put", *errors)
    destination = make_destination(fake_mq, no_wait)

    with pytest.raises(TransportError) as exc:
        destination.send(message)

    assert exc.value is errors[-1]
    assert fake_mq.count("put") == 3
    assert fake_mq.count("close") == 3
    assert fake_mq.count("disconnect") == 3


def test_permanent_failure_is_not_retried(fake_mq, no_wait, message):
    fake_mq.fail("put", TransportError("MQPUT", reason=2030, permanent=True))
    destination = make_destination(fake_mq, no_wait)

    with pytest.raises(TransportError) as exc:
        destination.send(message)

    assert exc.value.permanent
    assert fake_mq.names() == SEQUENCE


def test_close_failure_still_disconnects(fake_mq, no_wait, message):
    fake_mq.fail("close", TransportError("MQCLOSE", reason=2019))
    destination = make_destination(fake_mq, no_wait)

    destination.send(message)

    assert fake_mq.names() == SEQUENCE


def test_no_retry_once_the_bridge_is_stopping(fake_mq, message):
    state = BridgeState()
    slow = {"retry_attempts": 3, "retry_min_wait_seconds": 60, "retry_max_wait_seconds": 60}
    destination = MQDestination(
        {"queue_manager": "QM1", "target": "DEV.QUEUE.1", "publishing": slow}, fake_mq.factory, state
    )
    fake_mq.fail("put", TransportError("MQPUT", reason=2009))
    state.finish("Interrupted")

    with pytest.raises(TransportError):
        destination.send(message)

    assert fake_mq.count("put") == 1
    assert fake_mq.count("disconnect") == 1


def test_retry_wait_ends_when_the_bridge_stops(fake_mq, message):
    state = BridgeState()
    slow = {"retry_attempts": 2, "retry_min_wait_seconds": 60, "retry_max_wait_seconds": 60}
    destination = MQDestination(
        {"queue_manager": "QM1", "target": "DEV.QUEUE.1", "publishing": slow}, fake_mq.factory, state
    )
    fake_mq.fail("put", TransportError("MQPUT", reason=2009))
    timer = threading.Timer(0.2, state.finish, ["Interrupted"])
    timer.start()

    started = time.monotonic()
    destination.send(message)
    timer.join()

    assert time.monotonic() - started < 30
    assert fake_mq.count("put") == 2
