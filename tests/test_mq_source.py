import pytest

from mqbridge.core.outcome import Outcome, TransportError
from mqbridge.core.state import BridgeState
from mqbridge.mq.interfaces import MQDelivery, OpenMode
from mqbridge.sources.mq import MQSource


def make_source(fake_mq, kind="queue", **extra):
    config = {
        "queue_manager": "QM1",
        "target": "DEV.QUEUE.1" if kind == "queue" else "dev/sensors",
        "kind": kind,
        "wait_interval_seconds": 0.1,
        "connect_timeout_seconds": 5,
    }
    config.update(extra)
    return MQSource(config, fake_mq.factory)


def run_until_done(source, handler, state=None):
    state = state or BridgeState()
    assert source.connect()
    source.start(handler, state)
    assert source._worker_done.wait(timeout=5)
    source.stop()
    return state


class Recorder:
    def __init__(self, outcome=Outcome.CONTINUE, state=None):
        self.outcome = outcome
        self.state = state
        self.messages = []

    def __call__(self, message):
        self.messages.append(message)
        if self.outcome is Outcome.FAIL_AND_EXIT and self.state is not None:
            self.state.fail("forwarding failed")
        return self.outcome


def test_no_message_ends_loop_without_error(fake_mq):
    source = make_source(fake_mq)

    state = run_until_done(source, Recorder())

    assert not state.healthy
    assert state.exit_code == 0
    assert fake_mq.names() == ["connect", "open", "get", "close", "disconnect"]
    assert fake_mq.last("open")[2] is OpenMode.INPUT


def test_topic_source_uses_managed_subscription(fake_mq):
    source = make_source(fake_mq, kind="topic")

    run_until_done(source, Recorder())

    _, target, mode = fake_mq.last("open")
    assert mode is OpenMode.SUBSCRIBE
    assert target.name == "dev/sensors"


def test_forwarded_message_is_committed(fake_mq):
    fake_mq.deliveries.append(MQDelivery(b"hi", b"\x00\xab", "MQSTR"))
    source = make_source(fake_mq)
    handler = Recorder()

    state = run_until_done(source, handler)

    assert state.exit_code == 0
    [message] = handler.messages
    assert message.message_id == "00ab"
    assert message.payload == b"hi"
    assert message.is_text
    assert fake_mq.names() == ["connect", "open", "get", "commit", "get", "close", "disconnect"]
    assert fake_mq.last("get")[2].syncpoint


def test_dropped_message_is_committed(fake_mq):
    fake_mq.deliveries.append(MQDelivery(b"big", b"\x01", "MQSTR"))
    source = make_source(fake_mq)

    run_until_done(source, Recorder(Outcome.DROP_AND_ACK))

    assert fake_mq.count("commit") == 1
    assert fake_mq.count("backout") == 0


def test_failed_forward_backs_out_and_stops(fake_mq):
    fake_mq.deliveries.extend(
        [MQDelivery(b"one", b"\x01", "MQSTR"), MQDelivery(b"two", b"\x02", "MQSTR")]
    )
    source = make_source(fake_mq)
    state = BridgeState()

    run_until_done(source, Recorder(Outcome.FAIL_AND_EXIT, state), state)

    assert state.exit_code == 1
    assert fake_mq.names() == ["connect", "open", "get", "backout", "close", "disconnect"]


def test_get_error_is_fatal(fake_mq):
    fake_mq.deliveries.append(TransportError("MQGET", reason=2009))
    source = make_source(fake_mq)

    state = run_until_done(source, Recorder())

    assert state.exit_code == 1
    assert fake_mq.count("close") == 1
    assert fake_mq.count("disconnect") == 1


def test_open_failure_fails_connect(fake_mq):
    fake_mq.fail("open", TransportError("MQOPEN", reason=2085))
    source = make_source(fake_mq)

    assert not source.connect()
    assert fake_mq.names() == ["connect", "open", "disconnect"]


def test_match_msg_id_and_no_syncpoint(fake_mq):
    fake_mq.deliveries.append(MQDelivery(b"hi", b"\x00\xab", "MQSTR"))
    source = make_source(fake_mq, match_msg_id="00ab", syncpoint=False)

    run_until_done(source, Recorder())

    options = fake_mq.last("get")[2]
    assert options.match_msg_id == b"\x00\xab"
    assert not options.syncpoint
    assert options.wait_interval_ms == 100
    assert "commit" not in fake_mq.names()


def test_start_before_connect_is_ignored(fake_mq):
    source = make_source(fake_mq)
    source.start(Recorder(), BridgeState())
    assert fake_mq.calls == []


def test_rejects_non_callable_handler(fake_mq):
    source = make_source(fake_mq)
    assert source.connect()
    with pytest.raises(TypeError):
        source.start("not callable", BridgeState())
    source.stop()
