import pytest

from mqbridge.core.outcome import NoMessageAvailable
from mqbridge.mq.interfaces import IQueueManagerClient

NO_WAIT = {"retry_attempts": 3, "retry_min_wait_seconds": 0, "retry_max_wait_seconds": 0}


class FakeMQ:
    """Records every call made by the clients it hands out, across connections."""

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.deliveries = []
        self.connections = 0

    def fail(self, call, *errors):
        self.failures.setdefault(call, []).extend(errors)

    def factory(self):
        self.connections += 1
        return FakeMQClient(self)

    def names(self):
        return [call[0] for call in self.calls]

    def count(self, name):
        return self.names().count(name)

    def last(self, name):
        return [call for call in self.calls if call[0] == name][-1]


class FakeMQClient(IQueueManagerClient):
    def __init__(self, hub: FakeMQ):
        self.hub = hub

    def _record(self, name, *args):
        self.hub.calls.append((name, *args))
        pending = self.hub.failures.get(name)
        if pending:
            raise pending.pop(0)

    def connect(self, descriptor):
        self._record("connect", descriptor)

    def open(self, target, mode):
        self._record("open", target, mode)
        return f"handle:{target.name}"

    def put(self, handle, payload, options, fmt=None):
        self._record("put", handle, payload, options, fmt)
        return b"\x01\x02"

    def get(self, handle, options):
        self._record("get", handle, options)
        if not self.hub.deliveries:
            raise NoMessageAvailable()
        item = self.hub.deliveries.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def commit(self):
        self._record("commit")

    def backout(self):
        self._record("backout")

    def close(self, handle):
        self._record("close", handle)

    def disconnect(self):
        self._record("disconnect")


@pytest.fixture
def fake_mq():
    return FakeMQ()


@pytest.fixture
def no_wait():
    return dict(NO_WAIT)
