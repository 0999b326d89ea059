import pytest
from fastapi.testclient import TestClient

from app import create_app
from backend import RoomRegistry


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeHandle:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Stands in for loop.call_later; timers fire only when advance() is called."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.handles = []

    def __call__(self, delay, callback, *args):
        handle = FakeHandle(self.clock.now + delay, callback, args)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled and not h.fired]

    def advance(self, seconds: float):
        self.clock.now += seconds
        for handle in sorted(self.pending, key=lambda h: h.when):
            if handle.when <= self.clock.now and not handle.cancelled:
                handle.fired = True
                handle.callback(*handle.args)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return FakeScheduler(clock)


@pytest.fixture
def registry(clock, scheduler):
    return RoomRegistry(ttl_seconds=300, clock=clock, scheduler=scheduler)


@pytest.fixture
def client():
    with TestClient(create_app()) as test_client:
        yield test_client


def emit(ws, event, data):
    ws.send_json({"event": event, "data": data})


def register(ws, user_id):
    emit(ws, "register", user_id)
    reply = ws.receive_json()
    assert reply["event"] == "user_rooms"
    return reply["data"]
