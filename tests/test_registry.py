import pytest

from paarth_server.core.errors import SessionNotFound
from paarth_server.sessions.coordinator import RequestCoordinator
from paarth_server.sessions.models import Turn
from paarth_server.sessions.registry import SessionRegistry

from conftest import FakeTransport


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator():
    return RequestCoordinator()


@pytest.fixture
def registry(coordinator, clock):
    return SessionRegistry(coordinator, idle_timeout_seconds=1200, clock=clock)


def test_create_and_lookup(registry):
    transport = FakeTransport()

    session = registry.create(transport)

    assert session.id.startswith("krishna_")
    assert registry.lookup(transport) is session
    assert registry.lookup(FakeTransport()) is None
    assert registry.create(FakeTransport()).id != session.id


def test_record_turn_and_reset(registry):
    session = registry.create(FakeTransport())
    registry.record_turn(session.id, Turn(user_text="प्रश्न", assistant_text="उत्तर"))
    registry.register_interrupt(session.id)

    assert registry.total_turns() == 1

    registry.reset(session.id)

    assert session.turns == []
    assert session.interrupt_count == 0


def test_unknown_session_raises(registry):
    with pytest.raises(SessionNotFound):
        registry.record_turn("krishna_missing", Turn(user_text="a", assistant_text="b"))


@pytest.mark.asyncio
async def test_destroy_cancels_active_requests(registry, coordinator):
    session = registry.create(FakeTransport())
    request = coordinator.start_request(session.id)
    assert registry.active_request_ids(session.id) == [request.id]

    removed = await registry.destroy(session.id)

    assert removed is session
    assert request.cancelled
    assert coordinator.active_ids(session.id) == []
    assert not registry.has_session(session.id)
    assert await registry.destroy(session.id) is None


@pytest.mark.asyncio
async def test_sweep_destroys_idle_sessions(registry, clock):
    idle_transport = FakeTransport()
    idle = registry.create(idle_transport)

    clock.now += 600
    fresh = registry.create(FakeTransport())

    clock.now += 601
    expired = await registry.sweep()

    assert expired == [idle.id]
    assert not idle_transport.open
    assert registry.has_session(fresh.id)


@pytest.mark.asyncio
async def test_touch_keeps_session_alive(registry, clock):
    session = registry.create(FakeTransport())

    clock.now += 1000
    registry.touch(session.id)
    clock.now += 1000

    assert await registry.sweep() == []
    assert registry.has_session(session.id)


@pytest.mark.asyncio
async def test_heartbeat_removes_unreachable_sessions(registry):
    alive_transport = FakeTransport()
    alive = registry.create(alive_transport)
    broken = registry.create(FakeTransport(fail_sends=True))
    closed_transport = FakeTransport()
    closed = registry.create(closed_transport)
    closed_transport.open = False

    dead = await registry.heartbeat()

    assert set(dead) == {broken.id, closed.id}
    assert registry.has_session(alive.id)
    assert len(registry) == 1
    assert alive_transport.of_type("heartbeat")


@pytest.mark.asyncio
async def test_close_all_notifies_and_closes(registry):
    transport = FakeTransport()
    registry.create(transport)

    await registry.close_all({"type": "server_shutdown", "message": "bye"})

    assert transport.of_type("server_shutdown")
    assert not transport.open
    assert len(registry) == 0


def test_session_stats(registry, clock):
    session = registry.create(FakeTransport())
    registry.register_interrupt(session.id)
    clock.now += 12.5

    stats = registry.session_stats(session.id)

    assert stats == {"duration": 12.5, "questions": 0, "interrupts": 1}
    assert registry.list_sessions()[0]["id"] == session.id


@pytest.mark.asyncio
async def test_delivered_heartbeat_counts_as_activity(registry, clock):
    session = registry.create(FakeTransport())

    clock.now += 1100
    await registry.heartbeat()
    clock.now += 1100

    assert await registry.sweep() == []
    assert registry.has_session(session.id)
