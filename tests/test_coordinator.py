import pytest

from paarth_server.core.errors import RequestInterrupted
from paarth_server.sessions.coordinator import CancelToken, RequestCoordinator, RequestState


def test_new_request_supersedes_previous():
    """Starting a request cancels the session's in-flight one."""
    coordinator = RequestCoordinator()

    first = coordinator.start_request("s1")
    second = coordinator.start_request("s1")

    assert first.cancelled
    assert first.state == RequestState.CANCELLED
    assert not second.cancelled
    assert coordinator.active_ids("s1") == [second.id]
    assert first.id != second.id


def test_sessions_are_independent():
    coordinator = RequestCoordinator()

    a = coordinator.start_request("a")
    b = coordinator.start_request("b")

    assert not a.cancelled
    assert not b.cancelled
    assert coordinator.active_count() == 2


def test_cancel_all_is_idempotent():
    coordinator = RequestCoordinator()
    request = coordinator.start_request("s1")

    assert coordinator.cancel_all("s1") == 1
    assert coordinator.cancel_all("s1") == 0
    assert coordinator.cancel_all("unknown") == 0
    assert request.cancelled
    assert not coordinator.is_active(request.id)


def test_complete_after_cancel_is_noop():
    coordinator = RequestCoordinator()
    request = coordinator.start_request("s1")
    coordinator.cancel_all("s1")

    coordinator.complete(request.id)

    assert request.state == RequestState.CANCELLED
    assert coordinator.active_count() == 0


def test_complete_and_fail_remove_request():
    coordinator = RequestCoordinator()
    ok = coordinator.start_request("s1")
    coordinator.complete(ok.id)

    bad = coordinator.start_request("s1")
    coordinator.fail(bad.id)

    assert ok.state == RequestState.COMPLETED
    assert bad.state == RequestState.FAILED
    assert coordinator.active_ids("s1") == []


def test_cancel_token_raises_once_triggered():
    token = CancelToken()
    token.raise_if_cancelled("req_1")

    token.cancel()

    with pytest.raises(RequestInterrupted) as exc_info:
        token.raise_if_cancelled("req_1")
    assert exc_info.value.request_id == "req_1"


def test_state_tracks_lifecycle():
    coordinator = RequestCoordinator()
    first = coordinator.start_request("s1")
    assert coordinator.state(first.id) == RequestState.PENDING

    second = coordinator.start_request("s1")
    coordinator.complete(second.id)

    assert coordinator.state(first.id) == RequestState.CANCELLED
    assert coordinator.state(second.id) == RequestState.COMPLETED
    assert coordinator.state("req_unknown") is None
