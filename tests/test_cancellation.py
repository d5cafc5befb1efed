import time

from code_runner import CancellationToken
from code_runner.execution import deadline_scope


def test_token_without_deadline_has_no_remaining_budget() -> None:
    token = CancellationToken()

    assert token.remaining() is None
    assert token.cancelled is False


def test_with_timeout_counts_down() -> None:
    token = CancellationToken.with_timeout(5)

    remaining = token.remaining()
    assert remaining is not None
    assert 4 < remaining <= 5


def test_expired_deadline_clamps_to_zero() -> None:
    token = CancellationToken(deadline=time.monotonic() - 1)

    assert token.remaining() == 0.0


def test_first_cancel_reason_wins() -> None:
    token = CancellationToken()
    token.cancel("first")
    token.cancel("second")

    assert token.cancelled is True
    assert token.reason == "first"


def test_callbacks_fire_once() -> None:
    token = CancellationToken()
    calls: list[str] = []
    token.add_callback(lambda: calls.append("a"))

    token.cancel()
    token.cancel()

    assert calls == ["a"]


def test_callback_added_after_cancel_fires_immediately() -> None:
    token = CancellationToken()
    token.cancel()
    calls: list[str] = []

    token.add_callback(lambda: calls.append("late"))

    assert calls == ["late"]


def test_removed_callback_does_not_fire() -> None:
    token = CancellationToken()
    calls: list[str] = []
    remove = token.add_callback(lambda: calls.append("x"))

    remove()
    token.cancel()

    assert calls == []


def test_scope_without_parent_expires_after_seconds() -> None:
    with deadline_scope(None, 2) as scoped:
        remaining = scoped.remaining()

    assert remaining is not None
    assert 1 < remaining <= 2


def test_scope_keeps_earlier_parent_deadline() -> None:
    parent = CancellationToken.with_timeout(1)

    with deadline_scope(parent, 30) as scoped:
        assert scoped.deadline == parent.deadline

    with deadline_scope(CancellationToken.with_timeout(60), 1) as scoped:
        remaining = scoped.remaining()
        assert remaining is not None
        assert remaining <= 1


def test_scope_follows_parent_cancellation() -> None:
    parent = CancellationToken()

    with deadline_scope(parent, 30) as scoped:
        parent.cancel("client went away")

        assert scoped.cancelled is True
        assert scoped.reason == "client went away"


def test_scope_detaches_from_parent_on_exit() -> None:
    parent = CancellationToken()

    with deadline_scope(parent, 30) as scoped:
        pass
    parent.cancel("later")

    assert scoped.cancelled is False
