"""Tests for the polling helper."""

import threading

import pytest

from athena_pg_migrator.errors import PollCancelledError, PollTimeoutError
from athena_pg_migrator.utils.polling import Poller


class TestPoller:

    def test_returns_first_done_value(self):
        values = iter([1, 2, 3, 4])
        ticks = []

        result = Poller(interval=0).poll(
            fetch=lambda: next(values),
            is_done=lambda v: v == 3,
            on_tick=lambda attempt, value: ticks.append((attempt, value))
        )

        assert result == 3
        assert ticks == [(1, 1), (2, 2), (3, 3)]

    def test_timeout_raises_timeout_error(self):
        poller = Poller(interval=0, timeout=0)
        with pytest.raises(PollTimeoutError) as exc_info:
            poller.poll(fetch=lambda: "RUNNING", is_done=lambda v: False, description="query")
        assert isinstance(exc_info.value, TimeoutError)

    def test_cancelled_before_start(self):
        event = threading.Event()
        event.set()
        fetch_calls = []
        with pytest.raises(PollCancelledError):
            Poller(interval=0, cancel_event=event).poll(
                fetch=lambda: fetch_calls.append(1), is_done=lambda v: False
            )
        assert fetch_calls == []

    def test_cancel_during_wait(self):
        poller = Poller(interval=10)

        def fetch():
            poller.cancel()
            return "RUNNING"

        with pytest.raises(PollCancelledError):
            poller.poll(fetch=fetch, is_done=lambda v: False)

    def test_backoff_is_capped(self, monkeypatch):
        waits = []
        poller = Poller(interval=1, backoff=2.0, max_interval=3)
        monkeypatch.setattr(poller.cancel_event, "wait", lambda timeout: waits.append(timeout) or False)
        values = iter(range(5))

        poller.poll(fetch=lambda: next(values), is_done=lambda v: v == 4)

        assert waits == [1, 2, 3, 3]

    @pytest.mark.parametrize("kwargs", [{"interval": -1}, {"backoff": 0.5}])
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            Poller(**kwargs)
