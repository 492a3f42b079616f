import logging
import threading
import time

import pytest

from services.cancellation import Cancellation
from services.classifier import Intent
from services.dispatch_queue import RunState, SingleFlightQueue
from services.govee import NetworkError
from services.sequencer import EffectSequencer


class RecordingHandler:
    """Wraps a sequencer and remembers the token each run received."""

    def __init__(self, sequencer):
        self.sequencer = sequencer
        self.runs = []
        self._lock = threading.Lock()

    def __call__(self, message, token):
        with self._lock:
            self.runs.append((message, token))
        return self.sequencer.run(message, token)


@pytest.fixture
def make_queue():
    queues = []

    def factory(handler):
        q = SingleFlightQueue(handler, name="test")
        q.start()
        queues.append(q)
        return q

    yield factory
    for q in queues:
        q.stop(timeout=2)


def test_single_message_completes(fake_client, make_queue):
    q = make_queue(EffectSequencer(fake_client, effect_hold=0).run)

    q.enqueue("build passed")

    assert q.join(timeout=5)
    assert q.last_run.state is RunState.COMPLETED
    assert q.last_run.result is Intent.PASS
    assert q.last_run.source.disposed
    assert q.current_run is None
    assert fake_client.static_states() == [(Intent.PASS, False)]


def test_newer_message_preempts_running_one(fake_client, make_queue):
    handler = RecordingHandler(EffectSequencer(fake_client, effect_hold=0.3))
    q = make_queue(handler)

    q.enqueue("deploy started")
    time.sleep(0.05)
    q.enqueue("deploy succeeded")

    assert q.join(timeout=5)
    (_, first), (_, second) = handler.runs
    assert first.is_cancelled
    assert fake_client.names(first) == ["disable_effects", "start_transient_effect"]
    assert fake_client.names(second) == [
        "disable_effects",
        "start_transient_effect",
        "set_static_state",
    ]
    assert fake_client.static_states() == [(Intent.PASS, False)]


def test_only_latest_of_burst_reaches_final_state(fake_client, make_queue):
    handler = RecordingHandler(EffectSequencer(fake_client, effect_hold=0.5))
    q = make_queue(handler)
    messages = [
        "deploy started",
        "build failed",
        "deploy started",
        "service is down",
        "service is up",
    ]

    for message in messages:
        q.enqueue(message)

    assert q.join(timeout=10)
    assert sorted(m for m, _ in handler.runs) == sorted(messages)
    assert q.runs_started == len(messages)
    assert q.last_run.message == messages[-1]
    superseded = [t for _, t in handler.runs if t is not q.last_run.token]
    assert len(superseded) == len(messages) - 1
    for token in superseded:
        assert token.is_cancelled
        assert "set_static_state" not in fake_client.names(token)
    assert fake_client.static_states() == [(Intent.PASS, False)]


def test_unclassified_message_issues_no_calls(fake_client, make_queue):
    q = make_queue(EffectSequencer(fake_client, effect_hold=0).run)

    q.enqueue("someone joined the channel")

    assert q.join(timeout=5)
    assert q.last_run.state is RunState.COMPLETED
    assert fake_client.calls == []


def test_network_error_is_logged_and_queue_continues(fake_client, make_queue, caplog):
    fake_client.fail_on = "disable_effects"
    fake_client.error = NetworkError("lamp-1", "connection refused")
    q = make_queue(EffectSequencer(fake_client, effect_hold=0).run)

    with caplog.at_level(logging.ERROR, logger="services.dispatch_queue"):
        q.enqueue("build failed")
        assert q.join(timeout=5)

    failed = q.last_run
    assert failed.state is RunState.FAILED
    assert isinstance(failed.error, NetworkError)
    assert "Run 1 failed" in caplog.text

    fake_client.fail_on = None
    q.enqueue("build passed")

    assert q.join(timeout=5)
    assert q.last_run.state is RunState.COMPLETED
    assert fake_client.static_states() == [(Intent.PASS, False)]


def test_cancelled_run_is_swallowed_and_logged_at_debug(make_queue, caplog):
    started = threading.Event()

    def handler(message, token):
        if message == "slow":
            started.set()
            token.wait_for_cancellation("superseded", timeout=5)
        return message

    q = make_queue(handler)
    with caplog.at_level(logging.DEBUG, logger="services.dispatch_queue"):
        q.enqueue("slow")
        assert started.wait(2)
        first = q.current_run
        q.enqueue("fast")
        assert q.join(timeout=5)

    assert first.state is RunState.CANCELLED
    assert isinstance(first.error, Cancellation)
    assert q.last_run.state is RunState.COMPLETED
    assert q.last_run.result == "fast"
    assert "Run 1 cancelled: superseded" in caplog.text


def test_enqueue_does_not_block(make_queue):
    release = threading.Event()
    q = make_queue(lambda message, token: release.wait(5))

    started = time.monotonic()
    for i in range(20):
        q.enqueue(f"message {i}")
    elapsed = time.monotonic() - started

    release.set()
    assert elapsed < 1
    assert q.join(timeout=5)


def test_stop_cancels_current_run_and_rejects_new_messages():
    started = threading.Event()
    seen = []

    def handler(message, token):
        started.set()
        token.wait(5)
        seen.append(token.is_cancelled)
        token.throw_if_cancelled()

    q = SingleFlightQueue(handler, name="stopping")
    q.start()
    q.enqueue("long")
    assert started.wait(2)
    run = q.current_run

    q.stop(timeout=2)

    assert run.done.wait(2)
    assert run.state is RunState.CANCELLED
    assert seen == [True]
    with pytest.raises(RuntimeError):
        q.enqueue("too late")
