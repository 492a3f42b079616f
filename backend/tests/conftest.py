import threading
import time

import pytest

import db


class FakeLightingClient:
    """Records lighting calls instead of talking to Govee.

    delay simulates a slow vendor call that ignores cancellation, like a real
    HTTP request would. fail_on names a call that raises the given error.
    """

    def __init__(self, delay=0.0, fail_on=None, error=None):
        self.delay = delay
        self.fail_on = fail_on
        self.error = error
        self.calls = []
        self._lock = threading.Lock()

    def _call(self, name, token, arg=None):
        token.throw_if_cancelled(f"Cancelled before {name}")
        if self.delay:
            time.sleep(self.delay)
        if name == self.fail_on:
            raise self.error
        with self._lock:
            self.calls.append((name, token, arg))

    def disable_effects(self, token):
        self._call("disable_effects", token)

    def start_transient_effect(self, token, rgb):
        self._call("start_transient_effect", token, rgb)

    def set_static_state(self, token, intent, set_idle=False):
        self._call("set_static_state", token, (intent, set_idle))

    def names(self, token=None):
        with self._lock:
            return [n for n, t, _ in self.calls if token is None or t is token]

    def static_states(self):
        with self._lock:
            return [arg for n, _, arg in self.calls if n == "set_static_state"]


@pytest.fixture
def fake_client():
    return FakeLightingClient()


@pytest.fixture
def tmp_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_PATH", str(tmp_path / "lights.db"))
    db.init_db()
    return db.DB_PATH
