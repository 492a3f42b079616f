"""Cooperative cancellation tokens for multi-step light sequences.

A CancellationTokenSource owns a token and is the only thing that can cancel
or dispose it. Workers hold the read-only CancellationToken and check it
before every externally visible step:

    source, token = create_source()
    worker = threading.Thread(target=run, args=(token,))
    ...
    source.cancel()   # run() raises Cancellation at its next checkpoint

Cancelling always disposes. Disposing fires dispose handlers once and leaves
the source inert; late registrations fire immediately instead of being queued.
"""

import logging
import threading
from concurrent.futures import Future

logger = logging.getLogger(__name__)


class Cancellation(Exception):
    """Raised at a checkpoint when the token has been cancelled."""

    def __init__(self, message=None):
        super().__init__(message or "The operation was cancelled.")

    @classmethod
    def ignore(cls, func, default=None):
        """Call func, returning default instead of raising on cancellation."""
        try:
            return func()
        except cls:
            return default


def _noop():
    pass


def _invoke(handlers, kind):
    for handler in handlers:
        try:
            handler()
        except Exception:
            logger.exception("%s handler %r failed", kind, handler)


class CancellationToken:
    """Read-only view of a CancellationTokenSource."""

    def __init__(self, source):
        self._source = source

    def __repr__(self):
        state = "cancelled" if self.is_cancelled else "active"
        return f"<CancellationToken {state} at {id(self):#x}>"

    @property
    def is_cancelled(self):
        return self._source.cancelled

    def on_cancel(self, handler):
        """Register a callback fired once on cancellation.

        Fires synchronously if the token is already cancelled. Returns a
        function that unregisters the handler if it has not fired yet.
        """
        return self._source._add_handler(handler, cancel=True)

    def on_dispose(self, handler):
        """Register a callback fired once when the source is disposed."""
        return self._source._add_handler(handler, cancel=False)

    def throw_if_cancelled(self, msg=None):
        if self.is_cancelled:
            raise Cancellation(msg)

    def then_throw_if_cancelled(self, msg=None):
        """Return a function that checkpoints, then passes its argument through.

            result = token.then_throw_if_cancelled("after lookup")(lookup())
        """
        def check(result):
            self.throw_if_cancelled(msg)
            return result
        return check

    def wait_for_cancellation(self, msg=None, timeout=None):
        """Block until cancelled, then raise Cancellation.

        Returns None if timeout elapses first.
        """
        self._source._cancelled_event.wait(timeout)
        self.throw_if_cancelled(msg)

    def wait(self, timeout=None):
        """Block until cancelled or until timeout elapses.

        Returns True when the token is cancelled.
        """
        return self._source._cancelled_event.wait(timeout)

    def race(self, operation):
        """Wait for operation unless cancellation fires first.

        Args:
            operation: a concurrent.futures.Future, or a zero-argument
                callable that is started on a daemon thread.

        Returns the operation's result, or None when cancellation won. A
        cancelled race detaches from the operation: it keeps running and its
        eventual result or error is discarded. Errors raised by the
        operation before cancellation are re-raised.
        """
        future = operation if isinstance(operation, Future) else _spawn(operation)
        lock = threading.Lock()
        settled = threading.Event()
        winner = []

        def settle(kind):
            with lock:
                if not winner:
                    winner.append(kind)
            settled.set()

        unregister = self.on_cancel(lambda: settle("cancelled"))
        future.add_done_callback(lambda _f: settle("done"))
        try:
            settled.wait()
        finally:
            unregister()
        if winner[0] == "cancelled":
            return None
        return future.result()


class CancellationTokenSource:
    """Controls a single CancellationToken.

    Thread-safe. Handlers are called outside the internal lock, in
    registration order, so they may call cancel() or dispose() again.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._cancelled = False
        self._disposed = False
        self._cancel_handlers = []
        self._dispose_handlers = []
        self._cancelled_event = threading.Event()
        self.token = CancellationToken(self)

    @property
    def cancelled(self):
        return self._cancelled

    @property
    def disposed(self):
        return self._disposed

    def on_dispose(self, handler):
        return self._add_handler(handler, cancel=False)

    def cancel(self):
        with self._lock:
            if self._cancelled or self._disposed:
                return
            self._cancelled = True
            self._cancelled_event.set()
            handlers, self._cancel_handlers = self._cancel_handlers, []
        _invoke(handlers, "cancel")
        self.dispose()

    def dispose(self):
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            self._cancel_handlers = []
            handlers, self._dispose_handlers = self._dispose_handlers, []
        _invoke(handlers, "dispose")

    def _add_handler(self, handler, cancel):
        # cancel() drops the lock before disposing, so a cancel handler can
        # arrive while cancelled but not yet disposed; it fires right away.
        with self._lock:
            if cancel and self._cancelled:
                fire = True
            elif not self._disposed:
                handlers = self._cancel_handlers if cancel else self._dispose_handlers
                handlers.append(handler)
                return lambda: self._remove_handler(handler, cancel)
            else:
                fire = not cancel
        if fire:
            handler()
        return _noop

    def _remove_handler(self, handler, cancel):
        with self._lock:
            handlers = self._cancel_handlers if cancel else self._dispose_handlers
            try:
                handlers.remove(handler)
            except ValueError:
                pass


class _ConstantSource:
    """Backs the NONE and CANCELLED tokens."""

    def __init__(self, cancelled):
        self.cancelled = cancelled
        self.disposed = True
        self._cancelled_event = threading.Event()
        if cancelled:
            self._cancelled_event.set()

    def _add_handler(self, handler, cancel):
        if self.cancelled or not cancel:
            handler()
        return _noop


NONE = CancellationToken(_ConstantSource(cancelled=False))
CANCELLED = CancellationToken(_ConstantSource(cancelled=True))


def create_source():
    """Return a fresh (source, token) pair in the non-cancelled state."""
    source = CancellationTokenSource()
    return source, source.token


def combine_source(*tokens):
    """Like combine(), but return the source so the caller can dispose it.

    Disposing the source unregisters it from every input token.
    """
    source = CancellationTokenSource()
    if any(t.is_cancelled for t in tokens):
        source.cancel()
        return source
    for t in tokens:
        source.on_dispose(t.on_cancel(source.cancel))
    return source


def combine(*tokens):
    """Return a token cancelled as soon as any of tokens is cancelled."""
    return combine_source(*tokens).token


def timeout_token(seconds):
    """Return a (source, token) pair that cancels itself after seconds.

    Disposing the source early stops the timer.
    """
    source = CancellationTokenSource()
    timer = threading.Timer(seconds, source.cancel)
    timer.daemon = True
    source.on_dispose(timer.cancel)
    timer.start()
    return source, source.token


def _spawn(func):
    future = Future()
    future.set_running_or_notify_cancel()

    def target():
        try:
            result = func()
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)

    threading.Thread(target=target, daemon=True).start()
    return future
