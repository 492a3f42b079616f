"""Single-flight, latest-wins dispatcher for light sequences.

Messages are fed in from webhook handlers and dispatched one at a time by a
dispatcher thread that owns the "current run" slot. Dispatching a message
cancels the current run's token, then starts the new run on its own thread
without waiting for the old one to unwind. The old run stops at its next
checkpoint.

    q = SingleFlightQueue(sequencer.run)
    q.start()
    q.enqueue("deploy started")
    q.enqueue("deploy succeeded")   # cancels the first run
"""

import itertools
import logging
import queue
import threading
from enum import Enum

from services.cancellation import Cancellation, create_source

logger = logging.getLogger(__name__)

_STOP = object()


class RunState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class Run:
    """One execution of the handler for a dispatched message."""

    def __init__(self, run_id, message, source):
        self.id = run_id
        self.message = message
        self.source = source
        self.state = RunState.PENDING
        self.result = None
        self.error = None
        self.done = threading.Event()

    @property
    def token(self):
        return self.source.token

    def __repr__(self):
        return f"<Run {self.id} {self.state.value}>"


class SingleFlightQueue:
    """Serialized dispatch where a newer message preempts the running one.

    Thread-safe: enqueue() may be called from any thread. Handler failures
    are logged and never stop the queue.
    """

    def __init__(self, handler, name="lights"):
        self._handler = handler
        self.name = name
        self._queue = queue.Queue()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._ids = itertools.count(1)
        self._current = None
        self._pending = 0
        self._running = False
        self._thread = None
        self.last_run = None
        self.runs_started = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self):
        with self._lock:
            if self._running:
                return
            self._running = True
        self._thread = threading.Thread(
            target=self._dispatch_loop, name=f"{self.name}-dispatch", daemon=True
        )
        self._thread.start()
        logger.info("Queue %s started", self.name)

    def stop(self, timeout=None):
        """Stop dispatching and cancel the current run."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            current = self._current
        self._queue.put(_STOP)
        if current is not None:
            current.source.cancel()
        if self._thread is not None:
            self._thread.join(timeout)
        logger.info("Queue %s stopped", self.name)

    def enqueue(self, message):
        """Accept a message for processing. Never blocks."""
        with self._lock:
            if not self._running:
                raise RuntimeError(f"Queue {self.name} is not running")
            self._pending += 1
        self._queue.put(message)

    def join(self, timeout=None):
        """Wait until every enqueued message has finished its run.

        Returns False if the timeout elapsed first.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    @property
    def current_run(self):
        with self._lock:
            return self._current

    # ------------------------------------------------------------------
    # Dispatcher
    # ------------------------------------------------------------------

    def _dispatch_loop(self):
        while True:
            message = self._queue.get()
            if message is _STOP:
                break
            try:
                self._dispatch(message)
            except Exception:
                logger.exception("Failed to dispatch message on %s", self.name)
                self._finished()

        # Anything left behind the stop marker is dropped.
        while True:
            try:
                message = self._queue.get_nowait()
            except queue.Empty:
                break
            if message is not _STOP:
                logger.debug("Dropping undispatched message on %s", self.name)
                self._finished()
        current = self.current_run
        if current is not None:
            current.source.cancel()

    def _dispatch(self, message):
        with self._lock:
            previous = self._current

        # Cancel before the new source exists so the old run can never see
        # itself as current again.
        if previous is not None and not previous.source.disposed:
            logger.debug("Run %s superseded, cancelling", previous.id)
            previous.source.cancel()

        source, _token = create_source()
        run = Run(next(self._ids), message, source)
        with self._lock:
            self._current = run
            self.last_run = run
            self.runs_started += 1

        threading.Thread(
            target=self._execute, args=(run,), name=f"{self.name}-run-{run.id}", daemon=True
        ).start()

    def _execute(self, run):
        run.state = RunState.RUNNING
        logger.debug("Run %s started", run.id)
        try:
            run.result = self._handler(run.message, run.token)
            run.state = RunState.COMPLETED
            logger.info("Run %s completed", run.id)
        except Cancellation as exc:
            run.state = RunState.CANCELLED
            run.error = exc
            logger.debug("Run %s cancelled: %s", run.id, exc)
        except Exception as exc:
            run.state = RunState.FAILED
            run.error = exc
            logger.exception("Run %s failed", run.id)
        finally:
            run.source.dispose()
            with self._lock:
                if self._current is run:
                    self._current = None
            run.done.set()
            self._finished()

    def _finished(self):
        with self._idle:
            self._pending -= 1
            self._idle.notify_all()
