"""src/closer/coordinator.py

The process-wide graceful shutdown coordinator. Cleanup actions registered
with `defer()` run exactly once, most recently registered first, either when
the trigger returned by `defer()` is called, when `exit()` is called, or when
one of the watched signals arrives. The last two terminate the process.

Actions run while the coordinator lock is held. An action must not call
`defer()`, `exit()` or a trigger itself, or the process deadlocks.
"""

import os
import queue
import signal
import sys
import threading

from closer.action import Batch, run_actions
from closer.logging import logger, flush_logging
from closer.policy import ExitPolicy, parse_settings_file, validate_signals

EXIT_CODE_AUTO = -1

class Closer:
    """Holds the action stack, the signal subscription and the listener thread.
    Programs normally use the single instance returned by `get()`; separate
    instances exist for testing.
    """
    def __init__(self, policy=None):
        self.policy = policy if policy is not None else ExitPolicy()
        self._lock = threading.Lock()
        self._actions = []
        self._signals = []
        self._previous_handlers = {}
        self._sig_queue = None
        self._listener = None

    @property
    def initialized(self) -> bool:
        return self._listener is not None

    @property
    def watched_signals(self) -> list:
        return list(self._signals)

    def init(self, *signals, force=False):
        """Start the signal listener and subscribe to `signals` (the policy's
        signals if none are given). Does nothing when already initialized,
        unless `force` is True, in which case the current subscription is
        replaced. The listener thread is only ever started once.

        Raises PolicyError for signals that are unknown or cannot be caught, in
        which case nothing changes.
        """
        signals = validate_signals(signals) if signals else None
        with self._lock:
            if self._listener is None:
                # SimpleQueue.put is reentrant, so the signal handler may use it
                self._sig_queue = queue.SimpleQueue()
                self._subscribe(signals if signals else list(self.policy.signals))
                self._listener = threading.Thread(target=self._wait_for_signal, name="closer-signal-listener", daemon=True)
                self._listener.start()
                return
            if not force:
                return
            previous = self._signals
            self._unsubscribe()
            try:
                self._subscribe(signals if signals else list(self.policy.signals))
            except (OSError, ValueError):
                self._subscribe(previous)
                raise

    def _subscribe(self, signals):
        if threading.current_thread() is not threading.main_thread():
            logger().warning("signal handlers can only be installed from the main thread, "
                             "call set_signals() from the main thread to watch %s",
                             ", ".join(_signal_name(s) for s in signals))
            return
        installed = {}
        try:
            for sig in signals:
                installed[sig] = signal.signal(sig, self._handle_signal)
        except (OSError, ValueError):
            for sig, handler in installed.items():
                signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
            raise
        self._previous_handlers = installed
        self._signals = list(signals)
        logger().debug("watching signals %s", ", ".join(_signal_name(s) for s in signals))

    def _unsubscribe(self):
        if self._previous_handlers and threading.current_thread() is not threading.main_thread():
            logger().warning("signal handlers can only be restored from the main thread")
            return
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
        self._previous_handlers = {}
        self._signals = []

    def _handle_signal(self, signum, _frame):
        """Runs on the main thread. Only hands the signal over to the listener."""
        self._sig_queue.put(signum)

    def notify(self, sig):
        """Queue `sig` as if the OS had delivered a watched signal."""
        self.init()
        self._sig_queue.put(sig)

    def _wait_for_signal(self):
        while True:
            sig = self._sig_queue.get()
            try:
                logger().info("received %s, cleaning up", _signal_name(sig))
                with self._lock:
                    run_actions(self._actions, self.policy.on_error)
            finally:
                self._terminate(self.policy.signal_exit_code(sig))

    def defer(self, *actions):
        """Register `actions` and return a function that runs just those
        actions, most recently registered first. Each action is also pushed on
        the global stack; the stack and the returned trigger share the same
        Action objects, so an action runs once no matter which one fires first.
        """
        batch = Batch(actions)
        self.init()
        with self._lock:
            self._actions.extend(batch.actions)
        logger().debug("registered %d cleanup action(s)", len(batch))

        def trigger():
            with self._lock:
                return batch.cleanup(self.policy.on_error)
        return trigger

    def cleanup(self) -> bool:
        """Run every registered action, most recently registered first. Returns
        True if any action failed.
        """
        with self._lock:
            return run_actions(self._actions, self.policy.on_error)

    def exit(self, code=EXIT_CODE_AUTO):
        """Run every registered action then terminate the process. If `code` is
        EXIT_CODE_AUTO the exit code is the policy's `exit_code_err` or
        `exit_code_ok` depending on whether any action failed. Never returns.
        """
        erred = True
        try:
            self.init()
            erred = self.cleanup()
        finally:
            if code == EXIT_CODE_AUTO:
                code = self.policy.exit_code(erred)
            self._terminate(code)

    def _terminate(self, code):
        logger().info("exiting with status %d", code)
        for stream in (sys.stdout, sys.stderr):
            try:
                stream.flush()
            except (AttributeError, OSError, ValueError):
                pass
        flush_logging()
        os._exit(code)

def _signal_name(sig) -> str:
    try:
        return signal.Signals(sig).name
    except (TypeError, ValueError):
        return str(sig)

_closer = None
_closer_lock = threading.Lock()

def _instance() -> Closer:
    global _closer
    with _closer_lock:
        if _closer is None:
            _closer = Closer()
        return _closer

def get() -> Closer:
    """Return the process-wide Closer, creating and initializing it on first use."""
    closer = _instance()
    closer.init()
    return closer

def policy() -> ExitPolicy:
    """Return the process-wide ExitPolicy."""
    return _instance().policy

def configure(**settings) -> ExitPolicy:
    """Validate and apply exit policy settings, see `ExitPolicy.update()`."""
    return policy().update(**settings)

def load_config(config_path) -> ExitPolicy:
    """Apply the exit policy settings in the YAML file `config_path`. Settings
    the file leaves out keep their current values. Signals read from the file
    are watched once `set_signals()` is called or, if the coordinator has not
    started yet, on first use.
    """
    return configure(**parse_settings_file(config_path))

def init(*signals):
    """Start watching `signals` (default: SIGINT, SIGHUP, SIGTERM) unless already
    initialized. Called implicitly by `defer()` and `exit()`.
    """
    _instance().init(*signals)

def set_signals(*signals):
    """Replace the watched signals with `signals`, or the policy's signals if
    none are given. Must be called from the main thread.
    """
    _instance().init(*signals, force=True)

def defer(*actions):
    """Register cleanup actions. Actions can be no-argument callables,
    objects with a close() method, or closer.action.Action instances. Returns
    a function that runs exactly these actions, for example:

        f = open(path)
        release = closer.coordinator.defer(lock.release, f)
        try:
            ...
        finally:
            release()
    """
    return get().defer(*actions)

def exit(code=EXIT_CODE_AUTO):
    """Run all registered actions and terminate the process with `code`. See
    `Closer.exit()`.
    """
    get().exit(code)
