"""src/closer/action.py"""

import inspect

from closer.logging import logger

class ActionError(Exception):
    """Base class for every error closer reports about a cleanup action."""
    ...

class ActionAbortedError(ActionError):
    """An action raised instead of returning. The raised exception is kept as
    `__cause__` and as the `exception` attribute.
    """
    def __init__(self, action_name, exception):
        super().__init__(f"panic: action {action_name} raised {type(exception).__name__}: {exception}")
        self.action_name = action_name
        self.exception = exception

class UnsupportedActionError(ActionError, TypeError):
    ...

class Action:
    """A single cleanup unit. An Action is pending while it holds a callable and
    consumed once it has been run. Running a consumed Action does nothing.
    """
    def __init__(self, fn, name=None):
        if not callable(fn):
            raise UnsupportedActionError(f"action must be callable, got {type(fn).__name__}")
        _check_takes_no_arguments(fn)
        self._fn = fn
        self.name = name if name is not None else _callable_name(fn)

    @classmethod
    def from_procedure(cls, fn, name=None):
        """Action for a no-argument function whose return value is ignored."""
        if not callable(fn):
            raise UnsupportedActionError(f"action must be callable, got {type(fn).__name__}")
        _check_takes_no_arguments(fn)
        def procedure():
            fn()
        return cls(procedure, name if name is not None else _callable_name(fn))

    @classmethod
    def from_fallible(cls, fn, name=None):
        """Action for a no-argument function that reports failure by returning
        an exception instance (or by raising).
        """
        return cls(fn, name)

    @classmethod
    def from_closeable(cls, resource, name=None):
        """Action that calls `resource.close()`."""
        close = getattr(resource, "close", None)
        if not callable(close):
            raise UnsupportedActionError(f"{type(resource).__name__} object has no close() method")
        return cls(close, name if name is not None else f"{type(resource).__name__}.close")

    @property
    def pending(self) -> bool:
        return self._fn is not None

    def run(self):
        """Run the action if it is still pending and return None on success or
        the exception describing the failure. Anything the action raises,
        SystemExit and KeyboardInterrupt included, becomes an ActionAbortedError.
        The action is consumed whatever the outcome.
        """
        fn = self._fn
        if fn is None:
            return None
        try:
            result = fn()
        except BaseException as exc:
            err = ActionAbortedError(self.name, exc)
            err.__cause__ = exc
            return err
        finally:
            self._fn = None
        if isinstance(result, BaseException):
            return result
        return None

    def __repr__(self):
        state = "pending" if self.pending else "consumed"
        return f"<Action {self.name} {state}>"

def _callable_name(fn) -> str:
    return getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None) or repr(fn)

def _check_takes_no_arguments(fn):
    """Raise UnsupportedActionError unless `fn` can be called without
    arguments. Callables whose signature cannot be inspected are accepted.
    """
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return
    try:
        sig.bind()
    except TypeError:
        raise UnsupportedActionError(f"action {_callable_name(fn)} must take no arguments, its signature is {sig}") from None

def as_action(obj) -> Action:
    """Coerce `obj` into an Action. Supported shapes are an Action, a no-argument
    callable (its return value is treated as in `Action.from_fallible()`), and
    an object with a `close()` method such as an open file. Anything else raises
    UnsupportedActionError right away.
    """
    if isinstance(obj, Action):
        return obj
    if callable(obj):
        return Action.from_fallible(obj)
    if callable(getattr(obj, "close", None)):
        return Action.from_closeable(obj)
    raise UnsupportedActionError(
        f"supported actions: callables, objects with a close() method and Action, got {type(obj).__name__}"
    )

class Batch:
    """An ordered group of Actions produced by one registration."""
    def __init__(self, actions=()):
        self.actions = [as_action(a) for a in actions]

    def __len__(self):
        return len(self.actions)

    def __iter__(self):
        return iter(self.actions)

    def cleanup(self, on_error=None) -> bool:
        """Run every action such that the most recently registered actions get
        executed first. Each failure is logged and passed to `on_error`, and the
        remaining actions still run. Returns True if any action failed.
        """
        return run_actions(self.actions, on_error)

def run_actions(actions, on_error=None) -> bool:
    """Run `actions` in reverse order. See `Batch.cleanup()`."""
    erred = False
    for action in reversed(actions):
        err = action.run()
        if err is None:
            continue
        erred = True
        logger().error("cleanup action %s failed: %s", action.name, err, exc_info=err)
        if on_error is not None:
            try:
                on_error(err)
            except Exception:
                logger().error("cleanup error handler failed", exc_info=True)
    return erred
