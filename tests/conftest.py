### conftest.py is implicitly imported into all pytest test files. This file
### can be thought of as a collection of globally available pytest fixtures.

import pytest
import signal
import shutil
import threading
from random import choice
from string import ascii_lowercase
from pathlib import Path

import closer.coordinator
from closer.coordinator import Closer

WATCHED_SIGNALS = [getattr(signal, name) for name in ("SIGINT", "SIGHUP", "SIGTERM", "SIGUSR1", "SIGUSR2") if hasattr(signal, name)]

@pytest.fixture(autouse=True)
def restore_signal_handlers():
    """Put back the signal handlers a test replaced by initializing a Closer."""
    saved = {sig: signal.getsignal(sig) for sig in WATCHED_SIGNALS}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler if handler is not None else signal.SIG_DFL)

@pytest.fixture(autouse=True)
def reset_global_closer():
    """Give every test a fresh process-wide Closer."""
    closer.coordinator._closer = None
    yield
    closer.coordinator._closer = None

@pytest.fixture
def exit_calls(monkeypatch):
    """Fixture that replaces os._exit so that terminating the process is
    recorded instead of performed. Returns an object with the list of recorded
    exit codes (`codes`) and an Event (`called`) set on every call.
    """
    class ExitCalls:
        def __init__(self):
            self.codes = []
            self.called = threading.Event()

        def __call__(self, code):
            self.codes.append(code)
            self.called.set()

    calls = ExitCalls()
    monkeypatch.setattr(closer.coordinator.os, "_exit", calls)
    return calls

@pytest.fixture
def closer_generator():
    """Fixture for generating independent Closer instances."""
    def generator(policy=None):
        return Closer(policy=policy)
    return generator

@pytest.fixture
def random_string_generator():
    """Fixture for generating random ascii lowercase strings of arbitrary length."""
    def generator(length=5):
        return "".join(choice(ascii_lowercase) for i in range(length))
    return generator

@pytest.fixture
def path_generator(random_string_generator, tmp_path):
    """Fixture for generating paths that do not exist on the system. Allows
    callers to specify the prefix of the basename of the path, the length of the
    basenames random suffix, the base_dir of the path, and if the path should be
    removed during cleanup.
    """
    tmp_paths_to_cleanup = []
    def generator(name_prefix, base_dir=tmp_path, suffix_length=5, mkdir=False, touch=False, cleanup=False):
        base_dir = Path(base_dir)
        tmp_path = None
        while tmp_path is None or tmp_path.exists():
            basename = name_prefix + random_string_generator(length=suffix_length)
            tmp_path = base_dir.joinpath(basename)
        if mkdir:
            tmp_path.mkdir(parents=True)
        elif touch:
            tmp_path.touch(exist_ok=False)
        if cleanup:
            tmp_paths_to_cleanup.append(tmp_path)
        return tmp_path

    yield generator

    for path in tmp_paths_to_cleanup:
        if path.is_file():
            path.unlink()
        elif path.is_dir():
            shutil.rmtree(path)
