# This module is a wrapper over pythons logging module. All logging in closer
# should happen through the functions defined in this module. Every closer
# logger is a child of the "closer" logger, which is the only logger closer
# ever configures; the host program's root logger is left alone.

import logging
import logging.handlers
import inspect

LOGGER_NAME = "closer"

_closer_handlers = []

def init_logging(stderr=True, logfile=None, syslog=False, syslog_address="/dev/log", level=logging.INFO):
    """Send closer's own log records (signal receipt, failed cleanup actions,
    process exit) to any and all of stderr, syslog, and a file, instead of
    letting them propagate to the host program's root logger. Calling this again
    replaces the handlers installed by the previous call. If none of 'stderr',
    'logfile', or 'syslog' are True, then 'stderr' is set to True.
    """
    if not (stderr or logfile or syslog):
        stderr = True
    formatter = logging.Formatter("closer - %(asctime)s - %(levelname)s - %(message)s", "%Y-%m-%d %H:%M:%S")
    handlers = []
    if syslog:
        handlers.append(logging.handlers.SysLogHandler(address=syslog_address))
    if stderr:
        handlers.append(logging.StreamHandler()) # defaults to sys.stderr
    if logfile:
        handlers.append(logging.FileHandler(logfile, encoding="utf-8"))
    disable_logging()
    closer_logger = logging.getLogger(LOGGER_NAME)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        closer_logger.addHandler(handler)
        _closer_handlers.append(handler)
    closer_logger.setLevel(level)
    closer_logger.propagate = False

def disable_logging():
    """Remove the handlers installed by `init_logging()` and let closer's records
    propagate to the root logger again.
    """
    closer_logger = logging.getLogger(LOGGER_NAME)
    while _closer_handlers:
        handler = _closer_handlers.pop()
        closer_logger.removeHandler(handler)
        handler.close()
    closer_logger.setLevel(logging.NOTSET)
    closer_logger.propagate = True

def logging_initialized() -> bool:
    return bool(_closer_handlers)

def flush_logging():
    """Flush the handlers closer's records can reach. Used right before the
    process is terminated without running interpreter shutdown.
    """
    handlers = logging.getLogger(LOGGER_NAME).handlers + logging.getLogger().handlers
    for handler in handlers:
        try:
            handler.flush()
        except (OSError, ValueError):
            pass

def logger(name=None):
    """Return a logger with the specified name. If name is None then it defaults
    to the name of the callers module.
    """
    if name is None:
        module = inspect.getmodule(inspect.stack()[1][0])
        name = module.__name__ if module is not None else LOGGER_NAME
    return logging.getLogger(name)
