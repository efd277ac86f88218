from __future__ import annotations
import logging
import functools
from typing import Type, Callable, Any

class GsDownloadError(Exception): pass
class ConfigError(GsDownloadError): pass
class ConnectError(GsDownloadError): pass
class EnumerationError(GsDownloadError): pass
class OverLimitError(EnumerationError): pass
class NotFoundError(GsDownloadError): pass
class ReadError(GsDownloadError): pass
class WriteError(GsDownloadError): pass
class UnsafePathError(WriteError): pass
class DownloadCancelled(GsDownloadError): pass

def setup_logging(level: int = logging.WARNING, logfile: str | None = None) -> None:
    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):  # avoid duplicate handlers
        root.removeHandler(h)
    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    stream = logging.StreamHandler()
    stream.setFormatter(fmt)
    root.addHandler(stream)
    if logfile:
        fh = logging.FileHandler(logfile)
        fh.setFormatter(fmt)
        root.addHandler(fh)

def log_and_reraise(exception_cls: Type[Exception] = GsDownloadError, message: str | None = None):
    """
    Re-raise any failure of the wrapped call as `exception_cls`.
    The CLI reports the error itself, so the log line stays at debug level.
    """
    def deco(func: Callable[..., Any]):
        @functools.wraps(func)
        def wrapper(*a, **kw):
            try:
                return func(*a, **kw)
            except exception_cls:
                raise
            except Exception as e:
                logging.getLogger(func.__module__).debug("%s failed: %s", func.__name__, e)
                raise exception_cls(f"{message or func.__name__ + ' failed'}: {e}") from e
        return wrapper
    return deco
