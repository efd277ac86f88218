from __future__ import annotations
from typing import Any, BinaryIO, Callable, Dict, Iterable, List, Optional, Tuple
from concurrent.futures import CancelledError, ThreadPoolExecutor, as_completed
import logging
import threading

from tqdm import tqdm

from .config import Config
from .core import ObjectInfo, ObjectStore
from .errors import (
    DownloadCancelled,
    EnumerationError,
    GsDownloadError,
    NotFoundError,
    OverLimitError,
    ReadError,
    UnsafePathError,
)
from .utils import FileSink, human_bytes, is_within, map_path

log = logging.getLogger(__name__)


class _CancellableReader:
    """Read-through wrapper that stops at the next chunk once `cancel` is set."""

    def __init__(self, stream: BinaryIO, name: str, cancel: threading.Event):
        self.stream = stream
        self.name = name
        self.cancel = cancel

    def read(self, size: int = -1) -> bytes:
        if self.cancel.is_set():
            raise DownloadCancelled(f"download of {self.name} cancelled")
        try:
            return self.stream.read(size)
        except Exception as e:
            raise ReadError(f"failed reading {self.name}: {e}") from e


def format_listing(name: str, path: str, size: int, verbose: bool = False) -> str:
    if verbose:
        return f"{name} --> {path} (size={size})"
    return name


def collect_objects(
    store: ObjectStore,
    bucket: str,
    prefix: str = "",
    max_objects: int = 0,
) -> List[ObjectInfo]:
    """
    Walk `bucket`/`prefix` into a list, skipping directory markers.
    More than `max_objects` objects (when > 0) is an error, not a cut-off.
    """
    objects: List[ObjectInfo] = []
    try:
        for info in store.walk(bucket, prefix):
            if info.name.endswith("/"):
                log.debug("skipping directory marker %s", info.name)
                continue
            objects.append(info)
            if max_objects > 0 and len(objects) > max_objects:
                raise OverLimitError(f"failed to get objects: exceeded the maximum number of objects ({max_objects})")
    except GsDownloadError:
        raise
    except Exception as e:
        raise EnumerationError(f"failed to get objects: {e}") from e
    return objects


def run_bounded(
    items: Iterable[Any],
    fn: Callable[[Any], Any],
    max_concurrent: int = 0,
    progress: bool = False,
    cancel: Optional[threading.Event] = None,
) -> None:
    """
    Call `fn` once per item with at most `max_concurrent` calls in flight
    (0 = one worker per item).

    On the first failure `cancel` is set and tasks that have not started are
    cancelled; running ones are waited for. The first failure is re-raised,
    later ones are logged.
    """
    items = list(items)
    if not items:
        return
    if cancel is None:
        cancel = threading.Event()
    workers = max_concurrent if max_concurrent > 0 else len(items)
    first_error: Optional[BaseException] = None

    bar = tqdm(total=len(items), desc="Download", unit="obj") if progress else None
    try:
        with ThreadPoolExecutor(max_workers=workers) as ex:
            futs = [ex.submit(fn, item) for item in items]
            try:
                for f in as_completed(futs):
                    try:
                        f.result()
                    except CancelledError:
                        pass
                    except Exception as e:
                        if first_error is None:
                            first_error = e
                            cancel.set()
                            for other in futs:
                                other.cancel()
                        elif isinstance(e, DownloadCancelled):
                            log.debug("%s", e)
                        else:
                            log.error("%s", e)
                    finally:
                        if bar:
                            bar.update(1)
            except BaseException:
                cancel.set()
                for other in futs:
                    other.cancel()
                raise
    finally:
        if bar:
            bar.close()

    if first_error is not None:
        raise first_error


def download_object(
    store: ObjectStore,
    sink: FileSink,
    config: Config,
    info: ObjectInfo,
    cancel: Optional[threading.Event] = None,
    emit: Callable[[str], Any] = print,
) -> Tuple[str, int]:
    """Stream one object to its mapped path; returns (path, bytes written)."""
    if cancel is None:
        cancel = threading.Event()
    if cancel.is_set():
        raise DownloadCancelled(f"download of {info.name} cancelled")

    path = map_path(info.name, config.prefix, config.output_dir)
    if not is_within(path, config.output_dir):
        raise UnsafePathError(f"refusing to write {info.name} outside {config.output_dir}: {path}")

    try:
        stream = store.open(config.bucket, info.name)
    except Exception as e:
        raise ReadError(f"failed to create new reader for {info.name}: {e}") from e
    try:
        written = sink.copy_to_file(path, _CancellableReader(stream, info.name, cancel))
    except BaseException:
        # the copy failure wins over a failing close
        try:
            stream.close()
        except Exception as e:
            log.debug("closing reader for %s failed: %s", info.name, e)
        raise
    try:
        stream.close()
    except Exception as e:
        raise ReadError(f"failed to close reader for {info.name}: {e}") from e

    emit(format_listing(info.name, path, written, config.verbose))
    return path, written


def download_prefix(
    store: ObjectStore,
    sink: FileSink,
    config: Config,
    echo: Callable[[str], Any] = print,
) -> Dict[str, Any]:
    objects = collect_objects(store, config.bucket, config.prefix, max_objects=config.max_objects)
    log.info("Found %d objects under %s/%s", len(objects), config.bucket, config.prefix)

    if not objects and config.not_found_is_error:
        raise NotFoundError("no objects found")

    cancel = threading.Event()
    lock = threading.Lock()
    downloaded: List[Tuple[str, str]] = []
    total_bytes = 0

    def _emit(line: str) -> None:
        with lock:
            echo(line)

    def _do(info: ObjectInfo) -> None:
        nonlocal total_bytes
        if config.dry_run:
            path = map_path(info.name, config.prefix, config.output_dir)
            _emit(format_listing(info.name, path, info.size, config.verbose))
            return
        path, written = download_object(store, sink, config, info, cancel=cancel, emit=_emit)
        with lock:
            downloaded.append((info.name, path))
            total_bytes += written

    run_bounded(
        objects,
        _do,
        max_concurrent=config.max_concurrent,
        progress=config.progress,
        cancel=cancel,
    )

    if not config.dry_run:
        log.info("Downloaded=%d Bytes=%s Dest=%s", len(downloaded), human_bytes(total_bytes), config.output_dir)

    downloaded.sort()
    return {
        "objects": [o.name for o in objects],
        "downloaded": downloaded,
        "stats": {
            "bucket": config.bucket,
            "prefix": config.prefix,
            "dst_root": config.output_dir,
            "dry_run": config.dry_run,
            "total": len(objects),
            "downloaded": len(downloaded),
            "bytes": total_bytes,
        },
    }
