"""Run tree builds in one-shot worker processes."""

import asyncio
import logging
import threading
from concurrent.futures import Future, ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from pathlib import Path
from typing import Callable, Optional, Union

from diskbin.errors import DiskbinError, NotFound, ScanFailed
from diskbin.models import DiskNode
from diskbin.scanner import DEFAULT_DEPTH, scan_directory_for_viz

logger = logging.getLogger(__name__)

ScanWorker = Callable[[str, int, dict], dict]


def run_scan(path: str, depth: int, options: dict) -> dict:
    """Worker entry point: build the tree and return it as one plain message."""
    return scan_directory_for_viz(path, depth, **options).to_dict()


def validate_scan_request(path: Union[str, Path], depth: int) -> str:
    """
    Check a scan request before a worker is spawned for it.

    Returns:
        The resolved absolute path

    Raises:
        NotFound: Path is empty or does not exist
        ValueError: Depth is negative
    """
    if not str(path).strip():
        raise NotFound("Invalid directory path")
    if depth < 0:
        raise ValueError(f"Scan depth must be >= 0, got {depth}")

    target = Path(path).expanduser()
    if not target.exists():
        raise NotFound(f"No such file or directory: {target}", str(target))
    return str(target.resolve())


class ScanExecutor:
    """
    Spawns one isolated worker process per scan request.

    Each worker gets its own copy of the request, delivers exactly one result
    and is torn down afterwards. Scans cannot be cancelled; a caller that no
    longer wants a result simply ignores the future.
    """

    def __init__(self, worker: ScanWorker = run_scan, mp_context=None):
        self._worker = worker
        self._mp_context = mp_context
        self._lock = threading.Lock()
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        """Number of scans submitted but not yet delivered."""
        with self._lock:
            return self._in_flight

    def submit(self, path: Union[str, Path], depth: int = DEFAULT_DEPTH, **options) -> "Future[DiskNode]":
        """
        Start a scan and return immediately.

        Args:
            path: Directory (or file) to scan
            depth: Directory levels to expand
            **options: Extra tree builder keyword arguments

        Returns:
            Future resolving to the root DiskNode, or failing with ScanFailed
        """
        target = validate_scan_request(path, depth)

        result: Future = Future()
        result.set_running_or_notify_cancel()

        with self._lock:
            self._in_flight += 1

        thread = threading.Thread(
            target=self._run,
            args=(result, target, depth, dict(options)),
            name=f"diskbin-scan-{Path(target).name or 'root'}",
            daemon=True,
        )
        thread.start()
        return result

    def _run(self, result: Future, target: str, depth: int, options: dict) -> None:
        logger.debug("Scan started: %s (depth %d)", target, depth)
        node: Optional[DiskNode] = None
        error: Optional[BaseException] = None
        try:
            with ProcessPoolExecutor(max_workers=1, mp_context=self._mp_context) as pool:
                payload = pool.submit(self._worker, target, depth, options).result()
            node = DiskNode.model_validate(payload)
        except BrokenProcessPool:
            logger.warning("Scan worker for %s exited abnormally", target)
            error = ScanFailed(f"Scan worker for {target} exited abnormally", target)
        except DiskbinError as e:
            error = e
        except Exception as e:
            logger.warning("Scan of %s failed: %s", target, e)
            error = ScanFailed(f"Scan of {target} failed: {e}", target)

        with self._lock:
            self._in_flight -= 1

        if error is not None:
            result.set_exception(error)
        else:
            logger.debug("Scan finished: %s (%d bytes)", target, node.value)
            result.set_result(node)


def scan_for_visualization(
    path: Union[str, Path],
    depth: int = DEFAULT_DEPTH,
    *,
    timeout: Optional[float] = None,
    executor: Optional[ScanExecutor] = None,
    **options,
) -> DiskNode:
    """
    Scan a path in a worker process and wait for the tree.

    The timeout only bounds how long the caller waits; the worker itself
    keeps running until it finishes.
    """
    executor = executor or ScanExecutor()
    return executor.submit(path, depth, **options).result(timeout=timeout)


async def scan_async(
    path: Union[str, Path],
    depth: int = DEFAULT_DEPTH,
    *,
    executor: Optional[ScanExecutor] = None,
    **options,
) -> DiskNode:
    """Awaitable variant of scan_for_visualization."""
    executor = executor or ScanExecutor()
    return await asyncio.wrap_future(executor.submit(path, depth, **options))
