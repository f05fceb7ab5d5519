import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable

from clipvault.errors import ClipvaultError, UpstreamError

logger = logging.getLogger(__name__)


class UpstreamGuard:
    """Runs blob store and OCR calls with a bounded wait.

    A call that outlives the timeout keeps running on its worker thread;
    the caller stops waiting and gets an UpstreamError.
    """

    def __init__(self, timeout: float = 10.0, max_workers: int = 16) -> None:
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="clipvault-upstream")

    def call(self, fn: Callable[..., Any], *args: Any, operation: str = "upstream call") -> Any:
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            logger.warning(f"{operation} timed out after {self.timeout}s")
            raise UpstreamError(f"{operation} timed out")
        except ClipvaultError:
            raise
        except Exception as e:
            raise UpstreamError(f"{operation} failed: {e}")

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
