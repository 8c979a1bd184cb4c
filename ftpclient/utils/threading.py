"""Background task helpers for the FTP transfer client.

Provides a bounded worker pool with per-task completion handles, used to
run the file transfers of one directory level in parallel.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, List, Optional, TypeVar


T = TypeVar("T")

logger = logging.getLogger("ftpclient.threading")


class TaskStatus(Enum):
    """Status of a background task."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class TaskResult(Generic[T]):
    """Result of a background task."""
    status: TaskStatus
    result: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.status == TaskStatus.COMPLETED


class TaskHandle(Generic[T]):
    """
    Completion handle for one task submitted to a WorkerPool.

    Usage:
        handle = pool.submit(upload_one, path)
        result = handle.wait()
        if not result.ok:
            raise result.error
    """

    def __init__(self, target: Callable[..., T], args: tuple = (), kwargs: Optional[dict] = None):
        self._target = target
        self._args = args
        self._kwargs = kwargs or {}
        self._done = threading.Event()
        self._state_lock = threading.Lock()
        self._status = TaskStatus.PENDING
        self._result: Optional[TaskResult[T]] = None

    @property
    def status(self) -> TaskStatus:
        """Current task status."""
        return self._status

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def _run(self, resource: Any) -> None:
        """Run the task on a worker thread with the worker's resource."""
        with self._state_lock:
            if self._status != TaskStatus.PENDING:
                return
            self._status = TaskStatus.RUNNING
        try:
            result = self._target(resource, *self._args, **self._kwargs)
            self._finish(TaskResult(status=TaskStatus.COMPLETED, result=result))
        except Exception as e:
            self._finish(TaskResult(status=TaskStatus.FAILED, error=e))

    def _finish(self, result: TaskResult[T]) -> None:
        self._result = result
        self._status = result.status
        self._done.set()

    def _reject(self, error: Exception) -> None:
        with self._state_lock:
            if self._status == TaskStatus.PENDING:
                self._finish(TaskResult(status=TaskStatus.FAILED, error=error))

    def cancel(self) -> None:
        """Mark a task that has not started as cancelled; it will not run."""
        with self._state_lock:
            if self._status == TaskStatus.PENDING:
                self._finish(TaskResult(status=TaskStatus.CANCELLED))

    def wait(self, timeout: Optional[float] = None) -> TaskResult[T]:
        """
        Wait for task completion and return result.

        Args:
            timeout: Maximum time to wait (None = forever)

        Returns:
            TaskResult with status and result/error

        Raises:
            TimeoutError: If timeout expires before task completes
        """
        if not self._done.wait(timeout):
            raise TimeoutError("Task did not complete within timeout")
        return self._result


# Queue item telling a worker to exit
_STOP = object()


class WorkerPool:
    """
    Fixed set of worker threads pulling tasks from a bounded queue.

    Each worker owns one resource for its lifetime (an FTP session in
    practice), created by resource_factory when the worker starts and
    passed as the first argument to every task it runs. At most
    max_workers tasks run at the same time.

    Usage:
        with WorkerPool(4, session.clone, lambda s: s.disconnect()) as pool:
            handles = [pool.submit(transfer, name) for name in names]
            results = [h.wait() for h in handles]
    """

    def __init__(
        self,
        max_workers: int,
        resource_factory: Callable[[], Any] = lambda: None,
        resource_close: Optional[Callable[[Any], None]] = None,
        queue_size: Optional[int] = None,
    ):
        """
        Initialize the pool. Workers start on the first submit().

        Args:
            max_workers: Number of worker threads (at least 1)
            resource_factory: Creates the per-worker resource
            resource_close: Releases a worker's resource when it exits
            queue_size: Bound of the task queue (default 2 * max_workers)
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self._max_workers = max_workers
        self._factory = resource_factory
        self._close = resource_close
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size or 2 * max_workers)
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._shutdown = False
        self._alive = 0
        self._active = 0
        self._peak_active = 0

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @property
    def peak_active(self) -> int:
        """Highest number of tasks observed running at once."""
        return self._peak_active

    def _start_workers(self) -> None:
        self._alive = self._max_workers
        for index in range(self._max_workers):
            thread = threading.Thread(
                target=self._worker, name=f"ftpclient-worker-{index}", daemon=True
            )
            thread.start()
            self._threads.append(thread)

    def _worker(self) -> None:
        """Worker loop: build the resource, then run tasks until stopped."""
        try:
            resource = self._factory()
        except Exception as e:
            with self._lock:
                retire = self._alive > 1
                if retire:
                    self._alive -= 1
            if retire:
                logger.warning(f"Worker could not start, continuing with fewer workers: {e}")
                return
            logger.error(f"No worker could start: {e}")
            self._drain_failed(e)
            return

        try:
            while True:
                item = self._queue.get()
                if item is _STOP:
                    break
                with self._lock:
                    self._active += 1
                    self._peak_active = max(self._peak_active, self._active)
                try:
                    item._run(resource)
                finally:
                    with self._lock:
                        self._active -= 1
        finally:
            if self._close is not None and resource is not None:
                try:
                    self._close(resource)
                except Exception as e:
                    logger.debug(f"Error releasing worker resource: {e}")

    def _drain_failed(self, error: Exception) -> None:
        """Fail every queued task; runs on the last worker when none could start."""
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            item._reject(error)

    def submit(self, target: Callable[..., T], *args, **kwargs) -> TaskHandle[T]:
        """
        Queue a task; blocks while the queue is full.

        Args:
            target: Callable run as target(resource, *args, **kwargs)

        Returns:
            TaskHandle to wait on
        """
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Worker pool is shut down")
            if not self._threads:
                self._start_workers()
        handle: TaskHandle[T] = TaskHandle(target, args, kwargs)
        self._queue.put(handle)
        return handle

    def shutdown(self, wait: bool = True) -> None:
        """Stop the workers once the queued tasks are done."""
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
            threads = list(self._threads)
            alive = self._alive
        for _ in range(alive):
            self._queue.put(_STOP)
        if wait:
            for thread in threads:
                thread.join()

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()
