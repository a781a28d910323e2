"""
Base class for background workers with a bounded snapshot queue.
The worker thread does all I/O and processing; readers take lock-free
snapshots of the latest published state.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from config import (
    CODRIVER_BACKOFF_INITIAL_S,
    CODRIVER_BACKOFF_MAX_S,
    CODRIVER_BACKOFF_MULTIPLIER,
    CODRIVER_SNAPSHOT_QUEUE_DEPTH,
    CODRIVER_THREAD_JOIN_TIMEOUT_S,
)

logger = logging.getLogger('tramo.worker')


class ExponentialBackoff:
    """
    Tracks consecutive failures of an operation and the delay before retrying.

    The first failure waits initial_delay; each further failure multiplies
    the delay by multiplier, capped at max_delay. A success resets it.
    """

    def __init__(
        self,
        initial_delay: float = CODRIVER_BACKOFF_INITIAL_S,
        multiplier: float = CODRIVER_BACKOFF_MULTIPLIER,
        max_delay: float = CODRIVER_BACKOFF_MAX_S,
    ):
        self.initial_delay = initial_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self._failures = 0
        self._delay = 0.0
        self._retry_at = 0.0

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def current_delay(self) -> float:
        return self._delay

    def record_failure(self, now: Optional[float] = None):
        """Record a failure and schedule the next allowed attempt."""
        now = time.monotonic() if now is None else now
        self._failures += 1
        if self._failures == 1:
            self._delay = self.initial_delay
        else:
            self._delay = min(self._delay * self.multiplier, self.max_delay)
        self._retry_at = now + self._delay

    def record_success(self):
        """Record a success, clearing any backoff."""
        self.reset()

    def reset(self):
        """Clear failure count and delay."""
        self._failures = 0
        self._delay = 0.0
        self._retry_at = 0.0

    def should_skip(self, now: Optional[float] = None) -> bool:
        """True while still inside the backoff delay."""
        if self._failures == 0:
            return False
        now = time.monotonic() if now is None else now
        return now < self._retry_at


@dataclass(frozen=True)
class Snapshot:
    """
    Immutable snapshot of worker state for lock-free access.
    """
    timestamp: float
    data: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


class BoundedQueueWorker:
    """
    Base class for workers implementing the bounded queue pattern.

    Key features:
    - Bounded queue (depth 2: 1 current + 1 buffer), oldest snapshot dropped when full
    - Lock-free snapshots for readers
    - Worker thread handles all I/O and processing
    """

    def __init__(self, queue_depth: int = CODRIVER_SNAPSHOT_QUEUE_DEPTH):
        """
        Initialise the worker.

        Args:
            queue_depth: Maximum queue depth (default 2 for double-buffering)
        """
        self.queue_depth = queue_depth
        self.data_queue = queue.Queue(maxsize=queue_depth)
        self.current_snapshot: Optional[Snapshot] = None
        self.running = False
        self.thread: Optional[threading.Thread] = None

        self.frame_count = 0
        self.last_perf_time = time.time()
        self.update_hz = 0.0

        self._frames_dropped = 0
        self._frames_dropped_total = 0
        self._last_drop_log_time = time.time()

    def start(self):
        """Start the worker thread."""
        if self.running:
            return

        self.running = True
        self.thread = threading.Thread(target=self._worker_loop, daemon=True)
        self.thread.start()
        logger.info("%s worker thread started", self.__class__.__name__)

    def stop(self):
        """Stop the worker thread."""
        self.running = False
        if self.thread and self.thread is not threading.current_thread():
            self.thread.join(timeout=CODRIVER_THREAD_JOIN_TIMEOUT_S)
        self.thread = None
        logger.info("%s worker thread stopped", self.__class__.__name__)

    def _worker_loop(self):
        """
        Worker thread loop - handles all I/O and processing.
        Override this method in subclasses.
        """
        raise NotImplementedError("Subclasses must implement _worker_loop")

    def _publish_snapshot(self, data: Dict[str, Any], metadata: Dict[str, Any] = None):
        """
        Publish a new snapshot to the queue.

        Args:
            data: State dictionary
            metadata: Optional metadata (status, errors, etc.)
        """
        snapshot = Snapshot(
            timestamp=time.time(),
            data=data.copy() if data else {},
            metadata=metadata.copy() if metadata else {}
        )

        # Non-blocking put - drop oldest if queue full
        try:
            self.data_queue.put_nowait(snapshot)
        except queue.Full:
            try:
                self.data_queue.get_nowait()
                self.data_queue.put_nowait(snapshot)
            except (queue.Empty, queue.Full):
                pass
            self._frames_dropped += 1
            self._frames_dropped_total += 1

        self.frame_count += 1
        current_time = time.time()
        elapsed = current_time - self.last_perf_time
        if elapsed >= 1.0:
            self.update_hz = self.frame_count / elapsed
            self.frame_count = 0
            self.last_perf_time = current_time

        if current_time - self._last_drop_log_time >= 60.0:
            if self._frames_dropped > 0:
                logger.warning(
                    "%s: %d snapshots dropped in last 60s (total: %d)",
                    self.__class__.__name__,
                    self._frames_dropped,
                    self._frames_dropped_total,
                )
            self._frames_dropped = 0
            self._last_drop_log_time = current_time

    def get_snapshot(self) -> Optional[Snapshot]:
        """
        Get the latest snapshot (lock-free).

        Returns:
            Snapshot or None if nothing published yet
        """
        try:
            while True:
                self.current_snapshot = self.data_queue.get_nowait()
        except queue.Empty:
            pass

        return self.current_snapshot

    def get_data(self) -> Dict[str, Any]:
        """Latest snapshot data, or an empty dict."""
        snapshot = self.get_snapshot()
        return snapshot.data if snapshot else {}

    def get_update_rate(self) -> float:
        return self.update_hz

    def get_frame_drop_stats(self) -> Dict[str, int]:
        """
        Get dropped snapshot statistics.

        Returns:
            Dictionary with 'recent' (last 60s) and 'total' drop counts
        """
        return {
            "recent": self._frames_dropped,
            "total": self._frames_dropped_total
        }
