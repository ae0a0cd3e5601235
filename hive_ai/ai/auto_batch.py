"""
Auto-batching of concurrent scoring requests.

Many callers (e.g. parallel search workers) score boards one at a time. The
dispatcher collects their requests into batches so the model runs once per
batch instead of once per board.

A single coordinator thread reads one ordered queue of tagged messages:

- ScoreMessage: append the request to the accumulating batch (starting one
  if needed). When the batch reaches its target size it is handed to a
  thread pool as an independent task and the coordinator goes back to idle.
- BatchSizeMessage: change the target size of batches started afterwards.
- FlushMessage: hand over the accumulating batch even if it is not full.
- StopMessage: flush and exit.

Each batch task runs the model and resolves every request's Future exactly
once, with the result or with the exception raised while scoring. A caller
only ever waits on its own Future, and may cancel it until its batch starts
running. Batches may complete out of order.
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, Union

import numpy as np

from ..errors import InternalConsistencyError
from ..metrics import AUTO_BATCH_TARGET_SIZE
from .model_adapter import ActionRows, FlatFeatureBatch

logger = logging.getLogger(__name__)

ScoreResult = Tuple[float, np.ndarray]
BatchExecutor = Callable[[FlatFeatureBatch], Tuple[List[float], List[np.ndarray]]]


@dataclass
class ScoringRequest:
    """One pending scoring call; ``future`` resolves to (value, action_probs)."""
    board_features: np.ndarray
    action_rows: ActionRows
    future: Future = field(default_factory=Future)

    @property
    def num_actions(self) -> int:
        return len(self.action_rows)


@dataclass(frozen=True)
class ScoreMessage:
    request: ScoringRequest


@dataclass(frozen=True)
class BatchSizeMessage:
    size: int


@dataclass(frozen=True)
class FlushMessage:
    pass


@dataclass(frozen=True)
class StopMessage:
    pass


DispatcherMessage = Union[ScoreMessage, BatchSizeMessage, FlushMessage, StopMessage]


class AutoBatch:
    """Requests accumulated for one model call, in submission order."""

    def __init__(self, target_size: int):
        self.target_size = target_size
        self.requests: List[ScoringRequest] = []
        self.features = FlatFeatureBatch()

    def append(self, request: ScoringRequest) -> None:
        self.requests.append(request)
        self.features.add(request.board_features, request.action_rows)

    def __len__(self) -> int:
        return len(self.requests)

    def is_full(self) -> bool:
        return len(self.requests) >= self.target_size


class AutoBatchDispatcher:
    """Coordinator that turns concurrent requests into model batches."""

    def __init__(
        self,
        execute: BatchExecutor,
        batch_size: int = 1,
        max_workers: Optional[int] = None,
        name: str = "hive-auto-batch",
    ) -> None:
        self._execute = execute
        self._name = name
        self._target_size = max(1, int(batch_size))
        self._queue: queue.Queue[DispatcherMessage] = queue.Queue()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=f"{name}-worker"
        )
        self._closed = False
        self._close_lock = threading.Lock()

        self.batches_dispatched = 0
        AUTO_BATCH_TARGET_SIZE.set(self._target_size)

        self._thread = threading.Thread(target=self._run, name=f"{name}-dispatcher", daemon=True)
        self._thread.start()

    @property
    def batch_size(self) -> int:
        """Target size the coordinator currently applies to new batches."""
        return self._target_size

    # -- caller side ---------------------------------------------------------

    def submit(self, request: ScoringRequest) -> Future:
        with self._close_lock:
            if self._closed:
                raise RuntimeError(f"{self._name} dispatcher is shut down")
            self._queue.put(ScoreMessage(request))
        return request.future

    def score(self, board_features: np.ndarray, action_rows: ActionRows) -> ScoreResult:
        """Submit one board and block until its batch has been scored."""
        request = ScoringRequest(board_features=board_features, action_rows=action_rows)
        return self.submit(request).result()

    def set_batch_size(self, batch_size: int) -> None:
        """Change the target size of future batches; values < 1 become 1."""
        self._queue.put(BatchSizeMessage(max(1, int(batch_size))))

    def flush(self) -> None:
        """Dispatch the accumulating batch now, even if it is not full."""
        self._queue.put(FlushMessage())

    def close(self, wait: bool = True) -> None:
        """Flush pending requests, stop the coordinator and the workers."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(StopMessage())
        self._thread.join()
        self._executor.shutdown(wait=wait)

    # -- coordinator ---------------------------------------------------------

    def _run(self) -> None:
        logger.debug(f"Started auto-batch dispatcher [{self._name}]")
        batch: Optional[AutoBatch] = None
        while True:
            message = self._queue.get()
            if isinstance(message, ScoreMessage):
                if batch is None:
                    batch = AutoBatch(self._target_size)
                batch.append(message.request)
                if batch.is_full():
                    self._dispatch(batch)
                    batch = None
            elif isinstance(message, BatchSizeMessage):
                self._target_size = message.size
                AUTO_BATCH_TARGET_SIZE.set(message.size)
                logger.debug(f"[{self._name}] batch size changed to {message.size}")
            elif isinstance(message, FlushMessage):
                if batch is not None:
                    self._dispatch(batch)
                    batch = None
            elif isinstance(message, StopMessage):
                if batch is not None:
                    self._dispatch(batch)
                break
        logger.debug(f"Stopped auto-batch dispatcher [{self._name}]")

    def _dispatch(self, batch: AutoBatch) -> None:
        self.batches_dispatched += 1
        self._executor.submit(self._score_and_deliver, batch)

    def _score_and_deliver(self, batch: AutoBatch) -> None:
        # Callers may have cancelled while the batch was accumulating; those
        # futures must not be resolved again.
        alive = [request.future.set_running_or_notify_cancel() for request in batch.requests]
        if not any(alive):
            logger.debug(f"[{self._name}] every request of a batch of {len(batch)} was cancelled")
            return
        try:
            values, action_probs = self._execute(batch.features)
            if len(values) != len(batch) or len(action_probs) != len(batch):
                raise InternalConsistencyError(
                    f"Batch of {len(batch)} requests got {len(values)} values and "
                    f"{len(action_probs)} action probability lists",
                    expected=len(batch),
                    actual=len(values),
                )
        except Exception as e:
            logger.error(f"[{self._name}] batch of {len(batch)} failed: {e}")
            for request, is_alive in zip(batch.requests, alive):
                if is_alive:
                    request.future.set_exception(e)
            return
        for request, is_alive, value, probs in zip(batch.requests, alive, values, action_probs):
            if is_alive:
                request.future.set_result((value, probs))
