"""
Deferred embedding generation for stored messages.

Messages can be written without an embedding and filled in later by a worker.
Delivery is at-least-once up to `max_attempts`: a failed job is put back on the
queue by a timer after its backoff, so workers keep draining other jobs in the
meantime. `fill_embedding` only writes a message that has no embedding yet, so a
repeated delivery is harmless.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from queue import Queue
from typing import List, Optional, Set

from ..utils.bedrock_llm import ModelServiceError
from ..utils.logging_config import get_logger
from ..utils.model_service import BedrockModelService
from ..utils.neptune_client import StorageError
from .memory_repository import MemoryRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class EmbeddingJob:
    message_id: str
    content: str
    attempt: int = 0


class EmbeddingQueue(ABC):
    """Deferred-work interface for filling in message embeddings."""

    @abstractmethod
    def submit(self, message_id: str, content: str) -> bool:
        """Queue a message for embedding. Returns False if the job was not accepted."""
        raise NotImplementedError

    @abstractmethod
    def join(self) -> None:
        """Block until every accepted job has been processed or abandoned."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError


class ThreadedEmbeddingQueue(EmbeddingQueue):
    """In-process queue drained by daemon worker threads."""

    def __init__(self,
                 model: BedrockModelService,
                 repository: MemoryRepository,
                 workers: int = 1,
                 max_attempts: int = 3,
                 retry_delay: float = 1.0):
        self.model = model
        self.repository = repository
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay

        self._queue: Queue = Queue()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending: Set[str] = set()
        self._closed = False
        self._threads: List[threading.Thread] = []
        for index in range(max(1, workers)):
            thread = threading.Thread(target=self._worker, name=f'embedding-worker-{index}', daemon=True)
            thread.start()
            self._threads.append(thread)

        logger.info(f'Embedding pipeline initialized with {len(self._threads)} worker(s)')

    def submit(self, message_id: str, content: str) -> bool:
        if not message_id or not content or not content.strip():
            return False

        with self._lock:
            if self._closed or message_id in self._pending:
                return False
            self._pending.add(message_id)
            self._queue.put(EmbeddingJob(message_id=message_id, content=content))
        return True

    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def join(self) -> None:
        # Covers jobs waiting on a retry timer, which are off the queue
        with self._idle:
            self._idle.wait_for(lambda: not self._pending)

    def close(self, timeout: Optional[float] = None) -> None:
        """Stop accepting jobs, let workers finish what is queued, then stop them."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.join()
        for _ in self._threads:
            self._queue.put(None)
        for thread in self._threads:
            thread.join(timeout)

    def _worker(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is None:
                    return
                self._process(job)
            except Exception:  # keep the worker alive whatever a job does
                logger.exception('Error in embedding worker loop')
                if job is not None:
                    self._finish(job)
            finally:
                self._queue.task_done()

    def _process(self, job: EmbeddingJob) -> None:
        try:
            embedding = self.model.embed(job.content)
            self.repository.fill_embedding(job.message_id, embedding)
        except (ModelServiceError, StorageError) as e:
            attempt = job.attempt + 1
            if attempt < self.max_attempts:
                delay = self.retry_delay * (2**job.attempt)
                logger.warning(f'Embedding for message {job.message_id} failed '
                               f'(attempt {attempt}/{self.max_attempts}), retrying in {delay:.2f}s: {e}')
                timer = threading.Timer(delay, self._queue.put, args=(replace(job, attempt=attempt), ))
                timer.daemon = True
                timer.start()
                return
            logger.error(f'Giving up on embedding for message {job.message_id} after {attempt} attempts: {e}')
            self._finish(job)
            return

        logger.debug(f'Generated and stored embedding for message {job.message_id}')
        self._finish(job)

    def _finish(self, job: EmbeddingJob) -> None:
        with self._idle:
            self._pending.discard(job.message_id)
            self._idle.notify_all()
