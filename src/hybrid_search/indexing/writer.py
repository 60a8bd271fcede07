"""Batched embedding and upsert of documents into the vector store.

Documents are split into fixed-size batches that a small pool of workers
drains from an explicit work queue. A batch that fails is split in half and
both halves go back on the queue, up to ``max_split_depth`` times; after
that the failure is recorded for the batch and ingestion moves on.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from hybrid_search.clients.base import Embedder, VectorStore
from hybrid_search.errors import PermanentRequestError
from hybrid_search.indexing.corpus import generate_doc_id
from hybrid_search.resilience.circuit_breaker import CircuitBreaker
from hybrid_search.resilience.retry import RetryOptions, retry_call
from hybrid_search.retrieval.types import BatchFailure, Document, UpsertReport, VectorRecord
from hybrid_search.utils.metrics import record_upsert_batch, set_circuit_state

logger = logging.getLogger(__name__)


@dataclass
class _Batch:
    index: int
    documents: list[Document]
    depth: int = 0


class BatchUpsertWriter:
    """Writes documents to the vector store in bounded, concurrent batches.

    Example:
        >>> writer = BatchUpsertWriter(store, embedder, breaker)
        >>> report = await writer.write(documents, namespace="reports")
        >>> report.failures
        []
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        breaker: CircuitBreaker,
        retry_options: RetryOptions | None = None,
        batch_size: int = 15,
        concurrency: int = 4,
        max_split_depth: int = 2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize writer.

        Args:
            store: Vector store to upsert into.
            embedder: Document embedder.
            breaker: Circuit breaker guarding the store.
            retry_options: Retry configuration for embedding and upsert calls.
            batch_size: Documents per batch.
            concurrency: Batches processed at the same time.
            max_split_depth: Times a failing batch may be halved.
            sleep: Backoff sleep (injectable for tests).
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.store = store
        self.embedder = embedder
        self.breaker = breaker
        self.retry_options = retry_options or RetryOptions()
        self.batch_size = batch_size
        self.concurrency = max(1, concurrency)
        self.max_split_depth = max_split_depth
        self._sleep = sleep

    async def write(self, documents: list[Document], namespace: str | None = None) -> UpsertReport:
        """Embed and upsert documents.

        Args:
            documents: Documents to write (ids generated where missing).
            namespace: Target namespace.

        Returns:
            Report with the number written and any per-batch failures.
        """
        documents = [
            doc if doc.id else doc.model_copy(update={"id": generate_doc_id(doc, i)})
            for i, doc in enumerate(documents)
        ]
        queue: asyncio.Queue[_Batch] = asyncio.Queue()
        for i, start in enumerate(range(0, len(documents), self.batch_size)):
            queue.put_nowait(_Batch(index=i, documents=documents[start : start + self.batch_size]))
        report = UpsertReport(
            namespace=namespace, total_documents=len(documents), batches=queue.qsize()
        )
        if queue.empty():
            return report

        logger.info(
            f"Upserting {len(documents)} documents into namespace '{namespace}' "
            f"in {queue.qsize()} batches"
        )

        # Workers stay up until every batch, including re-queued halves, is done
        async def worker() -> None:
            while True:
                batch = await queue.get()
                try:
                    written = await self._write_batch(batch.documents, namespace)
                except Exception as e:
                    record_upsert_batch(success=False, documents=len(batch.documents))
                    self._handle_failure(batch, e, queue, report)
                else:
                    record_upsert_batch(success=True, documents=written)
                    report.upserted += written
                finally:
                    queue.task_done()

        workers = [
            asyncio.create_task(worker())
            for _ in range(min(self.concurrency, len(documents)))
        ]
        try:
            await queue.join()
        finally:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        if report.failures:
            logger.warning(
                f"Upsert finished with {len(report.failures)} failed batches "
                f"({report.failed} documents)"
            )
        return report

    def _handle_failure(
        self, batch: _Batch, error: Exception, queue: asyncio.Queue[_Batch], report: UpsertReport
    ) -> None:
        if batch.depth < self.max_split_depth and len(batch.documents) > 1:
            middle = len(batch.documents) // 2
            logger.warning(
                f"Batch {batch.index} ({len(batch.documents)} docs, depth {batch.depth}) "
                f"failed, splitting: {error}"
            )
            for half in (batch.documents[:middle], batch.documents[middle:]):
                queue.put_nowait(
                    _Batch(index=batch.index, documents=half, depth=batch.depth + 1)
                )
            return

        logger.error(f"Batch {batch.index} failed permanently: {error}")
        report.failures.append(
            BatchFailure(
                batch_index=batch.index,
                document_ids=[doc.id or "" for doc in batch.documents],
                error=str(error),
            )
        )

    async def _write_batch(self, documents: list[Document], namespace: str | None) -> int:
        texts = [doc.content for doc in documents]
        vectors, _ = await retry_call(
            lambda: self.embedder.embed_batch(texts, is_query=False),
            self.retry_options,
            sleep=self._sleep,
        )
        if len(vectors) != len(documents):
            raise PermanentRequestError(
                f"Embedder returned {len(vectors)} vectors for {len(documents)} documents"
            )

        records = [
            VectorRecord(
                id=doc.id or "", content=doc.content, metadata=doc.metadata, vector=vector
            )
            for doc, vector in zip(documents, vectors, strict=True)
        ]

        async def upsert() -> int:
            written, _ = await retry_call(
                lambda: self.store.upsert(records, namespace),
                self.retry_options,
                sleep=self._sleep,
            )
            return written

        try:
            return await self.breaker.call(upsert)
        finally:
            set_circuit_state(self.breaker.state.value)
