#!/usr/bin/env python3
"""
Checkpointed batch scheduler.

Drives a document set through the device pool:

    Idle -> Resuming -> Dispatching(batch) -> Collecting(batch) -> Persisting
         -> Dispatching(next batch) | Done

1. Resuming: load the checkpoint, skip the documents it accounts for
   (``fingerprint_count`` once the prefix fingerprint matches, otherwise
   ``batches_completed * batch_size``)
2. Dispatching: cut the rest into batches; item ``i`` of a batch goes to the
   queue of device ``i mod N``, where one worker thread per device takes
   items one at a time, holds the device for the item's whole unit loop and
   records one ChunkResult per prompt unit
3. Collecting: wait until every item of the batch is finished (barrier)
4. Persisting: hand the documents to the sink, advance and save the
   checkpoint, then continue while the processing limit isn't reached

Inference failures are recorded as ``success=False`` results and never stop
the batch. Sink and checkpoint write failures are logged and the run goes on;
a crash before the next successful save only means the batch is redone.
"""

import logging
import queue
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from passagepipe.core.types import ChunkResult, Document, DocumentResult
from passagepipe.pipeline.chunker import TextChunker
from passagepipe.pipeline.sinks import ResultSink
from passagepipe.pipeline.tasks import TASKS, Task
from passagepipe.utils.checkpoint import (
    Checkpoint, fingerprint_ids, load_checkpoint, save_checkpoint,
)
from passagepipe.utils.device import DevicePool
from passagepipe.utils.progress import (
    BATCH_DONE, DOCUMENT_DONE, DOCUMENT_START, RUN_DONE, RUN_START, UNIT_DONE,
    NullReporter, ProgressEvent, ProgressReporter,
)

logger = logging.getLogger(__name__)

_STOP = object()


class SchedulerState(str, Enum):
    IDLE = "idle"
    RESUMING = "resuming"
    DISPATCHING = "dispatching"
    COLLECTING = "collecting"
    PERSISTING = "persisting"
    DONE = "done"


@dataclass
class RunSummary:
    """What a scheduler run did."""
    total_documents: int = 0
    to_process: int = 0
    resumed_from: int = 0
    batches_processed: int = 0
    documents_processed: int = 0
    units_total: int = 0
    units_failed: int = 0
    documents_failed: int = 0
    checkpoint: Optional[Checkpoint] = None
    document_results: List[DocumentResult] = field(default_factory=list)

    @property
    def processed_names(self) -> List[str]:
        return [r.name for r in self.document_results]


class BatchScheduler:
    """Resumable, device-parallel batch loop.

    Args:
        pool: Devices with their loaded inference backends
        chunker: Splits documents into prompt units
        checkpoint_path: JSON checkpoint file
        task: Split mode, system message and prompt rendering
        sink: Receives finished documents once per batch (None = discard)
        defaults: Checkpoint used when no valid checkpoint file exists; its
            ``batch_size`` and ``item_limit`` come from configuration
        reporter: Progress events target (None = no reporting)
        queue_size: Bound of each per-device work queue (default: batch size)
        keep_results: Keep every DocumentResult in the returned summary
    """

    def __init__(self, pool: DevicePool, chunker: TextChunker,
                 checkpoint_path: Union[str, Path], task: Task = TASKS["prompt"],
                 sink: Optional[ResultSink] = None, defaults: Optional[Checkpoint] = None,
                 reporter: Optional[ProgressReporter] = None, queue_size: Optional[int] = None,
                 keep_results: bool = False):
        self.pool = pool
        self.chunker = chunker
        self.checkpoint_path = Path(checkpoint_path)
        self.task = task
        self.sink = sink
        self.defaults = defaults or Checkpoint()
        self.reporter = reporter or NullReporter()
        self.queue_size = queue_size
        self.keep_results = keep_results
        self.state = SchedulerState.IDLE
        self.checkpoint: Optional[Checkpoint] = None

    # =========================================================================
    # RESUME
    # =========================================================================

    def _resume(self, documents: Sequence[Document]) -> Tuple[Checkpoint, int]:
        """Load the checkpoint and work out how many documents to skip."""
        self.state = SchedulerState.RESUMING
        checkpoint = load_checkpoint(self.checkpoint_path, self.defaults)
        # a configured limit wins over the stored one; batch size never changes mid-run
        if self.defaults.item_limit is not None:
            checkpoint.item_limit = self.defaults.item_limit
        already_done = checkpoint.items_done

        if already_done and checkpoint.fingerprint is not None:
            hashed = checkpoint.fingerprint_count
            if hashed is None:
                hashed = min(already_done, len(documents))
            ids = [d.id for d in documents[:hashed]]
            if len(ids) < hashed or fingerprint_ids(ids) != checkpoint.fingerprint:
                logger.warning(
                    f"Checkpoint {self.checkpoint_path} was written for a different document "
                    f"order or set; ignoring its {checkpoint.batches_completed} completed "
                    f"batches and starting over"
                )
                checkpoint.batches_completed = 0
                checkpoint.fingerprint = None
                checkpoint.fingerprint_count = None
                already_done = 0
            else:
                # documents appended after a partial last batch start right after it
                already_done = hashed

        if already_done:
            logger.info(
                f"Resuming after {checkpoint.batches_completed} batches: "
                f"skipping {min(already_done, len(documents))} documents"
            )
        return checkpoint, already_done

    # =========================================================================
    # ITEM PROCESSING (worker threads)
    # =========================================================================

    def _process_item(self, device_index: int, document: Document) -> DocumentResult:
        """Run every prompt unit of one document on one device."""
        doc_result = DocumentResult(document=document, device_index=device_index)

        with self.pool.acquire(device_index) as handle:
            try:
                units = self.chunker.split(document, self.task.split_mode)
            except Exception as e:
                logger.error(f"Failed splitting {document.name}: {e}")
                doc_result.error = f"split failed: {e}"
                return doc_result

            self.reporter.post(ProgressEvent(DOCUMENT_START, name=document.name, total=len(units),
                                             device=device_index))
            for unit in units:
                prompt = self.task.render(document, unit)
                try:
                    output = handle.backend.run(prompt, self.task.system_message)
                    if not isinstance(output, str):
                        raise TypeError(f"backend returned {type(output).__name__}, expected str")
                    result = ChunkResult(source_text=unit, output_text=output, success=True)
                except Exception as e:
                    logger.warning(f"Inference failed for a unit of {document.name} on {handle.device}: {e}")
                    result = ChunkResult(source_text=unit, output_text=str(e), success=False)
                doc_result.results.append(result)
                self.reporter.post(ProgressEvent(UNIT_DONE, name=document.name, success=result.success,
                                                 device=device_index))
            self.reporter.post(ProgressEvent(DOCUMENT_DONE, name=document.name, count=len(units),
                                             device=device_index))

        return doc_result

    def _device_worker(self, device_index: int, work: "queue.Queue") -> List[Tuple[int, DocumentResult]]:
        done = []
        while True:
            item = work.get()
            if item is _STOP:
                return done
            position, document = item
            done.append((position, self._process_item(device_index, document)))

    # =========================================================================
    # BATCH
    # =========================================================================

    def _run_batch(self, executor: ThreadPoolExecutor, batch: Sequence[Document]) -> List[DocumentResult]:
        """Process one batch in parallel and return results in batch order."""
        self.state = SchedulerState.DISPATCHING
        active = min(self.pool.size, len(batch))
        maxsize = self.queue_size or len(batch)
        queues = [queue.Queue(maxsize=maxsize) for _ in range(active)]
        futures = [executor.submit(self._device_worker, d, queues[d]) for d in range(active)]

        for position, document in enumerate(batch):
            queues[self.pool.assign(position)].put((position, document))
        for work in queues:
            work.put(_STOP)

        self.state = SchedulerState.COLLECTING
        results: List[Optional[DocumentResult]] = [None] * len(batch)
        for future in futures:
            for position, doc_result in future.result():
                results[position] = doc_result
        return results

    def _persist(self, checkpoint: Checkpoint, completed: Sequence[Document],
                 results: List[DocumentResult]):
        self.state = SchedulerState.PERSISTING
        if self.sink is not None:
            for doc_result in results:
                try:
                    self.sink.write(doc_result.name, doc_result.results)
                except Exception as e:
                    logger.error(f"Failed saving records for {doc_result.name}: {e}")
            try:
                self.sink.commit()
            except Exception as e:
                logger.error(f"Failed committing batch results: {e}")

        checkpoint.batches_completed += 1
        checkpoint.fingerprint = fingerprint_ids(d.id for d in completed)
        checkpoint.fingerprint_count = len(completed)
        try:
            save_checkpoint(checkpoint, self.checkpoint_path)
        except OSError as e:
            logger.error(f"Failed to save progress file {self.checkpoint_path}: {e}")

    # =========================================================================
    # RUN
    # =========================================================================

    def run(self, documents: Iterable[Document]) -> RunSummary:
        """Process all pending documents, persisting after every batch.

        ``documents`` must come in the same order on every run; documents
        may be appended. The checkpoint stores how many of them were done
        and a fingerprint of their ids.
        """
        documents = list(documents)
        checkpoint, already_done = self._resume(documents)
        self.checkpoint = checkpoint

        total = len(documents)
        limit = checkpoint.item_limit
        to_process = total if limit is None else min(limit, total)
        batch_size = checkpoint.batch_size

        summary = RunSummary(total_documents=total, to_process=to_process,
                             resumed_from=already_done, checkpoint=checkpoint)
        self.reporter.post(ProgressEvent(RUN_START, total=to_process, count=min(already_done, to_process)))

        done = already_done
        remaining = documents[already_done:]
        with ThreadPoolExecutor(max_workers=self.pool.size, thread_name_prefix="device") as executor:
            for start in range(0, len(remaining), batch_size):
                if done >= to_process:
                    break
                batch = remaining[start:start + batch_size]
                results = self._run_batch(executor, batch)
                done += len(batch)
                self._persist(checkpoint, documents[:done], results)

                summary.batches_processed += 1
                summary.documents_processed += len(batch)
                for doc_result in results:
                    summary.units_total += len(doc_result.results)
                    summary.units_failed += doc_result.failed_units
                    summary.documents_failed += 0 if doc_result.error is None else 1
                if self.keep_results:
                    summary.document_results.extend(results)

                self.reporter.post(ProgressEvent(BATCH_DONE, count=len(batch)))
                logger.info(
                    f"Batch {checkpoint.batches_completed} done "
                    f"({min(done, to_process)}/{to_process} documents)"
                )

        self.state = SchedulerState.DONE
        self.reporter.post(ProgressEvent(RUN_DONE, count=summary.documents_processed))
        return summary
