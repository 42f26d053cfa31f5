"""Tests for the checkpointed batch scheduler."""

import json

import pytest

from passagepipe.core.types import Document
from passagepipe.pipeline.chunker import TextChunker
from passagepipe.pipeline.scheduler import BatchScheduler, SchedulerState
from passagepipe.pipeline.tasks import TASKS
from passagepipe.utils.checkpoint import Checkpoint, fingerprint_ids, load_checkpoint, save_checkpoint
from passagepipe.utils.device import DeviceHandle, DevicePool
from passagepipe.utils.progress import BATCH_DONE, DOCUMENT_START, RUN_DONE, RUN_START, UNIT_DONE

from conftest import RecordingReporter, RecordingSink, WhitespaceTokenizer, make_documents, make_pool


def make_scheduler(tmp_path, pool=None, sink=None, batch_size=2, item_limit=None, **kwargs):
    return BatchScheduler(
        pool or make_pool(2),
        TextChunker(WhitespaceTokenizer(), token_budget=4),
        tmp_path / "progress.json",
        task=kwargs.pop("task", TASKS["prompt"]),
        sink=sink if sink is not None else RecordingSink(),
        defaults=Checkpoint(batch_size=batch_size, item_limit=item_limit),
        **kwargs,
    )


def read_progress(tmp_path):
    return json.loads((tmp_path / "progress.json").read_text(encoding="utf-8"))


def test_processes_every_document_in_batches(tmp_path, documents):
    sink = RecordingSink()
    scheduler = make_scheduler(tmp_path, sink=sink)

    summary = scheduler.run(documents)

    assert sink.names == [d.name for d in documents]
    assert sink.commits == 3
    assert summary.batches_processed == 3
    assert summary.documents_processed == 5
    assert summary.resumed_from == 0
    assert read_progress(tmp_path)["batches_done"] == 3
    assert scheduler.state is SchedulerState.DONE


def test_every_unit_gets_a_result_in_order(tmp_path):
    doc = Document(id="1", content="a b c\n\nd e\n\nf g h i", name="one.md")
    sink = RecordingSink()

    make_scheduler(tmp_path, sink=sink).run([doc])

    (name, results), = sink.written
    assert [r.source_text for r in results] == ["a b c", "d e", "f g h i"]
    assert [r.output_text for r in results] == ["out:a b c", "out:d e", "out:f g h i"]
    assert all(r.success for r in results)


def test_checkpoint_written_after_each_batch(tmp_path, documents):
    seen = []

    class CheckpointWatchingSink(RecordingSink):
        def commit(self):
            super().commit()
            path = tmp_path / "progress.json"
            seen.append(load_checkpoint(path).batches_completed if path.exists() else 0)

    make_scheduler(tmp_path, sink=CheckpointWatchingSink()).run(documents)

    # sink commits before the checkpoint for the same batch is saved
    assert seen == [0, 1, 2]


def test_resume_skips_completed_prefix(tmp_path, documents):
    save_checkpoint(
        Checkpoint(batches_completed=1, batch_size=2,
                   fingerprint=fingerprint_ids(d.id for d in documents[:2])),
        tmp_path / "progress.json",
    )
    sink = RecordingSink()

    summary = make_scheduler(tmp_path, sink=sink).run(documents)

    assert sink.names == ["doc2.md", "doc3.md", "doc4.md"]
    assert summary.resumed_from == 2
    assert summary.batches_processed == 2
    assert read_progress(tmp_path)["batches_done"] == 3


def test_checkpoint_without_fingerprint_is_trusted(tmp_path, documents):
    save_checkpoint(Checkpoint(batches_completed=2, batch_size=2), tmp_path / "progress.json")
    sink = RecordingSink()

    make_scheduler(tmp_path, sink=sink).run(documents)

    assert sink.names == ["doc4.md"]


def test_fingerprint_mismatch_restarts_from_beginning(tmp_path, documents, caplog):
    save_checkpoint(
        Checkpoint(batches_completed=1, batch_size=2, fingerprint=fingerprint_ids(["x", "y"])),
        tmp_path / "progress.json",
    )
    sink = RecordingSink()

    summary = make_scheduler(tmp_path, sink=sink).run(documents)

    assert sink.names == [d.name for d in documents]
    assert summary.resumed_from == 0
    assert "starting over" in caplog.text


def test_checkpoint_batch_size_governs_resume(tmp_path, documents):
    save_checkpoint(Checkpoint(batches_completed=1, batch_size=3), tmp_path / "progress.json")
    sink = RecordingSink()

    summary = make_scheduler(tmp_path, sink=sink, batch_size=2).run(documents)

    assert sink.names == ["doc3.md", "doc4.md"]
    assert summary.batches_processed == 1
    assert read_progress(tmp_path)["par_chunk_size"] == 3


def test_finished_run_does_nothing(tmp_path, documents):
    make_scheduler(tmp_path).run(documents)
    sink = RecordingSink()

    summary = make_scheduler(tmp_path, sink=sink).run(documents)

    assert sink.written == []
    assert summary.batches_processed == 0


def test_item_limit_is_checked_at_batch_boundaries(tmp_path, documents):
    sink = RecordingSink()

    summary = make_scheduler(tmp_path, sink=sink, item_limit=3).run(documents)

    # the batch that crosses the limit is completed, the next one never starts
    assert sink.names == ["doc0.md", "doc1.md", "doc2.md", "doc3.md"]
    assert summary.to_process == 3
    progress = read_progress(tmp_path)
    assert progress["batches_done"] == 2
    assert progress["files_to_process"] == 3


def test_zero_limit_processes_nothing(tmp_path, documents):
    sink = RecordingSink()

    summary = make_scheduler(tmp_path, sink=sink, item_limit=0).run(documents)

    assert sink.written == []
    assert summary.batches_processed == 0
    assert not (tmp_path / "progress.json").exists()


def test_configured_limit_overrides_stored_limit(tmp_path, documents):
    save_checkpoint(Checkpoint(batches_completed=1, batch_size=2, item_limit=2), tmp_path / "progress.json")
    sink = RecordingSink()

    make_scheduler(tmp_path, sink=sink, item_limit=4).run(documents)

    assert sink.names == ["doc2.md", "doc3.md"]


def test_inference_failure_is_recorded_and_run_continues(tmp_path):
    docs = [
        Document(id="1", content="fine words here\n\nFAIL right here\n\nmore fine words", name="bad.md"),
        Document(id="2", content="all good", name="good.md"),
    ]
    sink = RecordingSink()

    summary = make_scheduler(tmp_path, sink=sink).run(docs)

    bad = dict(sink.written)["bad.md"]
    assert [r.success for r in bad] == [True, False, True]
    assert "model exploded" in bad[1].output_text
    assert bad[1].source_text == "FAIL right here"
    assert dict(sink.written)["good.md"][0].success
    assert summary.units_total == 4
    assert summary.units_failed == 1


def test_non_string_backend_output_is_a_failure(tmp_path):
    class NumberBackend:
        def run(self, prompt, system_message=None):
            return 42

    pool = DevicePool([DeviceHandle(index=0, device="cpu", backend=NumberBackend())])
    sink = RecordingSink()

    make_scheduler(tmp_path, pool=pool, sink=sink).run(make_documents(1, ("one",)))

    (_, results), = sink.written
    assert results[0].success is False
    assert "expected str" in results[0].output_text


def test_split_failure_marks_document(tmp_path):
    class FussyTokenizer(WhitespaceTokenizer):
        def encode(self, text):
            if "poison" in text:
                raise ValueError("cannot tokenize")
            return super().encode(text)

    scheduler = BatchScheduler(
        make_pool(2), TextChunker(FussyTokenizer(), token_budget=4), tmp_path / "progress.json",
        sink=RecordingSink(), keep_results=True,
    )
    docs = [Document(id="1", content="poison", name="p.md"), Document(id="2", content="ok", name="o.md")]

    summary = scheduler.run(docs)

    assert summary.documents_failed == 1
    failed = summary.document_results[0]
    assert failed.results == []
    assert "cannot tokenize" in failed.error
    assert summary.document_results[1].ok


def test_sink_failure_does_not_stop_the_run(tmp_path, documents, caplog):
    sink = RecordingSink(fail_on="doc1.md")

    summary = make_scheduler(tmp_path, sink=sink).run(documents)

    assert sink.names == ["doc0.md", "doc2.md", "doc3.md", "doc4.md"]
    assert summary.batches_processed == 3
    assert read_progress(tmp_path)["batches_done"] == 3
    assert "Failed saving records for doc1.md" in caplog.text


def test_items_are_routed_round_robin(tmp_path):
    pool = make_pool(2)
    docs = make_documents(4, ("one two",))
    scheduler = make_scheduler(tmp_path, pool=pool, batch_size=4, keep_results=True)

    summary = scheduler.run(docs)

    assert [r.device_index for r in summary.document_results] == [0, 1, 0, 1]
    assert summary.processed_names == [d.name for d in docs]
    assert len(pool[0].backend.calls) == 2
    assert len(pool[1].backend.calls) == 2


def test_one_item_in_flight_per_device(tmp_path):
    pool = make_pool(2, delay=0.005)
    docs = make_documents(6, ("a b", "c d", "e f g"))

    make_scheduler(tmp_path, pool=pool, batch_size=6).run(docs)

    for handle in pool:
        assert handle.backend.max_active == 1


def test_single_device_pool(tmp_path, documents):
    sink = RecordingSink()

    summary = make_scheduler(tmp_path, pool=make_pool(1), sink=sink).run(documents)

    assert sink.names == [d.name for d in documents]
    assert summary.batches_processed == 3


def test_task_controls_prompt_and_system_message(tmp_path):
    pool = make_pool(1)
    doc = Document(id="1", content="short passage", name="guide.md")

    make_scheduler(tmp_path, pool=pool, task=TASKS["decorate"]).run([doc])

    (prompt, system), = pool[0].backend.calls
    assert "Name of the file: guide.md" in prompt
    assert "Passage: short passage" in prompt
    assert system == TASKS["decorate"].system_message


def test_progress_events(tmp_path, documents):
    reporter = RecordingReporter()

    make_scheduler(tmp_path, reporter=reporter).run(documents)

    start, = reporter.kinds(RUN_START)
    assert start.total == 5 and start.count == 0
    assert [e.count for e in reporter.kinds(BATCH_DONE)] == [2, 2, 1]
    assert len(reporter.kinds(DOCUMENT_START)) == 5
    assert len(reporter.kinds(UNIT_DONE)) == 5 * 2
    assert reporter.events[-1].kind == RUN_DONE


def test_unwritable_checkpoint_is_logged(tmp_path, documents, caplog):
    blocker = tmp_path / "blocked"
    blocker.write_text("not a directory", encoding="utf-8")
    scheduler = BatchScheduler(
        make_pool(2), TextChunker(WhitespaceTokenizer(), token_budget=4),
        blocker / "progress.json", sink=RecordingSink(),
    )

    summary = scheduler.run(documents)

    assert summary.documents_processed == 5
    assert "Failed to save progress file" in caplog.text


@pytest.mark.parametrize("count,batch_size,batches", [(0, 2, 0), (1, 2, 1), (4, 2, 2), (7, 3, 3)])
def test_batch_count(tmp_path, count, batch_size, batches):
    summary = make_scheduler(tmp_path, batch_size=batch_size).run(make_documents(count))
    assert summary.batches_processed == batches
    assert summary.documents_processed == count


def test_empty_document_gives_no_results_and_still_advances(tmp_path):
    docs = [Document(id="1", content="", name="empty.md"), Document(id="2", content="a b", name="full.md")]
    sink = RecordingSink()

    summary = make_scheduler(tmp_path, sink=sink, keep_results=True).run(docs)

    assert dict(sink.written)["empty.md"] == []
    empty = summary.document_results[0]
    assert empty.results == [] and empty.error is None
    assert summary.units_total == 1
    assert read_progress(tmp_path)["batches_done"] == 1


def test_append_after_partial_last_batch_resumes_at_new_document(tmp_path, caplog):
    make_scheduler(tmp_path).run(make_documents(5))
    sink = RecordingSink()

    summary = make_scheduler(tmp_path, sink=sink).run(make_documents(6))

    assert sink.names == ["doc5.md"]
    assert summary.resumed_from == 5
    assert read_progress(tmp_path)["fingerprint_count"] == 6
    assert "starting over" not in caplog.text


def test_repeated_appends_never_redo_documents(tmp_path):
    make_scheduler(tmp_path).run(make_documents(5))
    first, second = RecordingSink(), RecordingSink()

    make_scheduler(tmp_path, sink=first).run(make_documents(8))
    make_scheduler(tmp_path, sink=second).run(make_documents(9))

    assert first.names == ["doc5.md", "doc6.md", "doc7.md"]
    assert second.names == ["doc8.md"]


def test_removed_documents_restart_the_run(tmp_path, caplog):
    make_scheduler(tmp_path).run(make_documents(5))
    sink = RecordingSink()

    make_scheduler(tmp_path, sink=sink).run(make_documents(4))

    assert len(sink.names) == 4
    assert "starting over" in caplog.text


def test_interrupted_run_resumes_at_first_unsaved_batch(tmp_path, documents):
    class InterruptingSink(RecordingSink):
        def commit(self):
            super().commit()
            if self.commits == 2:
                raise KeyboardInterrupt

    interrupted = InterruptingSink()
    with pytest.raises(KeyboardInterrupt):
        make_scheduler(tmp_path, sink=interrupted).run(documents)
    assert read_progress(tmp_path)["batches_done"] == 1

    resumed = RecordingSink()
    summary = make_scheduler(tmp_path, sink=resumed).run(documents)

    reference = RecordingSink()
    make_scheduler(tmp_path / "reference", sink=reference).run(documents)

    assert summary.resumed_from == 2
    assert resumed.names == ["doc2.md", "doc3.md", "doc4.md"]
    assert interrupted.names[:2] + resumed.names == reference.names
