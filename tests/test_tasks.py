"""Tests for the task registry, prompts and progress reporters."""

import pytest

from passagepipe.core.errors import ConfigError, ModelLoadError, TokenizerLoadError
from passagepipe.core.types import Document, DocumentResult, ChunkResult
from passagepipe.pipeline.chunker import SplitMode
from passagepipe.pipeline.tasks import TASKS, get_task
from passagepipe.utils.progress import (
    BATCH_DONE, DOCUMENT_DONE, DOCUMENT_START, RUN_DONE, RUN_START, UNIT_DONE,
    NullReporter, ProgressEvent, TqdmReporter,
)

DOC = Document(id="1", content="", name="studijski_program.md")


def test_prompt_task_sends_passage_as_is():
    task = get_task("prompt")
    assert task.render(DOC, "Besedilo") == "Besedilo"
    assert task.system_message is None
    assert task.split_mode is SplitMode.NON_OVERLAPPING
    assert task.sinks == ("jsonl",)


def test_translate_task():
    task = get_task("translate")
    assert task.render(DOC, "Besedilo") == "Besedilo"
    assert "translate" in task.system_message
    assert task.sinks == ("jsonl", "markdown")


def test_decorate_task_includes_document_name():
    task = get_task("Decorate")
    prompt = task.render(DOC, "Besedilo {z oklepaji}")
    assert prompt.startswith("Name of the file: studijski_program.md\nPassage: Besedilo {z oklepaji}")
    assert "KW: <kw1>" in prompt
    assert task.split_mode is SplitMode.OVERLAPPING
    assert task.sinks == ("vector",)


def test_unknown_task():
    with pytest.raises(ConfigError, match="Valid tasks"):
        get_task("summarize")


def test_every_task_has_a_known_sink():
    assert {kind for task in TASKS.values() for kind in task.sinks} <= {"jsonl", "markdown", "vector"}


def test_document_result_counters():
    result = DocumentResult(DOC, [ChunkResult("a", "x", True), ChunkResult("b", "err", False)])
    assert result.name == DOC.name
    assert result.failed_units == 1
    assert not result.ok
    assert DocumentResult(DOC).ok


def test_error_messages():
    assert "tokenizer.json" in str(TokenizerLoadError("tokenizer.json", "file not found"))
    err = ModelLoadError("models/x", "bad weights", "cuda:1")
    assert "cuda:1" in str(err) and err.device == "cuda:1"


def test_null_reporter_accepts_events():
    with NullReporter() as reporter:
        reporter.post(ProgressEvent(RUN_START, total=3))


def test_tqdm_reporter_renders_and_closes():
    reporter = TqdmReporter(desc="test")
    with reporter:
        reporter.post(ProgressEvent(RUN_START, total=2, count=0))
        reporter.post(ProgressEvent(DOCUMENT_START, name="a.md", total=2))
        reporter.post(ProgressEvent(UNIT_DONE, name="a.md"))
        reporter.post(ProgressEvent(UNIT_DONE, name="a.md", success=False))
        reporter.post(ProgressEvent(DOCUMENT_DONE, name="a.md", count=2))
        reporter.post(ProgressEvent(DOCUMENT_START, name="b.md", total=1))
        reporter.post(ProgressEvent(BATCH_DONE, count=2))
        reporter.post(ProgressEvent(RUN_DONE, count=2))

    assert reporter._thread is None
    assert reporter._documents == {}
    reporter.close()


def test_tqdm_reporter_keeps_same_name_documents_apart():
    reporter = TqdmReporter(desc="test")
    reporter._apply(ProgressEvent(DOCUMENT_START, name="report", total=2, device=0))
    reporter._apply(ProgressEvent(DOCUMENT_START, name="report", total=3, device=1))
    reporter._apply(ProgressEvent(UNIT_DONE, name="report", device=1))

    assert reporter._documents[(0, "report")].n == 0
    assert reporter._documents[(1, "report")].n == 1

    reporter._apply(ProgressEvent(DOCUMENT_DONE, name="report", count=2, device=0))
    assert list(reporter._documents) == [(1, "report")]
    reporter._close_bars()
    assert reporter._documents == {}
