"""Shared fixtures and fakes for the passagepipe test suite.

Nothing here loads a real model: the tokenizer counts whitespace-separated
words and the backends answer deterministically.
"""

import os
import threading
import time
from pathlib import Path

import pytest

from passagepipe.core.types import Document
from passagepipe.pipeline.sinks import ResultSink
from passagepipe.utils.device import DeviceHandle, DevicePool
from passagepipe.utils.progress import ProgressReporter


@pytest.fixture(autouse=True)
def _restore_environ():
    """Snapshot environment variables and restore them after each test."""
    original = os.environ.copy()
    for key in list(os.environ):
        if key.startswith("PASSAGEPIPE_"):
            del os.environ[key]
    try:
        yield
    finally:
        os.environ.clear()
        os.environ.update(original)


@pytest.fixture(autouse=True)
def _restore_cwd():
    """Ensure tests leave the current working directory unchanged."""
    original_cwd = Path.cwd()
    try:
        yield
    finally:
        os.chdir(original_cwd)


class WhitespaceTokenizer:
    """One token per whitespace-separated word."""

    def encode(self, text):
        return text.split()


class EchoBackend:
    """Returns ``out:<prompt>``; raises for prompts containing FAIL.

    Tracks how many calls run at once so tests can check device exclusivity.
    """

    def __init__(self, device="cpu", delay=0.0):
        self.device = device
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def run(self, prompt, system_message=None):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.calls.append((prompt, system_message))
        try:
            if self.delay:
                time.sleep(self.delay)
            if "FAIL" in prompt:
                raise RuntimeError("model exploded")
            return f"out:{prompt}"
        finally:
            with self._lock:
                self.active -= 1


class RecordingSink(ResultSink):
    def __init__(self, fail_on=None):
        self.written = []
        self.commits = 0
        self.fail_on = fail_on

    def write(self, name, results):
        if self.fail_on is not None and name == self.fail_on:
            raise OSError("disk full")
        self.written.append((name, list(results)))

    def commit(self):
        self.commits += 1

    @property
    def names(self):
        return [name for name, _ in self.written]


class RecordingReporter(ProgressReporter):
    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def post(self, event):
        with self._lock:
            self.events.append(event)

    def kinds(self, kind):
        return [e for e in self.events if e.kind == kind]


def make_documents(count, paragraphs=("alpha beta gamma", "delta epsilon")):
    return [
        Document(id=f"doc-{i}", content="\n\n".join(paragraphs), name=f"doc{i}.md")
        for i in range(count)
    ]


def make_pool(count=2, delay=0.0):
    return DevicePool([
        DeviceHandle(index=i, device="cpu", backend=EchoBackend(delay=delay)) for i in range(count)
    ])


@pytest.fixture
def tokenizer():
    return WhitespaceTokenizer()


@pytest.fixture
def pool():
    return make_pool(2)


@pytest.fixture
def documents():
    return make_documents(5)
