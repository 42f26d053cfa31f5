#!/usr/bin/env python3
"""
Result sinks: where finished documents go.

The scheduler hands every document of a completed batch to the sink with
``write(name, results)`` (results in prompt-unit order) and then calls
``commit()`` once for the batch, before the checkpoint is advanced.

Sinks:
- JsonlSink: appends one JSON record per unit to ``<name>.jsonl``
- MarkdownSink: writes the reassembled successful outputs to ``<name>_translated.md``
- VectorIndexSink: embeds ``"<output>\\n\\n<passage>"`` for successful units into a FAISS index
- MultiSink: fans out to several sinks
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from passagepipe.core.types import ChunkResult
from passagepipe.embeddings.models import normalize_l2
from passagepipe.pipeline.chunker import merge_outputs

logger = logging.getLogger(__name__)


def output_path(output_dir: Union[str, Path], name: str, suffix: str) -> Path:
    """Path for a document's output file inside ``output_dir``.

    Relative names keep their sub-directories; absolute names or names
    escaping the output directory are reduced to their file name.
    """
    name_path = Path(name)
    if name_path.is_absolute() or '..' in name_path.parts:
        name_path = Path(name_path.name)
    path = Path(output_dir) / f"{name_path}{suffix}"
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


class ResultSink(ABC):
    """Receives completed documents, once per batch."""

    @abstractmethod
    def write(self, name: str, results: List[ChunkResult]):
        pass

    def commit(self):
        """Called after every document of a batch has been written."""
        pass

    def close(self):
        pass


class JsonlSink(ResultSink):
    """Appends ``{"source_text", "output_text", "success"}`` lines per document."""

    def __init__(self, output_dir: Union[str, Path]):
        self.output_dir = Path(output_dir)

    def write(self, name: str, results: List[ChunkResult]):
        path = output_path(self.output_dir, name, ".jsonl")
        with open(path, 'a', encoding='utf-8') as f:
            for result in results:
                f.write(json.dumps(result.to_dict(), ensure_ascii=False) + '\n')


class MarkdownSink(ResultSink):
    """Writes the reconstructed document from its successful unit outputs."""

    def __init__(self, output_dir: Union[str, Path], suffix: str = "_translated.md",
                 separator: str = "\n"):
        self.output_dir = Path(output_dir)
        self.suffix = suffix
        self.separator = separator

    def write(self, name: str, results: List[ChunkResult]):
        path = output_path(self.output_dir, name, self.suffix)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(merge_outputs(results, self.separator))


def keywords_then_passage(result: ChunkResult) -> str:
    return f"{result.output_text}\n\n{result.source_text}"


class VectorIndexSink(ResultSink):
    """Embeds successful unit outputs into a FAISS inner-product index.

    Vectors are buffered per batch and added on ``commit()``, which also
    persists the index (``passages.faiss``) and appends the matching payloads
    (``passages.jsonl``, one ``{text, usage, document}`` per vector, same
    order as the index). An existing index in ``index_dir`` is extended.

    Args:
        embedder: Object with ``encode(texts) -> array [n, dim]``
        index_dir: Directory for the index and payload files
        compose: Builds the stored text from a ChunkResult
    """

    INDEX_FILE = "passages.faiss"
    PAYLOAD_FILE = "passages.jsonl"

    def __init__(self, embedder, index_dir: Union[str, Path],
                 compose: Callable[[ChunkResult], str] = keywords_then_passage):
        import faiss

        self._faiss = faiss
        self.embedder = embedder
        self.index_dir = Path(index_dir)
        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.compose = compose
        self._pending: List[dict] = []

        index_path = self.index_dir / self.INDEX_FILE
        self.index = faiss.read_index(str(index_path)) if index_path.exists() else None
        if self.index is not None:
            logger.info(f"Loaded vector index with {self.index.ntotal} passages from {index_path}")

    @property
    def size(self) -> int:
        return 0 if self.index is None else self.index.ntotal

    def write(self, name: str, results: List[ChunkResult]):
        for result in results:
            if result.success:
                self._pending.append({'text': self.compose(result), 'usage': 0, 'document': name})

    def commit(self):
        if not self._pending:
            return
        pending, self._pending = self._pending, []
        vectors = normalize_l2(self.embedder.encode([p['text'] for p in pending]))
        if self.index is None:
            self.index = self._faiss.IndexFlatIP(vectors.shape[1])
        self.index.add(vectors)

        self._faiss.write_index(self.index, str(self.index_dir / self.INDEX_FILE))
        with open(self.index_dir / self.PAYLOAD_FILE, 'a', encoding='utf-8') as f:
            for payload in pending:
                f.write(json.dumps(payload, ensure_ascii=False) + '\n')
        logger.info(f"Upserted {len(pending)} passages (index size {self.index.ntotal})")

    def search(self, query_vectors, k: int = 5):
        """Top-k (scores, ids) for already-embedded queries."""
        if self.index is None:
            raise ValueError("vector index is empty")
        return self.index.search(normalize_l2(query_vectors), k)


class MultiSink(ResultSink):
    """Forwards to several sinks. A failing sink doesn't stop the others."""

    def __init__(self, sinks: Sequence[ResultSink]):
        self.sinks = list(sinks)
        self.failures = 0

    def _each(self, label: str, call: Callable[[ResultSink], None]):
        for sink in self.sinks:
            try:
                call(sink)
            except Exception as e:
                self.failures += 1
                logger.error(f"{type(sink).__name__}.{label} failed: {e}")

    def write(self, name: str, results: List[ChunkResult]):
        self._each("write", lambda s: s.write(name, results))

    def commit(self):
        self._each("commit", lambda s: s.commit())

    def close(self):
        self._each("close", lambda s: s.close())


def build_sinks(kinds: Sequence[str], output_dir: Union[str, Path],
                index_dir: Optional[Union[str, Path]] = None, embedder=None) -> ResultSink:
    """Create the sink for a list of sink kinds (``jsonl``, ``markdown``, ``vector``)."""
    sinks: List[ResultSink] = []
    for kind in kinds:
        if kind == "jsonl":
            sinks.append(JsonlSink(output_dir))
        elif kind == "markdown":
            sinks.append(MarkdownSink(output_dir))
        elif kind == "vector":
            if embedder is None:
                raise ValueError("vector sink needs an embedder")
            sinks.append(VectorIndexSink(embedder, index_dir or Path(output_dir) / "index"))
        else:
            raise ValueError(f"Unknown sink kind: '{kind}'")
    return sinks[0] if len(sinks) == 1 else MultiSink(sinks)
