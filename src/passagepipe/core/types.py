"""
Data types shared across the passagepipe pipeline.

Documents come in from a loader, are split into prompt units, and every unit
run through the inference backend produces one ChunkResult. The results of a
single document are collected into a DocumentResult before being handed to
the result sinks.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Document:
    """A loaded source document. Never mutated by the pipeline."""
    id: str
    content: str
    name: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Document":
        """Build a document from a JSON object.

        Accepts the legacy ``file_name`` key in place of ``name``.
        """
        name = data.get('name', data.get('file_name'))
        if name is None:
            raise KeyError("document record has neither 'name' nor 'file_name'")
        return cls(id=str(data['id']), content=data.get('content', ''), name=str(name))

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class ChunkResult:
    """Outcome of running inference on one prompt unit.

    When ``success`` is False, ``output_text`` holds the error description
    instead of a model response.
    """
    source_text: str
    output_text: str
    success: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DocumentResult:
    """Ordered unit results for one document of a batch.

    ``results`` preserves prompt-unit order. ``error`` is set only when the
    document failed before or outside its unit loop (e.g. the tokenizer
    raised while splitting it).
    """
    document: Document
    results: List[ChunkResult] = field(default_factory=list)
    device_index: Optional[int] = None
    error: Optional[str] = None

    @property
    def name(self) -> str:
        return self.document.name

    @property
    def failed_units(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def ok(self) -> bool:
        return self.error is None and self.failed_units == 0
