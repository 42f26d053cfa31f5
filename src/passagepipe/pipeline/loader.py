"""
Document sources.

Both loaders return documents in a stable order (the batch checkpoint only
stores a count, so the order must not change between runs):

- load_directory: ``.txt`` / ``.md`` files sorted by relative path, ids
  derived from the path (UUID5), so reloading gives the same ids
- load_jsonl: one ``{"id", "content", "name"}`` object per line, file order
"""

import json
import logging
import uuid
from pathlib import Path
from typing import List, Sequence, Union

from passagepipe.core.types import Document

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ('.txt', '.md')


def document_id(relative_path: str) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, relative_path))


def load_directory(folder: Union[str, Path], recursive: bool = False,
                   extensions: Sequence[str] = SUPPORTED_EXTENSIONS) -> List[Document]:
    """Load every text/markdown file in ``folder`` (UTF-8).

    Raises:
        FileNotFoundError: If ``folder`` doesn't exist
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise FileNotFoundError(f"Input directory does not exist: {folder}")

    pattern = "**/*" if recursive else "*"
    paths = sorted(
        (p for p in folder.glob(pattern) if p.is_file() and p.suffix.lower() in extensions),
        key=lambda p: p.relative_to(folder).as_posix(),
    )

    documents = []
    for path in paths:
        relative = path.relative_to(folder).as_posix()
        documents.append(Document(
            id=document_id(relative),
            content=path.read_text(encoding='utf-8'),
            name=relative,
        ))
    logger.info(f"Loaded {len(documents)} documents from {folder}")
    return documents


def load_jsonl(file_name: Union[str, Path]) -> List[Document]:
    """Load pre-formed documents from a JSON-lines file.

    Raises:
        ValueError: On a malformed line (with its line number)
    """
    documents = []
    with open(file_name, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                documents.append(Document.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
                raise ValueError(f"{file_name}:{line_no}: invalid document record: {e}") from e
    logger.info(f"Loaded {len(documents)} documents from {file_name}")
    return documents
