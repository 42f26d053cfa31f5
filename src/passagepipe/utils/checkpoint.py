#!/usr/bin/env python3
"""
Checkpoint Management for the passagepipe batch loop

The checkpoint is the only state carried between runs. It records how many
batches have been completed, the batch size they were cut with and the
optional processing limit, so a restarted run can skip
``batches_completed * batch_size`` documents and continue with the first
unprocessed batch. When the file also carries a fingerprint, the run
instead skips the ``fingerprint_count`` documents the fingerprint covers,
which stays exact after a partial last batch.

On disk it is a small JSON object:

    {"batches_done": 3, "par_chunk_size": 2, "files_to_process": null,
     "fingerprint": "...", "fingerprint_count": 5, "last_updated": "..."}

Loading never fails: a missing or corrupted file falls back to the
configured defaults (at worst some work is redone). Saving goes through a
temp file and an atomic rename so a kill mid-write leaves the previous
checkpoint intact.
"""

import hashlib
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 2
DEFAULT_ITEM_LIMIT = None

# On-disk field names, followed by the names accepted when reading
_BATCHES_KEYS = ('batches_done', 'batches_completed')
_BATCH_SIZE_KEYS = ('par_chunk_size', 'batch_size')
_LIMIT_KEYS = ('files_to_process', 'item_limit', 'inscriptions_to_process')


@dataclass
class Checkpoint:
    """Progress of a batch run.

    Attributes:
        batches_completed: Number of fully processed batches
        batch_size: Documents per batch the count refers to
        item_limit: Stop after this many documents (None = all)
        fingerprint: Digest of the ids of the completed prefix, if known
        fingerprint_count: Number of documents the fingerprint covers
    """
    batches_completed: int = 0
    batch_size: int = DEFAULT_BATCH_SIZE
    item_limit: Optional[int] = DEFAULT_ITEM_LIMIT
    fingerprint: Optional[str] = None
    fingerprint_count: Optional[int] = None

    @property
    def items_done(self) -> int:
        return self.batches_completed * self.batch_size

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'batches_done': self.batches_completed,
            'par_chunk_size': self.batch_size,
            'files_to_process': self.item_limit,
        }
        if self.fingerprint is not None:
            data['fingerprint'] = self.fingerprint
        if self.fingerprint_count is not None:
            data['fingerprint_count'] = self.fingerprint_count
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], defaults: "Checkpoint") -> "Checkpoint":
        """Parse a checkpoint object, filling gaps from ``defaults``.

        Raises:
            ValueError: If a field has the wrong type or an invalid value
        """
        if not isinstance(data, dict):
            raise ValueError(f"checkpoint must be a JSON object, got {type(data).__name__}")

        def pick(keys, fallback):
            for key in keys:
                if key in data:
                    return data[key]
            return fallback

        batches = pick(_BATCHES_KEYS, defaults.batches_completed)
        batch_size = pick(_BATCH_SIZE_KEYS, defaults.batch_size)
        limit = pick(_LIMIT_KEYS, defaults.item_limit)
        fingerprint = data.get('fingerprint')

        for label, value in (('batches_done', batches), ('par_chunk_size', batch_size)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"invalid {label}: {value!r}")
        if batch_size == 0:
            raise ValueError("par_chunk_size must be positive")
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 0):
            raise ValueError(f"invalid files_to_process: {limit!r}")
        if fingerprint is not None and not isinstance(fingerprint, str):
            raise ValueError(f"invalid fingerprint: {fingerprint!r}")
        hashed = data.get('fingerprint_count')
        if hashed is not None and (isinstance(hashed, bool) or not isinstance(hashed, int) or hashed < 0):
            raise ValueError(f"invalid fingerprint_count: {hashed!r}")

        return cls(batches_completed=batches, batch_size=batch_size,
                   item_limit=limit, fingerprint=fingerprint, fingerprint_count=hashed)


def fingerprint_ids(ids: Iterable[str]) -> str:
    """Order-sensitive digest of document ids."""
    digest = hashlib.sha256()
    for doc_id in ids:
        digest.update(str(doc_id).encode('utf-8'))
        digest.update(b'\0')
    return digest.hexdigest()


def load_checkpoint(path: Union[str, Path], defaults: Optional[Checkpoint] = None) -> Checkpoint:
    """Load a checkpoint, or return ``defaults`` if it can't be read.

    Never raises: absence and corruption are logged and reset to defaults.
    """
    defaults = defaults or Checkpoint()
    path = Path(path)

    if not path.exists():
        logger.info(f"No checkpoint at {path}, starting from defaults")
        return _copy(defaults)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        checkpoint = Checkpoint.from_dict(data, defaults)
    except (json.JSONDecodeError, OSError, UnicodeDecodeError, ValueError) as e:
        logger.warning(f"Failed to load checkpoint {path}: {e}. Reverting to defaults.")
        return _copy(defaults)

    logger.info(
        f"Loaded checkpoint {path}: {checkpoint.batches_completed} batches "
        f"of {checkpoint.batch_size} done"
    )
    return checkpoint


def save_checkpoint(checkpoint: Checkpoint, path: Union[str, Path]):
    """Save a checkpoint atomically (write temp file, flush, rename).

    Raises:
        OSError: If the file can't be written. The previous checkpoint, if
            any, is left untouched.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = checkpoint.to_dict()
    data['last_updated'] = datetime.now().isoformat()

    temp_path = path.with_suffix(path.suffix + '.tmp')
    try:
        with open(temp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        temp_path.replace(path)  # Atomic rename
    except OSError:
        if temp_path.exists():
            temp_path.unlink()
        raise


def clear_checkpoint(path: Union[str, Path]) -> bool:
    """Delete a checkpoint file. Returns True if one was removed."""
    path = Path(path)
    if path.exists():
        path.unlink()
        logger.info(f"Checkpoint cleared: {path}")
        return True
    return False


def _copy(checkpoint: Checkpoint) -> Checkpoint:
    return Checkpoint(
        batches_completed=checkpoint.batches_completed,
        batch_size=checkpoint.batch_size,
        item_limit=checkpoint.item_limit,
        fingerprint=checkpoint.fingerprint,
        fingerprint_count=checkpoint.fingerprint_count,
    )
