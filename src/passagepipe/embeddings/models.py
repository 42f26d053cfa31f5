import logging
import os
from typing import List, Optional, Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)

# Text Embedding Configuration
EMBEDDING_MODELS_TEXT = {
    "bge_large_en": "BAAI/bge-large-en-v1.5",
    "bge_m3": "BAAI/bge-m3",
}


def get_best_embedding_model() -> str:
    """Returns the default passage embedding model (BGE large, English)"""
    return EMBEDDING_MODELS_TEXT["bge_large_en"]


def resolve_local_model_path(model_name: str) -> str:
    """Check for locally downloaded models before falling back to HuggingFace.

    Checks these locations in order:
    1. ``model_name`` itself, if it is an existing path
    2. ./models/{short_name}
    3. ../models/{short_name}
    4. ~/models/{short_name}
    5. HuggingFace cache (~/.cache/huggingface/hub/models--{org}--{name})

    Returns the local path if found, otherwise the original model_name for HuggingFace download.
    """
    if os.path.exists(model_name):
        return model_name

    # "BAAI/bge-large-en-v1.5" -> "bge-large-en-v1.5"
    short_name = model_name.split("/")[-1]

    local_dirs = [
        os.path.join(".", "models", short_name),
        os.path.join("..", "models", short_name),
        os.path.expanduser(os.path.join("~", "models", short_name)),
    ]
    for local_path in local_dirs:
        abs_path = os.path.abspath(local_path)
        # config.json marks a usable model directory
        if os.path.isdir(abs_path) and os.path.exists(os.path.join(abs_path, "config.json")):
            logger.info(f"Found local model at: {abs_path}")
            return abs_path

    hf_cache_name = f"models--{model_name.replace('/', '--')}"
    snapshots_dir = os.path.expanduser(
        os.path.join("~", ".cache", "huggingface", "hub", hf_cache_name, "snapshots")
    )
    if os.path.isdir(snapshots_dir):
        snapshots = sorted(os.listdir(snapshots_dir))
        if snapshots:
            latest_snapshot = os.path.join(snapshots_dir, snapshots[-1])
            has_model_files = any(
                f.startswith(("model", "pytorch_model")) and f.endswith((".safetensors", ".bin"))
                for f in os.listdir(latest_snapshot)
            )
            if os.path.exists(os.path.join(latest_snapshot, "config.json")) and has_model_files:
                logger.info(f"Found cached model at: {latest_snapshot}")
                return latest_snapshot
            logger.warning(f"Cached model directory found but model files missing, will re-download: {latest_snapshot}")

    logger.info(f"Model not found locally, will download from HuggingFace: {model_name}")
    return model_name


class PassageEmbedder:
    """
    Sentence-transformers passage embedder (mean pooling, L2-normalized).

    Matches the encode() call the vector index sink expects.
    """

    def __init__(self, model_name: Optional[str] = None, device: str = "cpu", batch_size: int = 16):
        from sentence_transformers import SentenceTransformer

        self.model_name = model_name or get_best_embedding_model()
        self.device = device
        self.batch_size = batch_size
        resolved_path = resolve_local_model_path(self.model_name)

        # Load to CPU first to avoid meta tensor issues, then move to the target device
        try:
            self.model = SentenceTransformer(resolved_path, device="cpu")
            if device != "cpu":
                self.model = self.model.to(device)
        except (OSError, ValueError, RuntimeError) as e:
            logger.warning(f"CPU-first loading failed ({e}), trying direct load...")
            self.model = SentenceTransformer(resolved_path, device=device)
        logger.info(f"[OK] Embedding model {self.model_name} loaded on {device}")

    @property
    def dimension(self) -> int:
        return self.model.get_sentence_embedding_dimension()

    def encode(self, texts: Union[str, Sequence[str]]) -> np.ndarray:
        """Embed texts as a float32 array of shape [n, dim]."""
        if isinstance(texts, str):
            texts = [texts]
        texts: List[str] = list(texts)
        if not texts:
            return np.zeros((0, self.dimension), dtype=np.float32)
        embeddings = self.model.encode(
            texts,
            batch_size=self.batch_size,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return np.asarray(embeddings, dtype=np.float32)


def normalize_l2(vectors: np.ndarray) -> np.ndarray:
    """Row-wise L2 normalization (zero rows stay zero)."""
    vectors = np.asarray(vectors, dtype=np.float32)
    if vectors.ndim == 1:
        vectors = vectors.reshape(1, -1)
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return vectors / norms
