"""
passagepipe: resumable, device-parallel batch inference over document collections

Documents are split into token-bounded prompt units, run through a local
language model on a pool of devices, and the per-unit results are written
to the task's sinks (JSON lines, reassembled markdown, a vector index).
Progress is checkpointed after every batch.

Quick Start (Library API):
    >>> from passagepipe import PassagePipe
    >>> pipeline = PassagePipe(
    ...     input_dir="data/to_translate",
    ...     output_dir="output/translated",
    ...     task="translate",
    ... )
    >>> results = pipeline.run()
    >>> results.save()

Quick Start (CLI):
    $ passagepipe --input data/to_translate --output output/translated --task translate
"""

__version__ = "0.3.0"
__author__ = "passagepipe Authors"

# =============================================================================
# High-Level API (always available, no heavy imports)
# =============================================================================
from passagepipe.api import PassagePipe, PipelineConfig, PipelineResults


def __getattr__(name):
    """Lazy import of submodules so `import passagepipe` never loads torch.

    Model-facing helpers are only imported when they are first accessed.
    """
    # Local model backend
    if name in ("LocalLLM", "GenerationSettings", "load_model", "load_tokenizer", "setup_logging"):
        from passagepipe.core import llm
        return getattr(llm, name)

    # Config functions
    if name in ("load_config", "init_config"):
        from passagepipe.core import config
        return getattr(config, name)

    # Embeddings
    if name in ("PassageEmbedder", "get_best_embedding_model"):
        from passagepipe.embeddings import models
        return getattr(models, name)

    # Pipeline building blocks
    if name in ("TextChunker", "SplitMode"):
        from passagepipe.pipeline import chunker
        return getattr(chunker, name)
    if name in ("BatchScheduler", "RunSummary"):
        from passagepipe.pipeline import scheduler
        return getattr(scheduler, name)
    if name in ("load_directory", "load_jsonl"):
        from passagepipe.pipeline import loader
        return getattr(loader, name)

    # Device utilities
    if name in ("DevicePool", "get_device", "is_gpu_available", "setup_device_environment"):
        from passagepipe.utils import device
        return getattr(device, name)

    raise AttributeError(f"module 'passagepipe' has no attribute '{name}'")


__all__ = [
    # === High-Level API (recommended) ===
    "PassagePipe",
    "PipelineConfig",
    "PipelineResults",

    # === Version ===
    "__version__",
    "__author__",

    # === Local model backend (lazy loaded) ===
    "LocalLLM",
    "GenerationSettings",
    "load_model",
    "load_tokenizer",
    "setup_logging",

    # === Config ===
    "load_config",
    "init_config",

    # === Embeddings ===
    "PassageEmbedder",
    "get_best_embedding_model",

    # === Pipeline ===
    "TextChunker",
    "SplitMode",
    "BatchScheduler",
    "RunSummary",
    "load_directory",
    "load_jsonl",

    # === Devices ===
    "DevicePool",
    "get_device",
    "is_gpu_available",
    "setup_device_environment",
]
