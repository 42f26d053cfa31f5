"""
passagepipe High-Level Python API

Usage:
    from passagepipe import PassagePipe

    # Quick start
    pipeline = PassagePipe(
        input_dir="data/to_translate",
        output_dir="output/translated",
        task="translate",
        llm_model="models/llama3-8b",
    )
    results = pipeline.run()
    print(results)

    # From a config file, with overrides
    pipeline = PassagePipe.from_config("config.yaml", batch_size=4)
    pipeline.configure(item_limit=10).run()

Every collaborator can be injected into ``run()`` (documents, tokenizer,
backend factory, sink, reporter), which is how the tests drive the pipeline
without loading a model.
"""

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from passagepipe.core.errors import ConfigError
from passagepipe.core.types import Document, DocumentResult
from passagepipe.pipeline.chunker import TextChunker
from passagepipe.pipeline.scheduler import BatchScheduler, RunSummary
from passagepipe.pipeline.sinks import ResultSink, build_sinks
from passagepipe.pipeline.tasks import Task, get_task
from passagepipe.utils.checkpoint import Checkpoint, clear_checkpoint
from passagepipe.utils.device import DevicePool
from passagepipe.utils.progress import NullReporter, ProgressReporter, TqdmReporter

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================
@dataclass
class PipelineConfig:
    """
    Flat configuration for one pipeline run.

    Mirrors the sections of config.yaml (paths, processing, devices, models,
    generation). Defaults:
    batches of 2 documents over 2 devices, 450-token prompt units.
    """
    # === Task ===
    task: str = "translate"                 # "prompt", "translate", "decorate"

    # === Paths ===
    input_dir: str = "data/"
    input_jsonl: Optional[str] = None       # Takes precedence over input_dir
    output_dir: str = "output/"
    checkpoint_file: str = "output/progress.json"
    index_dir: str = "output/index"
    log_file: Optional[str] = None

    # === Processing ===
    batch_size: int = 2
    item_limit: Optional[int] = None        # None = all documents
    token_budget: int = 450
    overlap_threshold: int = 100

    # === Devices ===
    device_count: int = 2
    gpus: List[int] = field(default_factory=lambda: [0, 1])
    quantize: bool = False

    # === Models ===
    llm_model: str = "models/llama3-8b"
    tokenizer: Optional[str] = None         # Defaults to llm_model
    embedding_model: str = "models/bge-large-en-v1.5-ft"

    # === Generation ===
    seed: int = 42
    temperature: float = 0.4
    max_new_tokens: int = 1000
    top_k: Optional[int] = None
    top_p: Optional[float] = None
    repetition_penalty: float = 1.1

    # === Run control ===
    show_progress: bool = True
    keep_results: bool = False
    config_file: Optional[str] = None

    def validate(self) -> "PipelineConfig":
        """Raise ConfigError on values the pipeline can't run with."""
        for name in ("batch_size", "token_budget", "device_count", "max_new_tokens"):
            value = getattr(self, name)
            if not isinstance(value, int) or value <= 0:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")
        if self.item_limit is not None and (not isinstance(self.item_limit, int) or self.item_limit < 0):
            raise ConfigError(f"item_limit must be a non-negative integer or None, got {self.item_limit!r}")
        if self.overlap_threshold < 0:
            raise ConfigError(f"overlap_threshold must be >= 0, got {self.overlap_threshold!r}")
        get_task(self.task)
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PipelineConfig":
        """Create config from a flat dictionary (unknown keys ignored)."""
        valid_fields = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in d.items() if k in valid_fields})

    @classmethod
    def from_mapping(cls, data: Dict[str, Any], config_file: Optional[str] = None) -> "PipelineConfig":
        """Map the nested config.yaml structure to a flat config."""
        paths = data.get('paths') or {}
        processing = data.get('processing') or {}
        devices = data.get('devices') or {}
        models = data.get('models') or {}
        generation = data.get('generation') or {}
        defaults = cls()

        return cls(
            task=data.get('task', defaults.task),
            input_dir=paths.get('input_dir', defaults.input_dir),
            input_jsonl=paths.get('input_jsonl'),
            output_dir=paths.get('output_dir', defaults.output_dir),
            checkpoint_file=paths.get('checkpoint_file', defaults.checkpoint_file),
            index_dir=paths.get('index_dir', defaults.index_dir),
            log_file=paths.get('log_file'),
            batch_size=processing.get('batch_size', defaults.batch_size),
            item_limit=processing.get('item_limit'),
            token_budget=processing.get('token_budget', defaults.token_budget),
            overlap_threshold=processing.get('overlap_threshold', defaults.overlap_threshold),
            device_count=devices.get('count', defaults.device_count),
            gpus=list(devices.get('gpus') or []),
            quantize=bool(devices.get('quantize', False)),
            llm_model=models.get('llm_model', defaults.llm_model),
            tokenizer=models.get('tokenizer'),
            embedding_model=models.get('embedding_model', defaults.embedding_model),
            seed=generation.get('seed', defaults.seed),
            temperature=generation.get('temperature', defaults.temperature),
            max_new_tokens=generation.get('max_new_tokens', defaults.max_new_tokens),
            top_k=generation.get('top_k'),
            top_p=generation.get('top_p'),
            repetition_penalty=generation.get('repetition_penalty', defaults.repetition_penalty),
            config_file=config_file,
        )

    @classmethod
    def from_yaml(cls, path: str) -> "PipelineConfig":
        """Load config from a YAML file (defaults and env overrides applied)."""
        from passagepipe.core.config import load_config
        return cls.from_mapping(load_config(path), config_file=path)

    def generation_settings(self):
        from passagepipe.core.llm import GenerationSettings
        return GenerationSettings(
            seed=self.seed,
            temperature=self.temperature,
            max_new_tokens=self.max_new_tokens,
            top_k=self.top_k,
            top_p=self.top_p,
            repetition_penalty=self.repetition_penalty,
        )

    def checkpoint_defaults(self) -> Checkpoint:
        return Checkpoint(batches_completed=0, batch_size=self.batch_size, item_limit=self.item_limit)


# =============================================================================
# Results
# =============================================================================
@dataclass
class PipelineResults:
    """
    Outcome of a pipeline run.

    Attributes:
        summary: Scheduler counters for this run
        output_dir: Directory the sinks wrote to
        config: The configuration used for this run
    """
    summary: RunSummary
    output_dir: Optional[str] = None
    config: Optional[PipelineConfig] = None

    @property
    def documents_processed(self) -> int:
        return self.summary.documents_processed

    @property
    def batches_processed(self) -> int:
        return self.summary.batches_processed

    @property
    def units_total(self) -> int:
        return self.summary.units_total

    @property
    def units_failed(self) -> int:
        return self.summary.units_failed

    @property
    def resumed_from(self) -> int:
        return self.summary.resumed_from

    @property
    def document_results(self) -> List[DocumentResult]:
        return self.summary.document_results

    def __len__(self) -> int:
        return self.summary.documents_processed

    def __iter__(self):
        return iter(self.summary.document_results)

    def __repr__(self) -> str:
        return (
            f"PipelineResults(documents={self.summary.documents_processed}, "
            f"batches={self.summary.batches_processed}, "
            f"units={self.summary.units_total}, failed_units={self.summary.units_failed}, "
            f"output_dir='{self.output_dir}')"
        )

    def to_dict(self) -> Dict[str, Any]:
        s = self.summary
        checkpoint = s.checkpoint.to_dict() if s.checkpoint else None
        return {
            'total_documents': s.total_documents,
            'to_process': s.to_process,
            'resumed_from': s.resumed_from,
            'batches_processed': s.batches_processed,
            'documents_processed': s.documents_processed,
            'documents_failed': s.documents_failed,
            'units_total': s.units_total,
            'units_failed': s.units_failed,
            'checkpoint': checkpoint,
        }

    def save(self, path: Optional[str] = None) -> str:
        """Write run statistics as JSON (default: output_dir/run_stats.json)."""
        if path is None:
            path = str(Path(self.output_dir or ".") / "run_stats.json")
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Saved run statistics to {path}")
        return path


# =============================================================================
# Main Pipeline Class
# =============================================================================
class PassagePipe:
    """
    Resumable batch pipeline: documents -> prompt units -> local model -> sinks.

    Quick Start:
        >>> pipeline = PassagePipe(input_dir="data/", task="translate")
        >>> results = pipeline.run()

    From Config File:
        >>> pipeline = PassagePipe.from_config("config.yaml")
        >>> pipeline.configure(item_limit=20).run()
    """

    def __init__(self, config: Optional[PipelineConfig] = None, **kwargs):
        self.config = config or PipelineConfig()
        if kwargs:
            self.configure(**kwargs)

    @classmethod
    def from_config(cls, config_path: str, **overrides) -> "PassagePipe":
        """Create a pipeline from a YAML configuration file.

        Example:
            >>> pipeline = PassagePipe.from_config("config.yaml", batch_size=4)
        """
        instance = cls(PipelineConfig.from_yaml(config_path))
        if overrides:
            instance.configure(**overrides)
        return instance

    def configure(self, **kwargs) -> "PassagePipe":
        """Update configuration. Returns self for method chaining."""
        for key, value in kwargs.items():
            if hasattr(self.config, key):
                setattr(self.config, key, value)
            else:
                raise ValueError(
                    f"Unknown configuration parameter: '{key}'. "
                    f"Valid parameters: {[f.name for f in fields(self.config)]}"
                )
        return self

    @property
    def task(self) -> Task:
        return get_task(self.config.task)

    # -------------------------------------------------------------------------
    # Collaborators
    # -------------------------------------------------------------------------

    def load_documents(self) -> List[Document]:
        from passagepipe.pipeline.loader import load_directory, load_jsonl
        cfg = self.config
        if cfg.input_jsonl:
            return load_jsonl(cfg.input_jsonl)
        return load_directory(cfg.input_dir)

    def load_tokenizer(self):
        """Tokenizer for the splitter. Raises TokenizerLoadError."""
        from passagepipe.core.llm import load_tokenizer
        return load_tokenizer(self.config.tokenizer or self.config.llm_model)

    def backend_factory(self) -> Callable[[str], Any]:
        """Factory loading one LocalLLM per device."""
        from passagepipe.core.llm import load_model
        cfg = self.config
        settings = cfg.generation_settings()

        def factory(device: str):
            return load_model(cfg.llm_model, device=device, settings=settings,
                              tokenizer_path=cfg.tokenizer, quantize=cfg.quantize)
        return factory

    def build_sink(self, embedder=None) -> ResultSink:
        cfg = self.config
        task = self.task
        if "vector" in task.sinks and embedder is None:
            from passagepipe.embeddings.models import PassageEmbedder
            from passagepipe.utils.device import get_device
            embedder = PassageEmbedder(cfg.embedding_model, device=get_device(cfg.gpus[:1]))
        return build_sinks(task.sinks, cfg.output_dir, index_dir=cfg.index_dir, embedder=embedder)

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self, documents: Optional[Sequence[Document]] = None, tokenizer=None,
            backend_factory: Optional[Callable[[str], Any]] = None,
            sink: Optional[ResultSink] = None,
            reporter: Optional[ProgressReporter] = None) -> PipelineResults:
        """
        Run the batch loop until all documents (or ``item_limit``) are done.

        Startup errors (tokenizer, model, configuration) are raised before
        any document is processed.
        """
        cfg = self.config.validate()
        Path(cfg.output_dir).mkdir(parents=True, exist_ok=True)

        if documents is None:
            documents = self.load_documents()
        chunker = TextChunker(tokenizer or self.load_tokenizer(), cfg.token_budget, cfg.overlap_threshold)
        pool = DevicePool.from_factory(backend_factory or self.backend_factory(),
                                       count=cfg.device_count, gpus=cfg.gpus)
        if sink is None:
            sink = self.build_sink()
        if reporter is None:
            reporter = TqdmReporter() if cfg.show_progress else NullReporter()

        logger.info(f"Task: {self.task.name}, documents: {len(documents)}, devices: {pool.devices()}")
        scheduler = BatchScheduler(
            pool, chunker, cfg.checkpoint_file,
            task=self.task,
            sink=sink,
            defaults=cfg.checkpoint_defaults(),
            reporter=reporter,
            keep_results=cfg.keep_results,
        )
        try:
            with reporter:
                summary = scheduler.run(documents)
        finally:
            sink.close()

        return PipelineResults(summary=summary, output_dir=cfg.output_dir, config=cfg)

    def reset(self) -> bool:
        """Delete the checkpoint so the next run starts from the beginning."""
        return clear_checkpoint(self.config.checkpoint_file)

    def __repr__(self) -> str:
        return (
            f"PassagePipe(task='{self.config.task}', "
            f"input_dir='{self.config.input_jsonl or self.config.input_dir}', "
            f"batch_size={self.config.batch_size})"
        )
