"""
Configuration loading.

Reads ``config.yaml`` (or the file named by PASSAGEPIPE_CONFIG) and merges it
over the built-in defaults below. Environment variables set by the CLI win
over the file. A missing config file is fine: the defaults are used.
"""

import copy
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from passagepipe.core.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "PASSAGEPIPE_CONFIG"
DEFAULT_CONFIG_FILE = "config.yaml"
EXAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "config.yaml.example"

DEFAULT_CONFIG: Dict[str, Any] = {
    'task': 'translate',
    'paths': {
        'input_dir': 'data/',
        'input_jsonl': None,
        'output_dir': 'output/',
        'checkpoint_file': 'output/progress.json',
        'index_dir': 'output/index',
        'log_file': None,
    },
    'processing': {
        'batch_size': 2,
        'item_limit': None,
        'token_budget': 450,
        'overlap_threshold': 100,
    },
    'devices': {
        'count': 2,
        'gpus': [0, 1],
        'quantize': False,
    },
    'models': {
        'llm_model': 'models/llama3-8b',
        'tokenizer': None,
        'embedding_model': 'models/bge-large-en-v1.5-ft',
    },
    'generation': {
        'seed': 42,
        'temperature': 0.4,
        'max_new_tokens': 1000,
        'top_k': None,
        'top_p': None,
        'repetition_penalty': 1.1,
    },
}

# env var -> (section, key, type); section None means top level
ENV_OVERRIDES = {
    'PASSAGEPIPE_INPUT_DIR': ('paths', 'input_dir', str),
    'PASSAGEPIPE_INPUT_JSONL': ('paths', 'input_jsonl', str),
    'PASSAGEPIPE_OUTPUT_DIR': ('paths', 'output_dir', str),
    'PASSAGEPIPE_CHECKPOINT': ('paths', 'checkpoint_file', str),
    'PASSAGEPIPE_BATCH_SIZE': ('processing', 'batch_size', int),
    'PASSAGEPIPE_ITEM_LIMIT': ('processing', 'item_limit', int),
    'PASSAGEPIPE_DEVICE_COUNT': ('devices', 'count', int),
    'PASSAGEPIPE_TASK': (None, 'task', str),
}

_config_cache: Optional[Dict[str, Any]] = None


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    for var, (section, key, cast) in ENV_OVERRIDES.items():
        raw = os.environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            value = cast(raw)
        except ValueError:
            raise ConfigError(f"{var}={raw!r} is not a valid {cast.__name__}") from None
        target = config if section is None else config.setdefault(section, {})
        target[key] = value
    return config


def find_config_file(config_path: Optional[str] = None) -> Optional[Path]:
    """Config file to use: explicit path, then $PASSAGEPIPE_CONFIG, then ./config.yaml."""
    for candidate in (config_path, os.environ.get(CONFIG_ENV_VAR), DEFAULT_CONFIG_FILE):
        if candidate and Path(candidate).is_file():
            return Path(candidate)
    if config_path:
        raise ConfigError(f"Config file not found: {config_path}")
    return None


def load_config(config_path: Optional[str] = None, reload: bool = False) -> Dict[str, Any]:
    """Load the merged configuration (defaults < YAML file < environment).

    Raises:
        ConfigError: If an explicit ``config_path`` is missing or the YAML is invalid
    """
    global _config_cache
    if _config_cache is not None and not reload and config_path is None:
        return _config_cache

    path = find_config_file(config_path)
    file_config: Dict[str, Any] = {}
    if path is None:
        logger.info("config.yaml not available, using default configuration")
    else:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                file_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if not isinstance(file_config, dict):
            raise ConfigError(f"{path} must contain a mapping at top level")
        logger.info(f"Configuration loaded from {path}")

    config = _apply_env_overrides(_deep_merge(DEFAULT_CONFIG, file_config))
    if config_path is None:
        _config_cache = config
    return config


def init_config(target: Optional[str] = None) -> Path:
    """Copy the bundled config.yaml.example to ``target`` (default ./config.yaml).

    Raises:
        ConfigError: If the target already exists or the example is missing
    """
    target_path = Path(target) if target else Path.cwd() / DEFAULT_CONFIG_FILE
    if target_path.exists():
        raise ConfigError(f"{target_path} already exists, remove it first to regenerate")
    if not EXAMPLE_CONFIG.exists():
        raise ConfigError(f"config.yaml.example not found in package: {EXAMPLE_CONFIG}")
    target_path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(EXAMPLE_CONFIG, target_path)
    return target_path
