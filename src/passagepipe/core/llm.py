"""
Local language-model backend.

Wraps a HuggingFace causal LM loaded on one torch device. The scheduler
only needs ``run(prompt, system_message=None) -> str``; everything here is
the concrete implementation of that call plus the tokenizer used by the
text splitter.

Loading failures (missing tokenizer file, missing or incompatible weights)
raise TokenizerLoadError / ModelLoadError and are meant to stop the run.
Errors during ``run`` propagate to the caller, which records them.
"""

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from passagepipe.core.errors import ModelLoadError, TokenizerLoadError

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(verbose: bool = False, log_file: Optional[str] = None):
    """Configure root logging for CLI runs."""
    handlers = [logging.StreamHandler()]
    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # transformers is chatty at INFO
    logging.getLogger("transformers").setLevel(logging.WARNING)


# =============================================================================
# Tokenizer
# =============================================================================

class TokenCounter:
    """Thin wrapper over a HuggingFace tokenizer, used for token budgets."""

    def __init__(self, tokenizer, add_special_tokens: bool = True):
        self.tokenizer = tokenizer
        self.add_special_tokens = add_special_tokens

    def encode(self, text: str) -> List[int]:
        return self.tokenizer.encode(text, add_special_tokens=self.add_special_tokens)

    def count(self, text: str) -> int:
        return len(self.encode(text))


def _load_hf_tokenizer(path: str):
    from transformers import AutoTokenizer, PreTrainedTokenizerFast

    if path.endswith(".json"):
        if not os.path.isfile(path):
            raise TokenizerLoadError(path, "file not found")
        return PreTrainedTokenizerFast(tokenizer_file=path)
    return AutoTokenizer.from_pretrained(path)


def load_tokenizer(path: str) -> TokenCounter:
    """Load a tokenizer from a ``tokenizer.json`` file or a model directory/name.

    Raises:
        TokenizerLoadError: If it can't be loaded
    """
    try:
        tokenizer = _load_hf_tokenizer(path)
    except TokenizerLoadError:
        raise
    except (OSError, ValueError, RuntimeError) as e:
        raise TokenizerLoadError(path, str(e)) from e
    logger.info(f"Tokenizer loaded from {path}")
    return TokenCounter(tokenizer)


# =============================================================================
# Model
# =============================================================================

@dataclass
class GenerationSettings:
    seed: int = 42
    temperature: float = 0.4
    max_new_tokens: int = 1000
    top_k: Optional[int] = None
    top_p: Optional[float] = None
    repetition_penalty: float = 1.1

    def generate_kwargs(self) -> dict:
        kwargs = {
            'max_new_tokens': self.max_new_tokens,
            'repetition_penalty': self.repetition_penalty,
            'do_sample': self.temperature > 0,
        }
        if self.temperature > 0:
            kwargs['temperature'] = self.temperature
            if self.top_k is not None:
                kwargs['top_k'] = self.top_k
            if self.top_p is not None:
                kwargs['top_p'] = self.top_p
        return kwargs


class LocalLLM:
    """A causal LM on a single device.

    Args:
        model_path: Local directory or HuggingFace model name
        device: ``"cuda:<n>"`` or ``"cpu"``
        settings: Sampling settings
        tokenizer_path: Tokenizer location (default: ``model_path``)
        quantize: Load in 4-bit on CUDA (needs bitsandbytes)

    ``settings.seed`` is applied once, when the model is loaded. With several
    devices sampling at the same time the draws interleave, so the seed makes
    a run start from a known state but does not pin the output of single
    units.
    """

    def __init__(self, model_path: str, device: str = "cpu",
                 settings: Optional[GenerationSettings] = None,
                 tokenizer_path: Optional[str] = None, quantize: bool = False):
        import torch
        from transformers import AutoModelForCausalLM
        from passagepipe.embeddings.models import resolve_local_model_path

        self.device = device
        self.settings = settings or GenerationSettings()
        self.model_path = model_path
        self._torch = torch

        self.tokenizer = load_tokenizer(tokenizer_path or model_path).tokenizer

        resolved_path = resolve_local_model_path(model_path)
        is_cuda = device.startswith("cuda")
        quantization_config = None
        if quantize and is_cuda:
            from transformers import BitsAndBytesConfig
            quantization_config = BitsAndBytesConfig(
                load_in_4bit=True,
                bnb_4bit_compute_dtype=torch.bfloat16,
                bnb_4bit_use_double_quant=True,
            )

        try:
            self.model = AutoModelForCausalLM.from_pretrained(
                resolved_path,
                torch_dtype=torch.bfloat16 if is_cuda else torch.float32,
                device_map=device if quantization_config is not None else None,
                quantization_config=quantization_config,
            ).eval()
            if quantization_config is None:
                self.model = self.model.to(device)
        except (OSError, ValueError, RuntimeError) as e:
            raise ModelLoadError(model_path, str(e), device) from e

        # the generator is process-wide; concurrent devices share it
        torch.manual_seed(self.settings.seed)
        logger.info(f"[OK] {model_path} loaded on {device}")

    def _encode(self, prompt: str, system_message: Optional[str]):
        if getattr(self.tokenizer, 'chat_template', None):
            messages = []
            if system_message:
                messages.append({"role": "system", "content": system_message})
            messages.append({"role": "user", "content": prompt})
            return self.tokenizer.apply_chat_template(
                messages, add_generation_prompt=True, return_tensors="pt"
            )
        text = f"{system_message}\n\n{prompt}" if system_message else prompt
        return self.tokenizer(text, return_tensors="pt").input_ids

    def run(self, prompt: str, system_message: Optional[str] = None) -> str:
        """Generate a response for one prompt unit."""
        torch = self._torch
        input_ids = self._encode(prompt, system_message).to(self.device)
        with torch.no_grad():
            output = self.model.generate(
                input_ids,
                attention_mask=torch.ones_like(input_ids),
                pad_token_id=self.tokenizer.pad_token_id or self.tokenizer.eos_token_id,
                **self.settings.generate_kwargs(),
            )
        new_tokens = output[0][input_ids.shape[-1]:]
        return self.tokenizer.decode(new_tokens, skip_special_tokens=True).strip()

    def __repr__(self) -> str:
        return f"LocalLLM(model='{self.model_path}', device='{self.device}')"


def load_model(model_path: str, device: str = "cpu", **kwargs) -> LocalLLM:
    """Load a LocalLLM, raising ModelLoadError on failure."""
    return LocalLLM(model_path, device=device, **kwargs)
