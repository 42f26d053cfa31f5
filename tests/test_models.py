"""Tests for the model-facing helpers that don't need model weights."""

from types import SimpleNamespace

import numpy as np
import pytest

from passagepipe.core.errors import TokenizerLoadError
from passagepipe.core.llm import GenerationSettings, TokenCounter
from passagepipe.embeddings.models import normalize_l2, resolve_local_model_path


def test_generation_defaults():
    kwargs = GenerationSettings().generate_kwargs()
    assert kwargs == {
        "max_new_tokens": 1000,
        "repetition_penalty": 1.1,
        "do_sample": True,
        "temperature": 0.4,
    }


def test_generation_sampling_options():
    kwargs = GenerationSettings(top_k=50, top_p=0.9).generate_kwargs()
    assert kwargs["top_k"] == 50
    assert kwargs["top_p"] == 0.9


def test_greedy_generation_ignores_sampling_options():
    kwargs = GenerationSettings(temperature=0, top_k=50).generate_kwargs()
    assert kwargs["do_sample"] is False
    assert "temperature" not in kwargs and "top_k" not in kwargs


def test_token_counter():
    class CharTokenizer:
        def encode(self, text, add_special_tokens=True):
            ids = [ord(c) for c in text]
            return [1] + ids if add_special_tokens else ids

    assert TokenCounter(CharTokenizer()).count("abc") == 4
    assert TokenCounter(CharTokenizer(), add_special_tokens=False).count("abc") == 3


def test_missing_tokenizer_file(tmp_path):
    pytest.importorskip("transformers")
    from passagepipe.core.llm import load_tokenizer

    with pytest.raises(TokenizerLoadError, match="file not found"):
        load_tokenizer(str(tmp_path / "tokenizer.json"))


def test_normalize_l2():
    vectors = normalize_l2(np.array([[3.0, 4.0], [0.0, 0.0]]))
    assert vectors.dtype == np.float32
    np.testing.assert_allclose(vectors, [[0.6, 0.8], [0.0, 0.0]], rtol=1e-6)
    assert normalize_l2(np.array([2.0, 0.0])).shape == (1, 2)


def test_resolve_local_model_path(tmp_path, monkeypatch):
    assert resolve_local_model_path(str(tmp_path)) == str(tmp_path)

    monkeypatch.chdir(tmp_path)
    local = tmp_path / "models" / "tiny-model"
    local.mkdir(parents=True)
    (local / "config.json").write_text("{}", encoding="utf-8")
    assert resolve_local_model_path("org/tiny-model") == str(local.resolve())

    assert resolve_local_model_path("org/not-downloaded-anywhere-xyz") == "org/not-downloaded-anywhere-xyz"


def test_local_llm_does_not_reseed_per_prompt(monkeypatch):
    torch = pytest.importorskip("torch")
    from passagepipe.core.llm import LocalLLM

    class FakeTokenizer:
        chat_template = None
        pad_token_id = 0
        eos_token_id = 0

        def __call__(self, text, return_tensors=None):
            return SimpleNamespace(input_ids=torch.tensor([[5, 6]]))

        def decode(self, tokens, skip_special_tokens=True):
            return " answer "

    class FakeModel:
        def generate(self, input_ids, **kwargs):
            return torch.tensor([[5, 6, 7]])

    llm = LocalLLM.__new__(LocalLLM)
    llm.device = "cpu"
    llm.settings = GenerationSettings()
    llm.model_path = "fake"
    llm._torch = torch
    llm.tokenizer = FakeTokenizer()
    llm.model = FakeModel()
    seeds = []
    monkeypatch.setattr(torch, "manual_seed", seeds.append)

    assert llm.run("prompt", "system") == "answer"
    assert seeds == []
