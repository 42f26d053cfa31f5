"""
passagepipe with a Custom Backend
=================================

Any object with ``run(prompt, system_message=None) -> str`` can stand in for
the local model, e.g. a client for an inference server. The pipeline keeps
handling splitting, batching, device exclusivity and checkpoints.

Usage:
    python 03_custom_backend.py
"""

from passagepipe import PassagePipe
from passagepipe.core.types import Document


class UppercaseBackend:
    """Toy backend: one instance is created per device slot."""

    def __init__(self, device):
        self.device = device

    def run(self, prompt, system_message=None):
        return prompt.upper()


class WordTokenizer:
    def encode(self, text):
        return text.split()


documents = [
    Document(id=str(i), content=f"Paragraph one of {i}.\n\nParagraph two of {i}.", name=f"doc{i}.md")
    for i in range(5)
]

pipeline = PassagePipe(
    task="prompt",
    output_dir="output/custom_backend",
    checkpoint_file="output/custom_backend/progress.json",
    gpus=[],                               # CPU only
    show_progress=False,
)

results = pipeline.run(
    documents=documents,
    tokenizer=WordTokenizer(),
    backend_factory=UppercaseBackend,
)
print(results)
