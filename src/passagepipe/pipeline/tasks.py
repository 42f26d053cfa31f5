"""
Task registry.

A task decides how documents are split (overlapping or not), which system
message goes with every request, how one prompt unit becomes the user
message, and which sinks receive the results.

    prompt     units sent as-is                  -> jsonl
    translate  slovene -> english translation    -> jsonl + reconstructed markdown
    decorate   keyword lists for retrieval       -> vector index
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from passagepipe.core.errors import ConfigError
from passagepipe.core.prompts import PROMPTS, PROMPTS_UNIT
from passagepipe.core.types import Document
from passagepipe.pipeline.chunker import SplitMode


@dataclass(frozen=True)
class Task:
    name: str
    split_mode: SplitMode
    system_message: Optional[str]
    unit_template: str
    sinks: Tuple[str, ...]

    def render(self, document: Document, unit: str) -> str:
        """User message for one prompt unit of ``document``."""
        return self.unit_template.format(passage=unit, name=document.name)


TASKS: Dict[str, Task] = {
    "prompt": Task(
        name="prompt",
        split_mode=SplitMode.NON_OVERLAPPING,
        system_message=PROMPTS["prompt"],
        unit_template=PROMPTS_UNIT["prompt"],
        sinks=("jsonl",),
    ),
    "translate": Task(
        name="translate",
        split_mode=SplitMode.NON_OVERLAPPING,
        system_message=PROMPTS["translate"],
        unit_template=PROMPTS_UNIT["translate"],
        sinks=("jsonl", "markdown"),
    ),
    "decorate": Task(
        name="decorate",
        split_mode=SplitMode.OVERLAPPING,
        system_message=PROMPTS["decorate"],
        unit_template=PROMPTS_UNIT["decorate"],
        sinks=("vector",),
    ),
}


def get_task(name: str) -> Task:
    try:
        return TASKS[name.lower()]
    except KeyError:
        raise ConfigError(f"Unknown task: '{name}'. Valid tasks: {sorted(TASKS)}") from None
