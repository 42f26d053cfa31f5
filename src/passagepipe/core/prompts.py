from __future__ import annotations
from typing import Any

# System messages keyed by task
PROMPTS: dict[str, Any] = {}
# Per-unit user message templates keyed by task
PROMPTS_UNIT: dict[str, Any] = {}


#%% Translation

PROMPTS["translate"] = (
    "Your task is to translate the given passages from slovene to english. "
    "The passages are given in a markdown format. You should keep the structure of the "
    "markdown and have the translation to english be as close to the original meaning as "
    "possible. It is important you only respond with the translation and keep the markdown "
    "structure."
)

PROMPTS_UNIT["translate"] = "{passage}"


#%% Keyword decoration

PROMPTS["decorate"] = (
    "Your task is to generate an unordered list of keywords about a given text passage. "
    "The passages are given in a markdown format. The passages are part of documents and "
    "information about University of Primorska. The keywords should cover what the passage "
    "is talking about. Generate up to 5 keywords. If applicable the study programme should be "
    "on the list of keywords. For clues you are also given the name of the document that the "
    "passage was taken from. The keywords should be generated from the perspective of what the "
    "document would mean to the student. It is important you only respond with keywords."
)

PROMPTS_UNIT["decorate"] = """Name of the file: {name}
Passage: {passage}

 Response template: 'KW: <kw1>, <kw2>, <kw3>,...'"""


#%% Plain prompting (each unit is sent as-is)

PROMPTS["prompt"] = None

PROMPTS_UNIT["prompt"] = "{passage}"
