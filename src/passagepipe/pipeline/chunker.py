#!/usr/bin/env python3
"""
Token-budget text splitter.

Turns one document into an ordered list of prompt units that each fit the
model's context budget:

1. Split the content into paragraphs on blank lines
2. Greedily accumulate paragraphs into a unit, tracking the token count
3. Seal the unit when the next paragraph would push it over the budget
4. In overlapping mode, seed the next unit with the short paragraph that
   closed the previous one, so the model sees some continuity context

A single paragraph larger than the budget is emitted whole as its own unit;
paragraphs are never cut. The splitter is pure: the same content and the
same tokenizer always give the same units, which checkpoint resume relies on.
"""

from enum import Enum
from typing import Iterable, List, Union

from passagepipe.core.types import ChunkResult, Document

PARAGRAPH_SEPARATOR = "\n\n"
DEFAULT_TOKEN_BUDGET = 450
DEFAULT_OVERLAP_THRESHOLD = 100


class SplitMode(str, Enum):
    NON_OVERLAPPING = "non_overlapping"
    OVERLAPPING = "overlapping"


def count_tokens(tokenizer, text: str) -> int:
    """Token count of ``text``.

    Works with a TokenCounter (``count``) or anything exposing ``encode``
    that returns a sized token sequence.
    """
    if hasattr(tokenizer, 'count'):
        return tokenizer.count(text)
    return len(tokenizer.encode(text))


def split_paragraphs(content: str) -> List[str]:
    """Paragraphs of ``content`` in order, whitespace-only ones dropped."""
    return [p for p in content.split(PARAGRAPH_SEPARATOR) if p.strip()]


class TextChunker:
    """Splits documents into token-bounded prompt units.

    Args:
        tokenizer: TokenCounter or object with ``encode(text)``
        token_budget: Maximum tokens per unit (single oversized paragraphs excepted)
        overlap_threshold: Paragraphs shorter than this are carried over in
            overlapping mode
    """

    def __init__(self, tokenizer, token_budget: int = DEFAULT_TOKEN_BUDGET,
                 overlap_threshold: int = DEFAULT_OVERLAP_THRESHOLD):
        if token_budget <= 0:
            raise ValueError(f"token_budget must be positive, got {token_budget}")
        self.tokenizer = tokenizer
        self.token_budget = token_budget
        self.overlap_threshold = overlap_threshold

    def split(self, document: Union[Document, str],
              mode: SplitMode = SplitMode.NON_OVERLAPPING) -> List[str]:
        """Split a document (or raw text) into prompt units."""
        content = document.content if isinstance(document, Document) else document
        overlap = SplitMode(mode) is SplitMode.OVERLAPPING
        return self._split_paragraphs(split_paragraphs(content), overlap)

    def split_overlapping(self, document: Union[Document, str]) -> List[str]:
        return self.split(document, SplitMode.OVERLAPPING)

    def _split_paragraphs(self, paragraphs: Iterable[str], overlap: bool) -> List[str]:
        units: List[str] = []
        current: List[str] = []
        current_tokens = 0
        last_tokens = 0

        for paragraph in paragraphs:
            tokens = count_tokens(self.tokenizer, paragraph)

            if current and current_tokens + tokens > self.token_budget:
                units.append(PARAGRAPH_SEPARATOR.join(current))
                carry = current[-1]
                if (overlap and last_tokens < self.overlap_threshold
                        and last_tokens + tokens <= self.token_budget):
                    current, current_tokens = [carry], last_tokens
                else:
                    current, current_tokens = [], 0

            current.append(paragraph)
            current_tokens += tokens
            last_tokens = tokens

        if current:
            units.append(PARAGRAPH_SEPARATOR.join(current))
        return units


def merge_outputs(results: Iterable[ChunkResult], separator: str = "\n") -> str:
    """Reassemble a document from its unit results.

    Only successful outputs are kept, in unit order.
    """
    return separator.join(r.output_text for r in results if r.success)
