"""Relevance scoring strategies for knowledge chunks."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

from support_agent.config import RetrievalConfig
from support_agent.types import Chunk


class Scorer(ABC):
    """Scores one chunk against a query; higher means more relevant."""

    @abstractmethod
    def score(self, query: str, chunk: Chunk) -> float:
        """Return a non-negative relevance score."""


class TermFrequencyScorer(Scorer):
    """Weighted keyword counting over chunk titles and text.

    For every lower-cased query term of at least `min_term_length`
    characters, the score grows by `title_weight` per occurrence in the title
    plus `body_weight` per occurrence in the title and content combined. A
    heading match therefore counts in both places.

    Occurrences are literal and non-overlapping. There is no stemming and no
    length normalization, so a chunk scores zero unless it shares vocabulary
    with the query.
    """

    def __init__(self, config: RetrievalConfig | None = None) -> None:
        self.config = config or RetrievalConfig()

    def terms(self, query: str) -> list[str]:
        return [
            term
            for term in query.lower().split()
            if len(term) >= self.config.min_term_length
        ]

    def score(self, query: str, chunk: Chunk) -> float:
        title = chunk.title.lower()
        combined = f"{chunk.title} {chunk.content}".lower()

        total = 0
        for term in self.terms(query):
            pattern = re.compile(re.escape(term))
            title_matches = len(pattern.findall(title))
            text_matches = len(pattern.findall(combined))
            total += title_matches * self.config.title_weight + text_matches * self.config.body_weight
        return float(total)
