"""File-backed knowledge store with cached chunks and keyword retrieval."""

from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path

from support_agent.config import RetrievalConfig
from support_agent.knowledge.chunker import MarkdownSectionChunker
from support_agent.knowledge.scoring import Scorer, TermFrequencyScorer
from support_agent.types import Chunk, ParsedDocument, ScoredChunk

logger = logging.getLogger(__name__)


class KnowledgeStore:
    """Owns the chunk cache for one directory of markdown documents.

    The corpus is read once, on first access, and served from memory until
    `reset_cache` is called. Only the loader writes the cache; readers never
    mutate the returned chunks (they are frozen).

    A missing directory is treated as an empty corpus so a misconfigured
    deployment still answers (without grounding). Errors reading a file that
    does exist are not caught.
    """

    def __init__(
        self,
        knowledge_dir: str | Path,
        *,
        chunker: MarkdownSectionChunker | None = None,
        scorer: Scorer | None = None,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.knowledge_dir = Path(knowledge_dir)
        self.config = config or RetrievalConfig()
        self._chunker = chunker or MarkdownSectionChunker()
        self._scorer = scorer or TermFrequencyScorer(self.config)
        self._chunks: list[Chunk] | None = None
        self._lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._chunks is not None

    def load_knowledge(self) -> list[Chunk]:
        """Return every chunk of the corpus, parsing the files on first use."""

        chunks = self._chunks
        if chunks is not None:
            return chunks

        with self._lock:
            if self._chunks is None:
                self._chunks = self._read_corpus()
            return self._chunks

    async def aload_knowledge(self) -> list[Chunk]:
        """Async variant of `load_knowledge`; only a cold cache suspends."""

        if self._chunks is not None:
            return self._chunks
        return await asyncio.to_thread(self.load_knowledge)

    def reset_cache(self) -> None:
        with self._lock:
            self._chunks = None

    def find_relevant_chunks(self, query: str, top_k: int | None = None) -> list[ScoredChunk]:
        """Rank chunks against `query`.

        Only chunks with a positive score are returned, best first. Python's
        sort is stable, so equal scores keep corpus order. At most `top_k`
        results are returned; `top_k` below 1 raises `ValueError`.
        """

        limit = self.config.top_k if top_k is None else top_k
        if limit < 1:
            raise ValueError(f"top_k must be at least 1, got {limit}")
        scored = [
            ScoredChunk(chunk=chunk, score=self._scorer.score(query, chunk))
            for chunk in self.load_knowledge()
        ]
        ranked = sorted(
            (item for item in scored if item.score > 0),
            key=lambda item: item.score,
            reverse=True,
        )[:limit]

        logger.debug(
            "Knowledge retrieval query=%r results=%s",
            query[:50],
            [item.id for item in ranked],
        )
        return ranked

    def _read_corpus(self) -> list[Chunk]:
        if not self.knowledge_dir.is_dir():
            logger.warning("Knowledge directory not found: %s", self.knowledge_dir)
            return []

        files = sorted(self.knowledge_dir.glob("*.md"))
        chunks: list[Chunk] = []
        for path in files:
            document = ParsedDocument(doc_id=path.stem, text=path.read_text(encoding="utf-8"))
            file_chunks = self._chunker.chunk_document(document)
            chunks.extend(file_chunks)
            logger.debug("Knowledge file loaded: %s (%d chunks)", path.name, len(file_chunks))

        logger.info(
            "Knowledge base loaded: %d files, %d chunks", len(files), len(chunks)
        )
        return chunks
