"""Markdown section chunking for the knowledge corpus."""

from __future__ import annotations

import re

from support_agent.types import Chunk, ParsedDocument

_SECTION_SPLIT = re.compile(r"^## ", flags=re.MULTILINE)
_DOCUMENT_TITLE = re.compile(r"^# (.+)", flags=re.MULTILINE)
_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


class MarkdownSectionChunker:
    """Splits a two-level markdown document into addressable chunks.

    Layout expected from the corpus:
    1. An optional lead block (`# Title` plus introductory prose) before the
       first `## ` heading. It becomes `<doc>#intro` when non-empty, titled by
       the `# ` heading or, failing that, the document name.
    2. Any number of `## Section` blocks. Each becomes `<doc>#<slug>` with the
       heading re-attached to its body. Sections with an empty body are dropped.

    Slugs are the lower-cased title with every run of non-alphanumeric
    characters collapsed into one hyphen. An id already emitted for the
    document gets the lowest numeric suffix (`-2`, `-3`, ...) not yet taken,
    so chunk ids stay unique even when a suffixed id matches a real heading.
    """

    def chunk_document(self, document: ParsedDocument) -> list[Chunk]:
        sections = _SECTION_SPLIT.split(document.text)
        chunks: list[Chunk] = []

        intro = sections[0].strip()
        if intro:
            title_match = _DOCUMENT_TITLE.search(intro)
            chunks.append(
                Chunk(
                    id=f"{document.doc_id}#intro",
                    title=title_match.group(1).strip() if title_match else document.doc_id,
                    content=intro,
                    source=document.doc_id,
                )
            )

        emitted = {chunk.id for chunk in chunks}
        for section in sections[1:]:
            heading, _, rest = section.partition("\n")
            title = heading.strip()
            body = rest.strip()
            if not body:
                continue

            chunk_id = _unique_id(f"{document.doc_id}#{slugify(title)}", emitted)
            emitted.add(chunk_id)

            chunks.append(
                Chunk(
                    id=chunk_id,
                    title=title,
                    content=f"## {title}\n\n{body}",
                    source=document.doc_id,
                )
            )

        return chunks


def slugify(title: str) -> str:
    return _SLUG_PATTERN.sub("-", title.lower())


def _unique_id(candidate: str, taken: set[str]) -> str:
    if candidate not in taken:
        return candidate
    suffix = 2
    while f"{candidate}-{suffix}" in taken:
        suffix += 1
    return f"{candidate}-{suffix}"
