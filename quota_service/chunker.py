"""
Sentence-aware text chunking with CharacterTextSplitter.

Every chunk becomes one vector, and the index only holds a hundred of them,
so chunks are kept large (1000 chars) and split only at sentence ends
(`.`, `!`, `?`). A sentence is never cut in half: a single sentence longer
than the limit becomes its own oversized chunk, and the splitter logs a
warning about it.

There is no overlap between chunks. Overlap would spend quota on repeated
text, and it would break reconstructing the input from its chunks.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from langchain_text_splitters import CharacterTextSplitter

from .config import settings

logger = logging.getLogger(__name__)

# Zero-width match right after a terminator, so no character is consumed.
SENTENCE_BOUNDARY = r"(?<=[.!?])"


def create_splitter(chunk_size: int | None = None) -> CharacterTextSplitter:
    """
    Create a splitter that packs whole sentences up to `chunk_size` chars.

    A single regex separator is used rather than the recursive splitter's
    separator hierarchy: falling back to spaces or characters would cut
    sentences apart.
    """
    return CharacterTextSplitter(
        separator=SENTENCE_BOUNDARY,
        is_separator_regex=True,
        keep_separator=True,
        chunk_size=chunk_size or settings.chunk_size,
        chunk_overlap=0,
        length_function=len,
    )


def chunk_text(text: str, max_chunk_size: int | None = None) -> list[str]:
    """
    Split text into chunks of at most `max_chunk_size` characters.

    Sentences are packed greedily into the current chunk until the next one
    would push it over the limit. Chunks are whitespace-trimmed and empty
    chunks are never emitted, so blank input yields an empty list.
    """
    splitter = create_splitter(max_chunk_size)
    chunks = []
    for piece in splitter.split_text(text):
        piece = piece.strip()
        if piece:
            chunks.append(piece)
    return chunks


@dataclass
class Chunk:
    """A chunk of one input text, annotated for storage."""

    text: str
    text_index: int  # Which input text it came from
    chunk_index: int  # Position within that text
    metadata: dict = field(default_factory=dict)


def build_chunks(
    texts: list[str],
    source_metadata: dict,
    max_chunk_size: int | None = None,
    preview_chars: int | None = None,
) -> list[Chunk]:
    """
    Chunk every input text and flatten the result into one ordered list.

    Each chunk's metadata is a copy of the caller metadata plus its
    indices, a short preview, the full chunk text and a fresh timestamp.
    """
    preview_len = preview_chars or settings.preview_chars
    chunks: list[Chunk] = []

    for text_index, text in enumerate(texts):
        for chunk_index, piece in enumerate(chunk_text(text, max_chunk_size)):
            metadata = {
                **source_metadata,
                "chunkIndex": chunk_index,
                "textIndex": text_index,
                "chunk": piece[:preview_len],
                "fullChunk": piece,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            chunks.append(
                Chunk(
                    text=piece,
                    text_index=text_index,
                    chunk_index=chunk_index,
                    metadata=metadata,
                )
            )

    logger.debug(f"Chunked {len(texts)} text(s) into {len(chunks)} chunks")
    return chunks
