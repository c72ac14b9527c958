"""Sentence-aware overlapping text chunking."""
from typing import List, Optional
import math
import re

from .errors import ValidationError
from .models import Chunk

# Terminal punctuation, whitespace, then a capital letter. Abbreviations such
# as "e.g. Foo" are split too; this is a heuristic, not NLP segmentation.
SENTENCE_BOUNDARY = re.compile(r'(?<=[.!?])\s+(?=[A-Z])')
WHITESPACE = re.compile(r'\s')


def split_sentences(text: str) -> List[str]:
    """
    Split text into sentence units.

    Args:
        text: Text to split

    Returns:
        Non-empty, stripped sentences in order
    """
    return [s.strip() for s in SENTENCE_BOUNDARY.split(text) if s and s.strip()]


def overlap_seed(text: str, overlap: int) -> str:
    """
    Take the trailing ``overlap`` characters of a closed chunk.

    The cut never lands inside a token: a partial leading word is dropped,
    so the seed starts on a word boundary and is never longer than
    ``overlap``.

    Args:
        text: Closed chunk text
        overlap: Number of trailing characters to carry over

    Returns:
        Seed text for the next chunk (may be empty)
    """
    if overlap <= 0 or not text or not text.strip():
        return ""

    if len(text) <= overlap:
        return text.strip()

    cut = len(text) - overlap
    tail = text[cut:]

    if not text[cut - 1].isspace() and not tail[0].isspace():
        # Cut landed inside a word, skip to the next whitespace
        match = WHITESPACE.search(tail)
        if not match:
            return ""
        tail = tail[match.end():]

    return tail.strip()


def estimate_tokens(text: str) -> int:
    """Rough token estimate (~4 characters per token)."""
    return int(math.ceil(len(text) / 4.0))


def validate_chunk_params(
    chunk_size: int,
    chunk_overlap: int,
    min_chunk_size: int = 100,
    max_chunk_size: int = 5000,
) -> None:
    """
    Reject chunking parameters before any work starts.

    Raises:
        ValidationError: chunk_size outside [min, max] or overlap outside
            [0, chunk_size / 2)
    """
    errors = []

    if chunk_size < min_chunk_size or chunk_size > max_chunk_size:
        errors.append(
            f"Chunk size must be between {min_chunk_size} and {max_chunk_size}, got {chunk_size}"
        )

    if chunk_overlap < 0 or chunk_overlap * 2 >= chunk_size:
        errors.append(
            f"Chunk overlap must be at least 0 and less than {chunk_size / 2:g}, got {chunk_overlap}"
        )

    if errors:
        raise ValidationError("Invalid chunking parameters", errors)


class SentenceChunker:
    """Packs whole sentences into overlapping, size-bounded chunks."""

    def __init__(self, min_chunk_size: int = 100, max_chunk_size: int = 5000):
        """
        Initialize chunker.

        Args:
            min_chunk_size: Smallest accepted chunk size
            max_chunk_size: Largest accepted chunk size
        """
        self.min_chunk_size = min_chunk_size
        self.max_chunk_size = max_chunk_size

    def validate(self, chunk_size: int, chunk_overlap: int) -> None:
        """Validate parameters against this chunker's bounds."""
        validate_chunk_params(
            chunk_size,
            chunk_overlap,
            min_chunk_size=self.min_chunk_size,
            max_chunk_size=self.max_chunk_size,
        )

    def chunk(self, text: Optional[str], chunk_size: int, chunk_overlap: int) -> List[Chunk]:
        """
        Split text into chunks.

        Sentences are accumulated while the joined length stays within
        ``chunk_size``. On overflow the chunk is closed and the next one is
        seeded with the word-aligned tail of the closed chunk. A sentence
        longer than ``chunk_size`` is emitted as its own chunk instead of
        being cut.

        Args:
            text: Text to chunk
            chunk_size: Target chunk size in characters
            chunk_overlap: Overlap carried into the next chunk

        Returns:
            Ordered list of chunks (empty for blank input)
        """
        if not text or not text.strip():
            return []

        texts: List[str] = []
        current: List[str] = []
        current_length = 0

        for sentence in split_sentences(text):
            projected = current_length + (1 if current else 0) + len(sentence)

            if current and projected > chunk_size:
                closed = " ".join(current)
                texts.append(closed)

                seed = overlap_seed(closed, chunk_overlap)
                if seed and len(seed) + 1 + len(sentence) <= chunk_size:
                    current = [seed]
                    current_length = len(seed)
                else:
                    # Seed and sentence do not fit together; start clean
                    current = []
                    current_length = 0

            current_length += (1 if current else 0) + len(sentence)
            current.append(sentence)

        if current:
            texts.append(" ".join(current))

        return [
            Chunk(index=idx, text=chunk_text, token_count=estimate_tokens(chunk_text))
            for idx, chunk_text in enumerate(texts)
        ]

    def chunk_texts(self, text: Optional[str], chunk_size: int, chunk_overlap: int) -> List[str]:
        """Chunk and return only the chunk texts."""
        return [c.text for c in self.chunk(text, chunk_size, chunk_overlap)]
