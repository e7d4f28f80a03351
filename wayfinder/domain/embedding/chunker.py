from typing import List, Optional, Sequence
import re

import numpy as np

from wayfinder.domain.errors import DimensionMismatchError
from wayfinder.domain.models.memory import Chunk, utc_now

_SENTENCE_BOUNDARY = re.compile(r"[.!?]+")


def byte_size(text: str) -> int:
    return len(text.encode("utf-8"))


class TextChunker:
    """Splits oversized text into sentence-aligned chunks under a byte limit"""

    min_sentence_chars = 20
    min_chunk_chars = 100
    min_tail_chars = 50

    def __init__(self, chunk_bytes: int):
        if chunk_bytes <= 0:
            raise ValueError("chunk_bytes must be positive")
        self.chunk_bytes = chunk_bytes

    def split(self, text: str) -> List[str]:
        """Greedy sentence packing; falls back to byte windows when nothing packs"""

        sentences = [
            s.strip() for s in _SENTENCE_BOUNDARY.split(text)
            if len(s.strip()) > self.min_sentence_chars
        ]

        chunks: List[str] = []
        current = ""
        for sentence in sentences:
            addition = sentence + ". "
            if byte_size(current + addition) > self.chunk_bytes and len(current) > self.min_chunk_chars:
                chunks.append(current.strip())
                current = addition
            else:
                current += addition

        if len(current.strip()) > self.min_tail_chars:
            chunks.append(current.strip())

        if not chunks:
            return self.split_windows(text)

        # A single sentence can still be longer than the limit
        bounded: List[str] = []
        for chunk in chunks:
            if byte_size(chunk) > self.chunk_bytes:
                bounded.extend(self.split_windows(chunk))
            else:
                bounded.append(chunk)
        return bounded

    def split_windows(self, text: str) -> List[str]:
        """Fixed windows of at most chunk_bytes, never cutting a UTF-8 character"""

        windows: List[str] = []
        current: List[str] = []
        size = 0
        for ch in text:
            ch_size = byte_size(ch)
            if size + ch_size > self.chunk_bytes and current:
                windows.append("".join(current))
                current, size = [], 0
            current.append(ch)
            size += ch_size
        if current:
            windows.append("".join(current))
        return windows

    def chunk(self, text: str, url: Optional[str] = None) -> List[Chunk]:
        """Split into Chunk models tagged with url, index and timestamp"""

        timestamp = utc_now().isoformat()
        prefix = url or "text"
        return [
            Chunk(
                id=f"{prefix}#{index}",
                text=piece,
                metadata={"url": url, "index": index, "timestamp": timestamp},
            )
            for index, piece in enumerate(self.split(text))
        ]


def mean_pool(vectors: Sequence[Sequence[float]]) -> List[float]:
    """Element-wise arithmetic mean of equally sized vectors"""

    if not vectors:
        raise ValueError("cannot pool an empty list of vectors")

    width = len(vectors[0])
    for vector in vectors[1:]:
        if len(vector) != width:
            raise DimensionMismatchError(width, len(vector))

    return np.mean(np.asarray(vectors, dtype=np.float64), axis=0).tolist()
