import uuid
from bisect import bisect_right
from typing import Iterator, List, Sequence, Tuple

from loguru import logger

from .models import Chunk

SENTENCE_END = (".", "!", "?")

def tokenize(s: str) -> List[str]:
    return (s or "").split()

def count_tokens(s: str) -> int:
    return len(tokenize(s))

def _sentence_boundary(tokens: Sequence[str], start: int, target_end: int,
                       min_chunk_size: int, lookback: int) -> int:
    # never cut before start + min_chunk_size, never look further back than `lookback`
    floor = max(start + min_chunk_size, target_end - lookback)
    for i in range(target_end - 1, floor - 1, -1):
        if tokens[i].endswith(SENTENCE_END):
            return i + 1
    return target_end

def chunk_windows(tokens: Sequence[str], chunk_size: int = 400, overlap: int = 50,
                  min_chunk_size: int = 100, lookback: int = 50) -> Iterator[Tuple[int, int]]:
    """Yield (start, end) token windows covering ``tokens`` in order."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    if overlap < 0:
        raise ValueError("overlap must be >= 0")
    n = len(tokens)
    if n == 0:
        return
    if n < min_chunk_size:
        yield 0, n
        return
    start = 0
    while start < n:
        end = min(start + chunk_size, n)
        if end < n:
            end = _sentence_boundary(tokens, start, end, min_chunk_size, lookback)
        if end - start < min_chunk_size and end < n:
            end = min(start + min_chunk_size, n)
        yield start, end
        if end >= n:
            break
        next_start = end - overlap
        if next_start <= start:
            next_start = end
        start = next_start

def page_for_token(token_index: int, page_ends: Sequence[int]) -> int:
    """1-based page whose cumulative token boundary first exceeds ``token_index``."""
    i = bisect_right(page_ends, token_index)
    return i + 1 if i < len(page_ends) else len(page_ends)

def chunk_id_for(document_id: str, page_number: int, chunk_index: int) -> str:
    return f"{document_id}_p{page_number}_c{chunk_index}_{uuid.uuid4().hex[:8]}"

def chunk_document(page_texts: Sequence[str], document_id: str, chunk_size: int = 400,
                   overlap: int = 50, min_chunk_size: int = 100,
                   lookback: int = 50) -> List[Chunk]:
    """Chunk a whole document across page boundaries.

    Pages are joined into one token stream; each chunk is attributed to the
    page holding its midpoint token.
    """
    tokens: List[str] = []
    page_ends: List[int] = []
    for text in page_texts:
        if text and text.strip():
            tokens.extend(tokenize(text))
        page_ends.append(len(tokens))

    if not tokens:
        return []

    chunks = []
    for idx, (start, end) in enumerate(
        chunk_windows(tokens, chunk_size, overlap, min_chunk_size, lookback)
    ):
        page = page_for_token((start + end) // 2, page_ends)
        chunks.append(Chunk(
            chunk_id=chunk_id_for(document_id, page, idx),
            document_id=document_id,
            content=" ".join(tokens[start:end]),
            page_number=page,
            chunk_index=idx,
            token_count=end - start,
        ))
        logger.debug(f"chunk {idx}: tokens {start}-{end - 1} on page {page}")

    logger.debug(f"{document_id}: {len(chunks)} chunks from {len(tokens)} tokens "
                 f"across {len(page_texts)} pages")
    return chunks
