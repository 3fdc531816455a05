"""Splits a prepared statement into size-bounded segments."""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from .text_preparer import PreparedLine, PreparedStatement, render_text


@dataclass(frozen=True)
class Chunk:
    header: Optional[str]
    lines: Tuple[PreparedLine, ...]

    @property
    def text(self) -> str:
        return render_text(self.header, self.lines)

    def __len__(self) -> int:
        return len(self.text)


def chunk_statement(statement: PreparedStatement, max_chars: int) -> List[Chunk]:
    """
    Pack lines into chunks of at most ``max_chars`` characters.

    The header is repeated at the top of every chunk and counts towards the
    limit. Lines are never split: a line that cannot fit even on its own is
    emitted as a single oversized chunk. Order is preserved and no line
    appears twice.
    """
    header = statement.header
    header_len = len(header) if header else 0

    chunks: List[Chunk] = []
    current: List[PreparedLine] = []
    current_len = header_len

    for line in statement.lines:
        added = len(line.render()) + (1 if current_len else 0)
        if current and current_len + added > max_chars:
            chunks.append(Chunk(header, tuple(current)))
            current = []
            current_len = header_len
            added = len(line.render()) + (1 if current_len else 0)
        current.append(line)
        current_len += added

    if current:
        chunks.append(Chunk(header, tuple(current)))
    return chunks


def segment_statement(
    statement: PreparedStatement, threshold: int, max_chars: int
) -> List[Chunk]:
    """Whole statement as one segment when small enough, else chunks."""
    if not statement.lines:
        return []
    if len(statement) <= threshold:
        return [Chunk(statement.header, statement.lines)]
    return chunk_statement(statement, max_chars)
