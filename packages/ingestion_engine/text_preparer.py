"""
Turns a RawGrid into numbered, redacted plain-text lines for extraction.

Only the header row and the rows below it are rendered; any bank preamble
above the header stays local. Data line ``n`` is always grid row
``header_row + n`` so extracted items can be traced back to their row.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from .models import Cell, HeaderLocation, RawGrid
from .redaction import Redactor
from .values import cell_to_text

HEADER_TAG = "HEADER:"


@dataclass(frozen=True)
class PreparedLine:
    line_index: int
    text: str

    def render(self) -> str:
        return f"{self.line_index}. {self.text}"


def render_text(header: Optional[str], lines: Iterable[PreparedLine]) -> str:
    parts = [header] if header else []
    parts.extend(line.render() for line in lines)
    return "\n".join(parts)


@dataclass(frozen=True)
class PreparedStatement:
    header: Optional[str]
    lines: Tuple[PreparedLine, ...]

    @property
    def text(self) -> str:
        return render_text(self.header, self.lines)

    def __len__(self) -> int:
        return len(self.text)


def render_row(row: Sequence[Cell]) -> str:
    joined = " | ".join(cell_to_text(cell) for cell in row)
    return re.sub(r"\s+", " ", joined).strip()


def prepare_statement(
    grid: RawGrid, location: HeaderLocation, redactor: Redactor
) -> PreparedStatement:
    header_row = location.row_index
    header = None
    header_text = render_row(grid.row(header_row))
    if header_text:
        header = f"{HEADER_TAG} {redactor.redact(header_text)}"

    lines = []
    for row_index in range(header_row + 1, len(grid)):
        text = render_row(grid.row(row_index))
        if not text:
            continue
        lines.append(PreparedLine(row_index - header_row, redactor.redact(text)))

    return PreparedStatement(header=header, lines=tuple(lines))
