from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from crm_assistant.conversation.types import ASSISTANT, Message, TableData

logger = logging.getLogger(__name__)

LIST_TABLE_HEADER = "Öğeler"

TABLE_MARKER_PATTERN = re.compile(r"\[TABLE:(.*?)\]", re.DOTALL)
LIST_ITEM_PATTERN = re.compile(r"^(\d+\.|[-*•]) .+")
LIST_MARKER_PATTERN = re.compile(r"^\s*(\d+\.|[-*•])\s*")
SEPARATOR_CELL_PATTERN = re.compile(r"^:?-+:?$")
SUMMARY_PATTERN = re.compile(r"Toplam (\d+) (.*?) bulundu\.[\s\S]*?((?:- .*\n)+)")
MIN_LIST_ITEMS = 3


@dataclass
class StructureResult:
    is_table: bool
    table_data: Optional[TableData] = None


def strip_table_marker(text: str) -> str:
    """Text without the [TABLE: ...] marker, for display next to the table."""
    return TABLE_MARKER_PATTERN.sub("", text).strip()


def _split_pipe_row(line: str) -> List[str]:
    return [cell.strip() for cell in line.split("|") if cell.strip()]


def _is_separator_row(line: str) -> bool:
    cells = _split_pipe_row(line)
    return bool(cells) and all(SEPARATOR_CELL_PATTERN.match(c.replace(" ", "")) for c in cells)


def _from_marker(text: str) -> Optional[TableData]:
    m = TABLE_MARKER_PATTERN.search(text)
    if not m:
        return None
    segments = m.group(1).split("|")
    if len(segments) < 2:
        return None
    headers = [h.strip() for h in segments[0].split(",")]
    rows = [[c.strip() for c in seg.split(",")] for seg in segments[1:]]
    return TableData(headers=headers, rows=rows)


def _from_markdown(lines: List[str]) -> Optional[TableData]:
    table_lines = [line for line in lines if "|" in line]
    if len(table_lines) < 2:
        return None
    headers = _split_pipe_row(table_lines[0])
    rows = [
        _split_pipe_row(line)
        for line in table_lines[1:]
        if not _is_separator_row(line) and _split_pipe_row(line)
    ]
    if not headers or not rows:
        return None
    return TableData(headers=headers, rows=rows)


def _from_list(lines: List[str]) -> Optional[TableData]:
    """Three or more bullet or numbered lines become one "Öğeler" (items) column."""
    items = [line.strip() for line in lines if LIST_ITEM_PATTERN.match(line.strip())]
    if len(items) < MIN_LIST_ITEMS:
        return None
    rows = [[LIST_MARKER_PATTERN.sub("", item, count=1).strip()] for item in items]
    return TableData(headers=[LIST_TABLE_HEADER], rows=rows, title=LIST_TABLE_HEADER)


def detect_structure(text: str) -> StructureResult:
    """
    Recover a table from free model output.

    Tried in order: an explicit [TABLE: h1,h2|a,b|c,d] marker, a markdown
    pipe table (separator rows skipped), then three or more bullet or
    numbered lines as a single-column table. Rows are not checked against
    the header length.
    """
    if not text:
        return StructureResult(is_table=False)

    table = _from_marker(text)
    if table is None:
        lines = [line for line in text.split("\n") if line.strip()]
        table = _from_markdown(lines) or _from_list(lines)

    if table is None:
        return StructureResult(is_table=False)
    return StructureResult(is_table=True, table_data=table)


def parse_summary_table(text: str) -> Optional[TableData]:
    """
    Table from a "Toplam N <noun> bulundu." block followed by "- key: value,
    key: value" bullets. Headers come from the keys of the first bullet.
    """
    m = SUMMARY_PATTERN.search(text if text.endswith("\n") else text + "\n")
    if not m:
        return None

    raw_rows = [
        [cell.strip() for cell in re.split(r",\s+", re.sub(r"^- ", "", line))]
        for line in m.group(3).strip().split("\n")
    ]
    headers = [cell.split(":", 1)[0].strip() if ":" in cell else cell for cell in raw_rows[0]]
    rows = [[cell.split(":", 1)[1].strip() if ":" in cell else cell for cell in row] for row in raw_rows]
    return TableData(headers=headers, rows=rows, title=m.group(2))


def package_response(text: str, retrieved: bool) -> Message:
    """Wrap model output as an assistant Message, attaching a table when one is found."""
    table = parse_summary_table(text) if retrieved else None
    if table is None:
        result = detect_structure(text)
        table = result.table_data if result.is_table else None

    if table is None:
        return Message(sender=ASSISTANT, text=text)
    logger.debug("Response carries a %d-row table", len(table.rows))
    return Message(sender=ASSISTANT, text=text, data_type="table", table_data=table)
