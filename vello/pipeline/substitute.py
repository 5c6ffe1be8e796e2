from __future__ import annotations

from dataclasses import replace
from typing import Any, List, Mapping, Optional

from .blocks import (
    Block,
    ContainerProperties,
    ImageProperties,
    TableProperties,
    TextProperties,
)
from .variables import PLACEHOLDER_RE, get_deep_value


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def lookup(data: Mapping[str, Any], placeholder: str, key: str) -> Optional[str]:
    """Resolve one placeholder: full ``{{key}}`` first, then ``key``, then a dotted path."""
    for candidate in (placeholder, key):
        if candidate in data and data[candidate] is not None:
            return _as_text(data[candidate])
    return _as_text(get_deep_value(data, key))


def substitute_text(text: str, data: Mapping[str, Any]) -> str:
    if not text:
        return text

    def repl(match) -> str:
        value = lookup(data, match.group(0), match.group(1))
        return match.group(0) if value is None else value

    return PLACEHOLDER_RE.sub(repl, text)


def _apply_table(props: TableProperties, data: Mapping[str, Any]) -> TableProperties:
    rows = []
    for row in props.rows:
        cells = []
        for cell in row.cells:
            bound = _as_text(data.get(cell.variable)) if cell.variable else None
            content = bound if bound is not None else substitute_text(cell.content, data)
            cells.append(replace(cell, content=content))
        rows.append(replace(row, cells=cells))
    return replace(props, rows=rows)


def apply_data_to_blocks(blocks: List[Block], data: Mapping[str, Any]) -> List[Block]:
    """Return a copy of ``blocks`` with ``{{variable}}`` placeholders filled from ``data``."""
    out: List[Block] = []
    for block in blocks:
        props = block.properties
        if isinstance(props, ContainerProperties):
            props = replace(props, children=apply_data_to_blocks(props.children, data))
        elif isinstance(props, TableProperties):
            props = _apply_table(props, data)
        elif isinstance(props, TextProperties):
            props = replace(props, content=substitute_text(props.content or "", data))
        elif isinstance(props, ImageProperties):
            props = replace(props, src=substitute_text(props.src or "", data))
        else:
            out.append(block)
            continue
        out.append(replace(block, properties=props))
    return out
