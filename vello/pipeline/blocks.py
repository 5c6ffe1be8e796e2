from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Union

from .. import config
from ..errors import TemplateValidationError


BLOCK_TYPES = ("text", "table", "image", "container", "divider", "spacer")
FONT_WEIGHTS = ("normal", "medium", "semibold", "bold")
TEXT_ALIGNS = ("left", "center", "right")
VERTICAL_ALIGNS = ("top", "middle", "bottom")
BORDER_STYLES = ("solid", "dashed", "dotted")
OBJECT_FITS = ("cover", "contain", "fill")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


@dataclass(frozen=True)
class BlockStyle:
    x: float
    y: float
    width: float
    height: float
    padding_top: Optional[float] = None
    padding_bottom: Optional[float] = None
    padding_left: Optional[float] = None
    padding_right: Optional[float] = None
    font_size: Optional[float] = None
    font_weight: Optional[str] = None
    font_family: Optional[str] = None
    text_align: Optional[str] = None
    vertical_align: Optional[str] = None
    color: Optional[str] = None
    line_height: Optional[float] = None
    background_color: Optional[str] = None
    border_width: Optional[float] = None
    border_color: Optional[str] = None
    border_radius: Optional[float] = None
    border_style: Optional[str] = None


@dataclass(frozen=True)
class CellStyle:
    font_size: Optional[float] = None
    font_weight: Optional[str] = None
    text_align: Optional[str] = None
    color: Optional[str] = None
    background_color: Optional[str] = None


@dataclass(frozen=True)
class TableCell:
    content: str = ""
    variable: Optional[str] = None
    is_label: bool = False
    label_id: Optional[str] = None
    col_span: Optional[int] = None
    row_span: Optional[int] = None
    style: Optional[CellStyle] = None


@dataclass(frozen=True)
class TableRow:
    cells: List[TableCell] = field(default_factory=list)
    is_header: bool = False


@dataclass(frozen=True)
class TextProperties:
    content: str = ""
    placeholder: Optional[str] = None


@dataclass(frozen=True)
class TableProperties:
    rows: List[TableRow] = field(default_factory=list)
    show_borders: bool = False
    striped_rows: bool = False
    compact: bool = False
    header_background: Optional[str] = None


@dataclass(frozen=True)
class ImageProperties:
    src: str = ""
    alt: Optional[str] = None
    width: Optional[str] = None
    height: Optional[str] = None
    object_fit: Optional[str] = None


@dataclass(frozen=True)
class ContainerProperties:
    direction: Optional[str] = None
    gap: Optional[float] = None
    justify_content: Optional[str] = None
    align_items: Optional[str] = None
    children: List["Block"] = field(default_factory=list)


@dataclass(frozen=True)
class DividerProperties:
    thickness: Optional[float] = None
    color: Optional[str] = None
    style: Optional[str] = None


@dataclass(frozen=True)
class SpacerProperties:
    height: float = 20


BlockProperties = Union[
    TextProperties,
    TableProperties,
    ImageProperties,
    ContainerProperties,
    DividerProperties,
    SpacerProperties,
]

PROPERTY_TYPES: Dict[str, type] = {
    "text": TextProperties,
    "table": TableProperties,
    "image": ImageProperties,
    "container": ContainerProperties,
    "divider": DividerProperties,
    "spacer": SpacerProperties,
}


@dataclass(frozen=True)
class Block:
    id: str
    type: str
    properties: BlockProperties
    style: BlockStyle
    # properties keys this model does not know about, kept for round trips
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TemplateVariable:
    key: str
    label: str
    category: str


@dataclass(frozen=True)
class GlobalStyles:
    font_family: str = config.DEFAULT_GLOBAL_STYLES["fontFamily"]
    font_size: float = config.DEFAULT_GLOBAL_STYLES["fontSize"]
    primary_color: str = config.DEFAULT_GLOBAL_STYLES["primaryColor"]
    secondary_color: str = config.DEFAULT_GLOBAL_STYLES["secondaryColor"]


@dataclass(frozen=True)
class TemplateSchema:
    blocks: List[Block] = field(default_factory=list)
    variables: List[TemplateVariable] = field(default_factory=list)
    global_styles: GlobalStyles = field(default_factory=GlobalStyles)


# ---------------------------------------------------------------------------
# validation
# ---------------------------------------------------------------------------

_STYLE_ENUMS = {
    "fontWeight": FONT_WEIGHTS,
    "textAlign": TEXT_ALIGNS,
    "verticalAlign": VERTICAL_ALIGNS,
    "borderStyle": BORDER_STYLES,
}
_STYLE_NUMBERS = (
    "paddingTop",
    "paddingBottom",
    "paddingLeft",
    "paddingRight",
    "fontSize",
    "lineHeight",
    "borderWidth",
    "borderRadius",
)
_STYLE_STRINGS = ("fontFamily", "color", "backgroundColor", "borderColor")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_style(style: Any, where: str, errors: List[str]) -> None:
    if not isinstance(style, dict):
        errors.append(f"{where}.style must be an object")
        return
    for key in ("x", "y", "width", "height"):
        if not _is_number(style.get(key)):
            errors.append(f"{where}.style.{key} must be a number")
    for key in _STYLE_NUMBERS:
        if key in style and style[key] is not None and not _is_number(style[key]):
            errors.append(f"{where}.style.{key} must be a number")
    for key in _STYLE_STRINGS:
        if key in style and style[key] is not None and not isinstance(style[key], str):
            errors.append(f"{where}.style.{key} must be a string")
    for key, allowed in _STYLE_ENUMS.items():
        value = style.get(key)
        if value is not None and value not in allowed:
            errors.append(f"{where}.style.{key} must be one of {', '.join(allowed)}")


def _validate_cell(cell: Any, where: str, errors: List[str]) -> None:
    if not isinstance(cell, dict):
        errors.append(f"{where} must be an object")
        return
    content = cell.get("content")
    if content is not None and not (isinstance(content, str) or _is_number(content)):
        errors.append(f"{where}.content must be a string")
    for key in ("variable", "labelId"):
        if cell.get(key) is not None and not isinstance(cell[key], str):
            errors.append(f"{where}.{key} must be a string")
    for key in ("colSpan", "rowSpan"):
        span = cell.get(key)
        if span is not None and (not isinstance(span, int) or isinstance(span, bool) or span < 1):
            errors.append(f"{where}.{key} must be a positive integer")
    if cell.get("isLabel") is not None and not isinstance(cell["isLabel"], bool):
        errors.append(f"{where}.isLabel must be a boolean")
    style = cell.get("style")
    if style is not None and not isinstance(style, dict):
        errors.append(f"{where}.style must be an object")


def _validate_block(block: Any, where: str, errors: List[str]) -> None:
    if not isinstance(block, dict):
        errors.append(f"{where} must be an object")
        return
    if not isinstance(block.get("id"), str):
        errors.append(f"{where}.id must be a string")
    block_type = block.get("type")
    if block_type not in BLOCK_TYPES:
        errors.append(f"{where}.type must be one of {', '.join(BLOCK_TYPES)}")
    properties = block.get("properties")
    if not isinstance(properties, dict):
        errors.append(f"{where}.properties must be an object")
        properties = {}
    _validate_style(block.get("style"), where, errors)

    if block_type == "text":
        content = properties.get("content")
        if content is not None and not isinstance(content, str):
            errors.append(f"{where}.properties.content must be a string")
    elif block_type == "table":
        rows = properties.get("rows", [])
        if not isinstance(rows, list):
            errors.append(f"{where}.properties.rows must be a list")
        else:
            for r, row in enumerate(rows):
                if not isinstance(row, dict) or not isinstance(row.get("cells", []), list):
                    errors.append(f"{where}.properties.rows[{r}].cells must be a list")
                    continue
                for c, cell in enumerate(row.get("cells", [])):
                    _validate_cell(cell, f"{where}.properties.rows[{r}].cells[{c}]", errors)
    elif block_type == "image":
        src = properties.get("src")
        if src is not None and not isinstance(src, str):
            errors.append(f"{where}.properties.src must be a string")
        fit = properties.get("objectFit")
        if fit is not None and fit not in OBJECT_FITS:
            errors.append(f"{where}.properties.objectFit must be one of {', '.join(OBJECT_FITS)}")
    elif block_type == "divider":
        thickness = properties.get("thickness")
        if thickness is not None and not _is_number(thickness):
            errors.append(f"{where}.properties.thickness must be a number")
    elif block_type == "spacer":
        height = properties.get("height")
        if height is not None and not _is_number(height):
            errors.append(f"{where}.properties.height must be a number")
    elif block_type == "container":
        children = properties.get("children") or []
        if not isinstance(children, list):
            errors.append(f"{where}.properties.children must be a list")
        else:
            for c, child in enumerate(children):
                _validate_block(child, f"{where}.children[{c}]", errors)


def validate_schema(data: Any) -> List[str]:
    errors: List[str] = []
    if not isinstance(data, dict):
        return ["schema must be an object"]
    blocks = data.get("blocks")
    if not isinstance(blocks, list):
        errors.append("blocks must be a list")
        blocks = []
    if len(blocks) > config.MAX_BLOCKS:
        errors.append(f"Maximum {config.MAX_BLOCKS} blocks allowed")
    for i, block in enumerate(blocks):
        _validate_block(block, f"blocks[{i}]", errors)

    variables = data.get("variables")
    if variables is not None:
        if not isinstance(variables, list):
            errors.append("variables must be a list")
        else:
            for i, variable in enumerate(variables):
                if not isinstance(variable, dict) or not all(
                    isinstance(variable.get(k), str) for k in ("key", "label", "category")
                ):
                    errors.append(f"variables[{i}] needs string key, label and category")

    global_styles = data.get("globalStyles")
    if not isinstance(global_styles, dict):
        errors.append("globalStyles must be an object")
    else:
        if not isinstance(global_styles.get("fontFamily"), str):
            errors.append("globalStyles.fontFamily must be a string")
        if not _is_number(global_styles.get("fontSize")):
            errors.append("globalStyles.fontSize must be a number")
        if not isinstance(global_styles.get("primaryColor"), str):
            errors.append("globalStyles.primaryColor must be a string")
        secondary = global_styles.get("secondaryColor")
        if secondary is not None and not isinstance(secondary, str):
            errors.append("globalStyles.secondaryColor must be a string")
    return errors


def validate_paper(paper_size: str, orientation: str) -> List[str]:
    errors: List[str] = []
    if paper_size not in config.PAPER_SIZES:
        errors.append(f"paperSize must be one of {', '.join(config.PAPER_SIZES)}")
    if orientation not in config.ORIENTATIONS:
        errors.append(f"orientation must be one of {', '.join(config.ORIENTATIONS)}")
    return errors


# ---------------------------------------------------------------------------
# dict <-> dataclass
# ---------------------------------------------------------------------------


def _pick(cls: type, data: Dict[str, Any], skip: tuple = ()) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {}
    for f in fields(cls):
        if f.name in skip:
            continue
        key = _camel(f.name)
        if key in data and data[key] is not None:
            kwargs[f.name] = data[key]
    return kwargs


def _cell_from_dict(data: Dict[str, Any]) -> TableCell:
    kwargs = _pick(TableCell, data, skip=("style",))
    kwargs["content"] = "" if kwargs.get("content") is None else str(kwargs["content"])
    style = data.get("style")
    if isinstance(style, dict):
        kwargs["style"] = CellStyle(**_pick(CellStyle, style))
    return TableCell(**kwargs)


def _properties_from_dict(block_type: str, data: Dict[str, Any]) -> tuple:
    cls = PROPERTY_TYPES[block_type]
    known = {_camel(f.name) for f in fields(cls)}
    extra = {k: v for k, v in data.items() if k not in known}
    if block_type == "table":
        kwargs = _pick(cls, data, skip=("rows",))
        kwargs["rows"] = [
            TableRow(
                cells=[_cell_from_dict(c) for c in row.get("cells", [])],
                is_header=bool(row.get("isHeader", False)),
            )
            for row in data.get("rows", [])
        ]
    elif block_type == "container":
        kwargs = _pick(cls, data, skip=("children",))
        kwargs["children"] = [block_from_dict(c) for c in data.get("children") or []]
    else:
        kwargs = _pick(cls, data)
    return cls(**kwargs), extra


def block_from_dict(data: Dict[str, Any]) -> Block:
    properties, extra = _properties_from_dict(data["type"], data.get("properties") or {})
    style = data["style"]
    style_kwargs = _pick(BlockStyle, style)
    for key in ("x", "y", "width", "height"):
        style_kwargs[key] = float(style[key])
    return Block(
        id=data["id"],
        type=data["type"],
        properties=properties,
        style=BlockStyle(**style_kwargs),
        extra=extra,
    )


def schema_from_dict(data: Dict[str, Any]) -> TemplateSchema:
    errors = validate_schema(data)
    if errors:
        raise TemplateValidationError(errors)
    global_styles = data["globalStyles"]
    return TemplateSchema(
        blocks=[block_from_dict(b) for b in data["blocks"]],
        variables=[
            TemplateVariable(key=v["key"], label=v["label"], category=v["category"])
            for v in data.get("variables") or []
        ],
        global_styles=GlobalStyles(**_pick(GlobalStyles, global_styles)),
    )


def _dump(obj: Any) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if value is None:
            continue
        out[_camel(f.name)] = value
    return out


def block_to_dict(block: Block) -> Dict[str, Any]:
    props = block.properties
    if isinstance(props, TableProperties):
        properties = _dump(props)
        properties["rows"] = [
            {
                "cells": [
                    {
                        **{k: v for k, v in _dump(cell).items() if k != "style"},
                        **({"style": _dump(cell.style)} if cell.style else {}),
                    }
                    for cell in row.cells
                ],
                **({"isHeader": True} if row.is_header else {}),
            }
            for row in props.rows
        ]
    elif isinstance(props, ContainerProperties):
        properties = _dump(props)
        properties["children"] = [block_to_dict(child) for child in props.children]
    else:
        properties = _dump(props)
    properties.update(block.extra)
    return {
        "id": block.id,
        "type": block.type,
        "properties": properties,
        "style": _dump(block.style),
    }


def schema_to_dict(schema: TemplateSchema) -> Dict[str, Any]:
    return {
        "blocks": [block_to_dict(b) for b in schema.blocks],
        "variables": [_dump(v) for v in schema.variables],
        "globalStyles": _dump(schema.global_styles),
    }


def iter_blocks(blocks: List[Block]):
    """Depth-first walk over a block list, descending into containers."""
    for block in blocks:
        yield block
        if isinstance(block.properties, ContainerProperties):
            yield from iter_blocks(block.properties.children)
