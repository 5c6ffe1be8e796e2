from __future__ import annotations

import io
import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List, Optional, Tuple, Union

from reportlab.lib import colors
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfgen import canvas

from .. import config
from .blocks import (
    Block,
    BlockStyle,
    ContainerProperties,
    DividerProperties,
    GlobalStyles,
    ImageProperties,
    TableCell,
    TableProperties,
    TextProperties,
)
from .images import decode_data_url, is_remote, is_valid_image_source

logger = logging.getLogger(__name__)

Frame = Tuple[float, float, float, float]

_NUMERIC_DIMENSION = re.compile(r"^\d+(\.\d+)?$")


def px(value: Optional[float]) -> float:
    return float(value or 0) * config.PX_TO_PT


def page_size(paper_size: str = "A4", orientation: str = "PORTRAIT") -> Tuple[float, float]:
    width, height = config.PAPER_SIZES.get(paper_size, config.PAPER_SIZES["A4"])
    if orientation == "LANDSCAPE":
        return height, width
    return width, height


def _hex(value: Optional[str], default=colors.black):
    if not value or value == "transparent":
        return default
    text = str(value).strip()
    if re.fullmatch(r"#?[0-9a-fA-F]{3}", text):
        text = "#" + "".join(ch * 2 for ch in text.lstrip("#"))
    try:
        return colors.toColor(text)
    except ValueError:
        return default


def _font(weight: Optional[str]) -> str:
    # fontFamily is not embedded; everything renders in the Helvetica family
    return "Helvetica-Bold" if weight in ("semibold", "bold") else "Helvetica"


def _apply_dash(canv: canvas.Canvas, border_style: Optional[str], width: float) -> None:
    unit = max(width, 0.5)
    if border_style == "dashed":
        canv.setDash(unit * 3, unit * 2)
    elif border_style == "dotted":
        canv.setDash(unit, unit)
    else:
        canv.setDash()


def _frame(style: BlockStyle, ph: float) -> Frame:
    """Block rectangle in PDF space (origin bottom-left)."""
    w = px(style.width)
    h = px(style.height)
    return px(style.x), ph - px(style.y) - h, w, h


def _content_frame(style: BlockStyle, frame: Frame) -> Frame:
    x, y, w, h = frame
    left, right = px(style.padding_left), px(style.padding_right)
    top, bottom = px(style.padding_top), px(style.padding_bottom)
    return x + left, y + bottom, max(0.0, w - left - right), max(0.0, h - top - bottom)


def _draw_box(canv: canvas.Canvas, style: BlockStyle, frame: Frame) -> None:
    x, y, w, h = frame
    fill = _hex(style.background_color, None)
    border = px(style.border_width)
    if fill is None and border <= 0:
        return
    canv.saveState()
    if fill is not None:
        canv.setFillColor(fill)
    if border > 0:
        canv.setStrokeColor(_hex(style.border_color or style.color, colors.black))
        canv.setLineWidth(border)
        _apply_dash(canv, style.border_style, border)
        # CSS borders sit inside the box; PDF strokes straddle the path
        x, y, w, h = x + border / 2, y + border / 2, w - border, h - border
    radius = px(style.border_radius)
    if radius > 0:
        canv.roundRect(x, y, w, h, radius, stroke=int(border > 0), fill=int(fill is not None))
    else:
        canv.rect(x, y, w, h, stroke=int(border > 0), fill=int(fill is not None))
    canv.restoreState()


def _clip(canv: canvas.Canvas, frame: Frame) -> None:
    x, y, w, h = frame
    path = canv.beginPath()
    path.rect(x, y, w, h)
    canv.clipPath(path, stroke=0, fill=0)


def _wrap_words(canv: canvas.Canvas, text: str, font_name: str, font_size: float, max_width: float) -> List[str]:
    """Word wrap that keeps explicit newlines; a word wider than the box gets its own line."""
    lines: List[str] = []
    for paragraph in (text or "").split("\n"):
        words = paragraph.split()
        if not words:
            lines.append("")
            continue
        cur: List[str] = []
        for w in words:
            test = " ".join(cur + [w])
            if canv.stringWidth(test, font_name, font_size) <= max_width:
                cur.append(w)
                continue
            if cur:
                lines.append(" ".join(cur))
                cur = [w]
            else:
                lines.append(w)
        if cur:
            lines.append(" ".join(cur))
    return lines


def _draw_lines(
    canv: canvas.Canvas,
    lines: List[str],
    frame: Frame,
    font_name: str,
    font_size: float,
    leading: float,
    align: Optional[str],
    valign: Optional[str] = "top",
) -> None:
    x, y, w, h = frame
    total = leading * len(lines)
    offset = 0.0
    if valign == "middle":
        offset = max(0.0, (h - total) / 2)
    elif valign == "bottom":
        offset = max(0.0, h - total)
    ascent = pdfmetrics.getAscent(font_name, font_size)
    baseline = y + h - offset - (leading - font_size) / 2 - ascent
    canv.setFont(font_name, font_size)
    for line in lines:
        if align == "center":
            canv.drawCentredString(x + w / 2, baseline, line)
        elif align == "right":
            canv.drawRightString(x + w, baseline, line)
        else:
            canv.drawString(x, baseline, line)
        baseline -= leading


def _render_text(canv: canvas.Canvas, block: Block, gs: GlobalStyles, ph: float) -> None:
    props: TextProperties = block.properties
    style = block.style
    frame = _frame(style, ph)
    _draw_box(canv, style, frame)

    content = props.content or ""
    if not content:
        return
    font_name = _font(style.font_weight)
    font_size = px(style.font_size if style.font_size is not None else gs.font_size)
    leading = font_size * (style.line_height or 1.2)
    inner = _content_frame(style, frame)

    canv.saveState()
    _clip(canv, frame)
    canv.setFillColor(_hex(style.color or gs.primary_color))
    lines = _wrap_words(canv, content, font_name, font_size, inner[2])
    _draw_lines(canv, lines, inner, font_name, font_size, leading, style.text_align, style.vertical_align)
    canv.restoreState()


def _cell_font(cell: TableCell, is_header: bool) -> str:
    weight = cell.style.font_weight if cell.style and cell.style.font_weight else None
    return _font(weight or ("semibold" if is_header else "normal"))


def _render_table(canv: canvas.Canvas, block: Block, gs: GlobalStyles, ph: float) -> None:
    props: TableProperties = block.properties
    style = block.style
    x, _, w, _ = _frame(style, ph)
    top = ph - px(style.y)
    pad = px(2 if props.compact else 6)
    rule = px(1) if props.show_borders else 0.0
    base_size = style.font_size if style.font_size is not None else 10
    base_color = style.color or gs.primary_color

    # measure: cells share the row width by colSpan weight, rows fit their tallest cell
    layout = []
    for row in props.rows:
        weights = [max(1, int(cell.col_span or 1)) for cell in row.cells]
        total = max(1e-6, float(sum(weights)))
        widths = [w * (weight / total) for weight in weights]
        measured = []
        row_h = 2 * pad + px(base_size) * 1.2
        for cell, cell_w in zip(row.cells, widths):
            size = px(cell.style.font_size if cell.style and cell.style.font_size is not None else base_size)
            font_name = _cell_font(cell, row.is_header)
            lines = _wrap_words(canv, cell.content or "", font_name, size, max(1.0, cell_w - 2 * pad))
            row_h = max(row_h, len(lines) * size * 1.2 + 2 * pad)
            measured.append((cell, cell_w, font_name, size, lines))
        layout.append((row, measured, row_h))

    table_h = sum(row_h for _, _, row_h in layout)
    outer = (x, top - table_h, w, table_h)
    if props.show_borders:
        _draw_box(canv, replace(style, border_width=1, border_color=config.BORDER_COLOR, border_style="solid"), outer)
    else:
        _draw_box(canv, style, outer)

    cursor = top
    for index, (row, measured, row_h) in enumerate(layout):
        row_y = cursor - row_h
        fill = None
        if row.is_header:
            fill = props.header_background or config.HEADER_BACKGROUND
        elif props.striped_rows and index % 2 == 1:
            fill = config.STRIPE_BACKGROUND
        if fill:
            canv.saveState()
            canv.setFillColor(_hex(fill, colors.white))
            canv.rect(x, row_y, w, row_h, stroke=0, fill=1)
            canv.restoreState()

        cx = x
        for position, (cell, cell_w, font_name, size, lines) in enumerate(measured):
            cell_style = cell.style
            if cell_style and cell_style.background_color:
                canv.saveState()
                canv.setFillColor(_hex(cell_style.background_color, colors.white))
                canv.rect(cx, row_y, cell_w, row_h, stroke=0, fill=1)
                canv.restoreState()
            canv.saveState()
            canv.setFillColor(_hex((cell_style.color if cell_style else None) or base_color))
            inner = (cx + pad, row_y + pad, max(0.0, cell_w - 2 * pad), max(0.0, row_h - 2 * pad))
            _draw_lines(canv, lines, inner, font_name, size, size * 1.2, cell_style.text_align if cell_style else None)
            canv.restoreState()
            if rule and position < len(measured) - 1:
                canv.saveState()
                canv.setStrokeColor(_hex(config.BORDER_COLOR))
                canv.setLineWidth(rule)
                canv.line(cx + cell_w, row_y, cx + cell_w, cursor)
                canv.restoreState()
            cx += cell_w

        if rule:
            canv.saveState()
            canv.setStrokeColor(_hex(config.BORDER_COLOR))
            canv.setLineWidth(rule)
            canv.line(x, row_y, x + w, row_y)
            canv.restoreState()
        cursor = row_y


def _parse_dimension(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    text = str(value).strip()
    if _NUMERIC_DIMENSION.match(text):
        return px(float(text))
    return None


def _resolve_local(src: str) -> Path:
    relative = config.ASSET_DIR / src.lstrip("/")
    if relative.exists():
        return relative
    return Path(src)


def _image_reader(src: str) -> Optional[ImageReader]:
    try:
        if src.startswith("data:"):
            _, payload = decode_data_url(src)
            reader = ImageReader(io.BytesIO(payload))
        else:
            reader = ImageReader(str(_resolve_local(src)))
        reader.getSize()
        return reader
    except (OSError, ValueError) as exc:
        logger.warning("Unreadable image source %s: %s", src[:50], exc)
        return None


def _fit(object_fit: Optional[str], iw: float, ih: float, bw: float, bh: float) -> Tuple[float, float]:
    if object_fit == "fill" or iw <= 0 or ih <= 0:
        return bw, bh
    scale = max(bw / iw, bh / ih) if object_fit == "cover" else min(bw / iw, bh / ih)
    return iw * scale, ih * scale


def _render_image(canv: canvas.Canvas, block: Block, gs: GlobalStyles, ph: float) -> None:
    props: ImageProperties = block.properties
    src = props.src or ""
    if not src:
        return
    if not is_valid_image_source(src):
        logger.warning("Invalid image source skipped: %s", src[:50])
        return
    if is_remote(src):
        logger.warning("Remote image not embedded, skipped: %s", src[:80])
        return
    reader = _image_reader(src)
    if reader is None:
        return

    style = block.style
    frame = _frame(style, ph)
    _draw_box(canv, style, frame)
    cx, cy, cw, ch = _content_frame(style, frame)
    box_w = _parse_dimension(props.width) or cw
    box_h = _parse_dimension(props.height) or ch
    box_top = cy + ch
    iw, ih = reader.getSize()
    draw_w, draw_h = _fit(props.object_fit or "contain", float(iw), float(ih), box_w, box_h)
    dx = cx + (box_w - draw_w) / 2
    dy = box_top - box_h + (box_h - draw_h) / 2

    canv.saveState()
    _clip(canv, frame)
    if props.object_fit == "cover":
        _clip(canv, (cx, box_top - box_h, box_w, box_h))
    canv.drawImage(reader, dx, dy, draw_w, draw_h, mask="auto")
    canv.restoreState()


def _render_container(canv: canvas.Canvas, block: Block, gs: GlobalStyles, ph: float) -> None:
    props: ContainerProperties = block.properties
    if not props.children:
        _draw_box(canv, block.style, _frame(block.style, ph))
        return
    # children carry container-relative positions
    for child in props.children:
        absolute = replace(
            child,
            style=replace(child.style, x=block.style.x + child.style.x, y=block.style.y + child.style.y),
        )
        render_block(canv, absolute, gs, ph)


def _render_divider(canv: canvas.Canvas, block: Block, gs: GlobalStyles, ph: float) -> None:
    props: DividerProperties = block.properties
    frame = _frame(block.style, ph)
    _draw_box(canv, block.style, frame)
    x, y, w, _ = frame
    thickness = px(props.thickness if props.thickness is not None else 1)
    if thickness <= 0:
        return
    canv.saveState()
    canv.setStrokeColor(_hex(props.color or config.BORDER_COLOR))
    canv.setLineWidth(thickness)
    _apply_dash(canv, props.style, thickness)
    canv.line(x, y + thickness / 2, x + w, y + thickness / 2)
    canv.restoreState()


def _render_spacer(canv: canvas.Canvas, block: Block, gs: GlobalStyles, ph: float) -> None:
    return None


BLOCK_RENDERERS: Dict[str, Callable[[canvas.Canvas, Block, GlobalStyles, float], None]] = {
    "text": _render_text,
    "table": _render_table,
    "image": _render_image,
    "container": _render_container,
    "divider": _render_divider,
    "spacer": _render_spacer,
}


def render_block(canv: canvas.Canvas, block: Block, gs: GlobalStyles, ph: float) -> None:
    fn = BLOCK_RENDERERS.get(block.type)
    if fn is None:
        logger.debug("No renderer for block type %s", block.type)
        return
    fn(canv, block, gs, ph)


def render_pdf(
    pages: List[List[Block]],
    global_styles: GlobalStyles,
    output: Union[Path, str, BinaryIO],
    paper_size: str = "A4",
    orientation: str = "PORTRAIT",
    title: Optional[str] = None,
) -> None:
    """Draw each block list onto its own fixed-size page."""
    size = page_size(paper_size, orientation)
    target = str(output) if isinstance(output, (str, Path)) else output
    canv = canvas.Canvas(target, pagesize=size)
    if title:
        canv.setTitle(title)
    _, ph = size
    for blocks in pages or [[]]:
        for block in blocks:
            render_block(canv, block, global_styles, ph)
        canv.showPage()
    canv.save()


def render_pdf_bytes(
    pages: List[List[Block]],
    global_styles: GlobalStyles,
    paper_size: str = "A4",
    orientation: str = "PORTRAIT",
    title: Optional[str] = None,
) -> bytes:
    buffer = io.BytesIO()
    render_pdf(pages, global_styles, buffer, paper_size=paper_size, orientation=orientation, title=title)
    return buffer.getvalue()
