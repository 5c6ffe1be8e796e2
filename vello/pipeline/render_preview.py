from __future__ import annotations

from pathlib import Path

import fitz  # PyMuPDF


def preview_zoom(width: float, height: float, min_px: int) -> float:
    """Scale that gives the page's short side at least ``min_px`` pixels, never below 1:1."""
    return max(1.0, min_px / float(min(width, height)))


def render_preview(pdf_path: Path, out_path: Path, page_index: int = 0, min_px: int = 1200) -> Path:
    """Rasterise one page of a generated PDF to PNG."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with fitz.open(str(pdf_path)) as doc:
        if not 0 <= page_index < doc.page_count:
            raise ValueError(f"Page {page_index} out of range (document has {doc.page_count})")
        page = doc.load_page(page_index)
        zoom = preview_zoom(page.rect.width, page.rect.height, min_px)
        page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False).save(str(out_path))
    return out_path
