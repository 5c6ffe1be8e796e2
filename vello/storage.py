from __future__ import annotations

from pathlib import Path
from typing import Iterable

from slugify import slugify

from . import config
from .models import DispatchRecord, DispatchStatus, get_session


ARTIFACT_NAMES = {
    "pdf": "{name}.pdf",
    "combined": "{name}-combined.pdf",
    "preview": "{name}-preview.png",
    "data_sheet": "{name}_template.xlsx",
}


def template_dir(template_id: int, base_dir: Path | None = None) -> Path:
    root = base_dir or config.OUT_DIR
    path = root / f"template-{template_id}"
    path.mkdir(parents=True, exist_ok=True)
    return path


def artifact_path(template_id: int, artifact_type: str, name: str, base_dir: Path | None = None) -> Path:
    filename = ARTIFACT_NAMES[artifact_type].format(name=slugify(name, separator="_") or "document")
    return template_dir(template_id, base_dir=base_dir) / filename


def record_dispatches(template_id: int, outcomes: Iterable[tuple[str, bool, str | None]]) -> None:
    with get_session() as session:
        for recipient, sent, error in outcomes:
            session.add(
                DispatchRecord(
                    template_id=template_id,
                    recipient=recipient,
                    status=DispatchStatus.SENT if sent else DispatchStatus.FAILED,
                    error=error,
                )
            )
        session.commit()
