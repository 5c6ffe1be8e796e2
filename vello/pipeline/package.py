from __future__ import annotations

import re
import zipfile
from pathlib import Path
from typing import Iterable, Mapping, Tuple

from .. import config


_UNSAFE = re.compile(r"[^a-z0-9\-_]", re.IGNORECASE)


def safe_filename_part(text: str) -> str:
    return _UNSAFE.sub("_", text).strip()


def document_identifier(record: Mapping[str, str], index: int) -> str:
    if record.get("{{employee.fullName}}"):
        return record["{{employee.fullName}}"]
    if record.get("{{employee.lastName}}"):
        return f"{record['{{employee.lastName}}']}-{record.get('{{employee.firstName}}') or ''}"
    if record.get("{{employee.id}}"):
        return record["{{employee.id}}"]
    return f"record-{index + 1}"


def document_filename(template_name: str, record: Mapping[str, str], index: int) -> str:
    return f"{template_name}-{safe_filename_part(document_identifier(record, index))}.pdf"


def archive_filename(template_name: str) -> str:
    return f"{template_name}-batch-export.zip"


def _dedupe(name: str, used: set) -> str:
    if name not in used:
        return name
    stem, suffix = name.rsplit(".", 1) if "." in name else (name, "")
    n = 2
    while True:
        candidate = f"{stem}-{n}.{suffix}" if suffix else f"{stem}-{n}"
        if candidate not in used:
            return candidate
        n += 1


def create_batch_archive(documents: Iterable[Tuple[str, bytes]], out_path: Path) -> Path:
    """
    Write rendered documents into a zip under a single folder.

    Entries keep the order they are produced in; a repeated filename gets a
    numeric suffix so no document is shadowed.
    """
    out_path.parent.mkdir(parents=True, exist_ok=True)
    used: set = set()
    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as bundle:
        for filename, payload in documents:
            name = _dedupe(filename, used)
            used.add(name)
            bundle.writestr(f"{config.BATCH_FOLDER}/{name}", payload)
    return out_path
