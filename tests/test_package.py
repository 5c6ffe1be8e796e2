from __future__ import annotations

import tempfile
import zipfile
from pathlib import Path

from vello.pipeline.package import (
    archive_filename,
    create_batch_archive,
    document_filename,
    document_identifier,
    safe_filename_part,
)


def test_identifier_fallbacks() -> None:
    assert document_identifier({"{{employee.fullName}}": "Ana Cruz"}, 0) == "Ana Cruz"
    assert (
        document_identifier({"{{employee.lastName}}": "Cruz", "{{employee.firstName}}": "Ana"}, 0)
        == "Cruz-Ana"
    )
    assert document_identifier({"{{employee.id}}": "E-7"}, 0) == "E-7"
    assert document_identifier({}, 4) == "record-5"


def test_unsafe_characters_are_replaced() -> None:
    assert safe_filename_part("José O'Neil/2024") == "Jos__O_Neil_2024"
    assert document_filename("Monthly", {"{{employee.fullName}}": "Ana Cruz"}, 0) == "Monthly-Ana_Cruz.pdf"


def test_archive_layout() -> None:
    assert archive_filename("Monthly") == "Monthly-batch-export.zip"
    with tempfile.TemporaryDirectory() as temp_dir:
        out = create_batch_archive(
            [("a.pdf", b"%PDF-1"), ("b.pdf", b"%PDF-2"), ("a.pdf", b"%PDF-3")],
            Path(temp_dir) / "out" / "bundle.zip",
        )
        with zipfile.ZipFile(out) as bundle:
            assert bundle.namelist() == ["payslips/a.pdf", "payslips/b.pdf", "payslips/a-2.pdf"]
            assert bundle.read("payslips/a-2.pdf") == b"%PDF-3"
