from __future__ import annotations

import base64
import copy
import json
import tempfile
from pathlib import Path

import pytest

from vello import config, models
from vello.models import reset_engine


# 1x1 RGBA PNG
PNG_BASE64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
PNG_BYTES = base64.b64decode(PNG_BASE64)

SCHEMA = {
    "blocks": [
        {
            "id": "title",
            "type": "text",
            "properties": {"content": "Payslip for {{employee.fullName}}"},
            "style": {"x": 40, "y": 40, "width": 400, "height": 30, "fontSize": 18, "fontWeight": "bold"},
        },
        {
            "id": "earnings",
            "type": "table",
            "properties": {
                "showBorders": True,
                "stripedRows": True,
                "rows": [
                    {"isHeader": True, "cells": [{"content": "Item"}, {"content": "Amount"}]},
                    {
                        "cells": [
                            {"content": "Basic Salary:"},
                            {"content": "", "variable": "{{earnings.basicSalary}}"},
                        ]
                    },
                    {"cells": [{"content": "Net"}, {"content": "{{netPay}}"}]},
                ],
            },
            "style": {"x": 40, "y": 100, "width": 400, "height": 90},
        },
        {
            "id": "rule",
            "type": "divider",
            "properties": {"thickness": 1, "color": "#ccc", "style": "dashed"},
            "style": {"x": 40, "y": 200, "width": 400, "height": 2},
        },
        {
            "id": "group",
            "type": "container",
            "properties": {
                "children": [
                    {
                        "id": "dept",
                        "type": "text",
                        "properties": {"content": "Dept: {{employee.department}}"},
                        "style": {"x": 10, "y": 10, "width": 200, "height": 20},
                    }
                ]
            },
            "style": {"x": 40, "y": 210, "width": 400, "height": 60},
        },
        {
            "id": "gap",
            "type": "spacer",
            "properties": {"height": 20},
            "style": {"x": 40, "y": 280, "width": 100, "height": 20},
        },
    ],
    "variables": [],
    "globalStyles": {
        "fontFamily": "Inter",
        "fontSize": 12,
        "primaryColor": "#1a1a1a",
        "secondaryColor": "#6b7280",
    },
}

RECORDS = [
    {
        "{{employee.fullName}}": "Ana Cruz",
        "{{employee.department}}": "Finance",
        "{{employee.email}}": "ana@example.com",
        "{{earnings.basicSalary}}": "30000",
        "{{netPay}}": "27500",
    },
    {
        "{{employee.fullName}}": "Ben Reyes",
        "{{employee.department}}": "Ops",
        "Email": "ben@example.com",
        "{{earnings.basicSalary}}": "25000",
        "{{netPay}}": "23100",
    },
]


@pytest.fixture
def schema_data() -> dict:
    return copy.deepcopy(SCHEMA)


@pytest.fixture
def records() -> list:
    return copy.deepcopy(RECORDS)


@pytest.fixture
def out_dir():
    with tempfile.TemporaryDirectory() as temp_dir:
        path = Path(temp_dir)
        config.set_out_dir(path)
        reset_engine()
        yield path
        models.engine.dispose()


@pytest.fixture
def template_file(out_dir: Path, schema_data: dict) -> Path:
    path = out_dir / "monthly.json"
    path.write_text(
        json.dumps({"name": "Monthly", "paperSize": "A4", "orientation": "PORTRAIT", "schema": schema_data}),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def no_send_delay(monkeypatch) -> None:
    monkeypatch.setattr(config, "SEND_DELAY_SECONDS", 0)


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES
