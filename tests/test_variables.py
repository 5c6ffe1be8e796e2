from __future__ import annotations

from vello.pipeline.blocks import block_from_dict, schema_from_dict
from vello.pipeline.variables import (
    extract_used_variables,
    get_deep_value,
    group_variables_by_category,
    strip_braces,
)


def _table(rows) -> dict:
    return {
        "id": "tbl",
        "type": "table",
        "properties": {"rows": [{"cells": cells} for cells in rows]},
        "style": {"x": 0, "y": 0, "width": 400, "height": 100},
    }


def test_label_comes_from_left_cell() -> None:
    block = block_from_dict(
        _table([[{"content": "Gross Pay:"}, {"content": "", "variable": "{{pay.gross}}"}]])
    )
    [info] = extract_used_variables([block])
    assert info.key == "{{pay.gross}}"
    assert info.label == "Gross Pay"
    assert info.category == "custom"


def test_standard_catalogue_supplies_label_and_category() -> None:
    block = block_from_dict(_table([[{"content": "", "variable": "{{employee.fullName}}"}]]))
    [info] = extract_used_variables([block])
    assert info.label == "Full Name"
    assert info.category == "employee"


def test_inferred_label_keeps_standard_category() -> None:
    block = block_from_dict(
        _table([[{"content": "Name"}, {"content": "", "variable": "{{employee.fullName}}"}]])
    )
    [info] = extract_used_variables([block])
    assert info.label == "Name"
    assert info.category == "employee"


def test_label_cell_id_names_suffixed_variables() -> None:
    block = block_from_dict(
        _table(
            [
                [
                    {"content": "Overtime", "isLabel": True, "labelId": "overtime"},
                    {"content": "{{overtime.amount}}"},
                    {"content": "{{overtime.hours}}"},
                ]
            ]
        )
    )
    infos = extract_used_variables([block])
    assert [info.key for info in infos] == ["{{overtime.hours}}", "{{overtime.amount}}"]
    assert infos[0].label == "Overtime - Hours"


def test_inline_placeholders_in_text_and_containers(schema_data) -> None:
    keys = [info.key for info in extract_used_variables(schema_from_dict(schema_data).blocks)]
    assert keys == [
        "{{employee.fullName}}",
        "{{employee.department}}",
        "{{earnings.basicSalary}}",
        "{{netPay}}",
    ]


def test_variables_are_deduplicated() -> None:
    block = block_from_dict(
        {
            "id": "t",
            "type": "text",
            "properties": {"content": "{{a}} and {{a}} and {{b}}"},
            "style": {"x": 0, "y": 0, "width": 10, "height": 10},
        }
    )
    assert [info.key for info in extract_used_variables([block])] == ["{{a}}", "{{b}}"]


def test_group_by_category(schema_data) -> None:
    grouped = group_variables_by_category(extract_used_variables(schema_from_dict(schema_data).blocks))
    assert set(grouped) == {"employee", "earnings", "computed"}


def test_get_deep_value() -> None:
    data = {"employee": {"name": {"first": "Ana"}}, "empty": None}
    assert get_deep_value(data, "employee.name.first") == "Ana"
    assert get_deep_value(data, "employee.name.last") is None
    assert get_deep_value(data, "empty") is None
    assert get_deep_value({}, "a") is None


def test_strip_braces() -> None:
    assert strip_braces("{{employee.id}}") == "employee.id"


def test_non_ascii_placeholders_are_not_extracted() -> None:
    block = {
        "id": "t",
        "type": "text",
        "properties": {"content": "{{naïve}} {{employee.fullName}}"},
        "style": {"x": 0, "y": 0, "width": 10, "height": 10},
    }
    assert [v.key for v in extract_used_variables([block_from_dict(block)])] == ["{{employee.fullName}}"]
