from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List

from .blocks import (
    Block,
    ContainerProperties,
    ImageProperties,
    TableProperties,
    TemplateVariable,
    TextProperties,
)


PLACEHOLDER_RE = re.compile(r"\{\{([A-Za-z0-9_.]+)\}\}")

# within a group, suffixed variables follow this order; unknown suffixes go last
SUFFIX_ORDER: List[str] = ["days", "quantity", "hours", "rate", "amount", "total"]


def _v(key: str, label: str, category: str) -> TemplateVariable:
    return TemplateVariable(key=key, label=label, category=category)


STANDARD_VARIABLES: List[TemplateVariable] = [
    _v("{{employee.id}}", "Employee ID", "employee"),
    _v("{{employee.firstName}}", "First Name", "employee"),
    _v("{{employee.lastName}}", "Last Name", "employee"),
    _v("{{employee.fullName}}", "Full Name", "employee"),
    _v("{{employee.department}}", "Department", "employee"),
    _v("{{employee.position}}", "Position", "employee"),
    _v("{{employee.email}}", "Email", "employee"),
    _v("{{period.start}}", "Period Start", "period"),
    _v("{{period.end}}", "Period End", "period"),
    _v("{{period.month}}", "Pay Month", "period"),
    _v("{{period.year}}", "Pay Year", "period"),
    _v("{{company.name}}", "Company Name", "company"),
    _v("{{company.address}}", "Company Address", "company"),
    _v("{{company.logo}}", "Company Logo", "company"),
    _v("{{earnings.basicSalary}}", "Basic Salary", "earnings"),
    _v("{{earnings.overtime}}", "Overtime Pay", "earnings"),
    _v("{{earnings.allowances}}", "Allowances", "earnings"),
    _v("{{earnings.bonus}}", "Bonus", "earnings"),
    _v("{{earnings.total}}", "Total Earnings", "earnings"),
    _v("{{deductions.sss}}", "SSS", "deductions"),
    _v("{{deductions.philhealth}}", "PhilHealth", "deductions"),
    _v("{{deductions.pagibig}}", "Pag-IBIG", "deductions"),
    _v("{{deductions.tax}}", "Withholding Tax", "deductions"),
    _v("{{deductions.total}}", "Total Deductions", "deductions"),
    _v("{{netPay}}", "Net Pay", "computed"),
    _v("{{currentDate}}", "Current Date", "computed"),
]

_STANDARD_BY_KEY: Dict[str, TemplateVariable] = {v.key: v for v in STANDARD_VARIABLES}


@dataclass(frozen=True)
class VariableInfo:
    key: str
    label: str
    category: str


def strip_braces(key: str) -> str:
    return key.replace("{", "").replace("}", "")


def _sort_index(key: str) -> int:
    suffix = strip_braces(key).split(".")[-1].lower()
    try:
        return SUFFIX_ORDER.index(suffix)
    except ValueError:
        return len(SUFFIX_ORDER) + 1


def _clean_label(text: str) -> str:
    return re.sub(r"[:：]", "", text).strip()


def _resolve(key: str, inferred: Dict[str, str], label_map: Dict[str, str]) -> VariableInfo:
    standard = _STANDARD_BY_KEY.get(key)
    if key in inferred:
        return VariableInfo(key, inferred[key], standard.category if standard else "custom")
    if standard:
        return VariableInfo(key, standard.label, standard.category)

    path = strip_braces(key).split(".")
    if len(path) == 1 and path[0] in label_map:
        return VariableInfo(key, label_map[path[0]], "custom")
    if len(path) == 2 and path[0] in label_map:
        label_id, suffix = path
        return VariableInfo(key, f"{label_map[label_id]} - {suffix[:1].upper()}{suffix[1:]}", "custom")
    return VariableInfo(key, path[-1] or key, "custom")


def extract_used_variables(blocks: List[Block]) -> List[VariableInfo]:
    """
    Collect the variables a block tree references, in the order a data sheet
    should list them.

    Bound table cells and inline ``{{key}}`` placeholders both count. Labels
    come from, in order: the cell immediately left of a bound cell, the
    standard catalogue, a label cell whose ``labelId`` matches the key's first
    segment, and finally the key's last segment.
    """
    order: List[str] = []
    seen = set()
    label_map: Dict[str, str] = {}
    inferred: Dict[str, str] = {}

    def add(key: str) -> None:
        if key not in seen:
            seen.add(key)
            order.append(key)

    def add_inline(text: str) -> None:
        for match in PLACEHOLDER_RE.finditer(text or ""):
            add(match.group(0))

    def visit(block: Block) -> None:
        props = block.properties
        if isinstance(props, TextProperties):
            add_inline(props.content)
        elif isinstance(props, ImageProperties):
            add_inline(props.src)
        elif isinstance(props, TableProperties):
            for row in props.rows:
                for index, cell in enumerate(row.cells):
                    if cell.variable:
                        add(cell.variable)
                        if index > 0:
                            prev = row.cells[index - 1]
                            if prev.content and not prev.variable:
                                label = _clean_label(prev.content)
                                if label:
                                    inferred[cell.variable] = label
                    else:
                        add_inline(cell.content)
                    if cell.is_label and cell.label_id:
                        label_map[cell.label_id] = cell.content
        elif isinstance(props, ContainerProperties):
            for child in props.children:
                visit(child)

    for block in blocks:
        visit(block)

    groups: Dict[str, List[VariableInfo]] = {}
    for key in order:
        info = _resolve(key, inferred, label_map)
        base = strip_braces(key).split(".")[0]
        groups.setdefault(base, []).append(info)

    result: List[VariableInfo] = []
    for members in groups.values():
        result.extend(sorted(members, key=lambda v: _sort_index(v.key)))
    return result


def group_variables_by_category(variables: List[VariableInfo]) -> Dict[str, List[VariableInfo]]:
    grouped: Dict[str, List[VariableInfo]] = {}
    for variable in variables:
        grouped.setdefault(variable.category, []).append(variable)
    return grouped


def get_deep_value(obj: Any, path: str) -> Any:
    if not obj or not path:
        return None
    current = obj
    for part in path.split("."):
        if isinstance(current, dict) and current.get(part) is not None:
            current = current[part]
        else:
            return None
    return current
