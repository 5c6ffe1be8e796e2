from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    body: str


DEFAULT_EMAIL_TEMPLATE = EmailTemplate(
    subject="{{documentType}} for {{period}}",
    body=(
        "Hi {{recipientName}},\n"
        "\n"
        "Please find attached your {{documentType}} for {{period}}.\n"
        "\n"
        "If you have any questions, please don't hesitate to contact us.\n"
        "\n"
        "Best regards,\n"
        "{{organizationName}}"
    ),
)

_LEFTOVER = re.compile(r"\{\{[^}]+\}\}")


def replace_template_variables(template: str, variables: Mapping[str, Optional[str]]) -> str:
    """Fill ``{{name}}`` slots; anything left unfilled is removed."""
    result = template
    for key, value in variables.items():
        result = result.replace("{{" + key + "}}", value or "")
    return _LEFTOVER.sub("", result)


def generate_email_content(
    subject_template: Optional[str],
    body_template: Optional[str],
    variables: Mapping[str, Optional[str]],
) -> EmailTemplate:
    return EmailTemplate(
        subject=replace_template_variables(subject_template or DEFAULT_EMAIL_TEMPLATE.subject, variables),
        body=replace_template_variables(body_template or DEFAULT_EMAIL_TEMPLATE.body, variables),
    )


def text_to_html(text: str) -> str:
    return "\n".join(
        "<br>" if not line.strip() else f"<p>{html.escape(line, quote=True)}</p>"
        for line in text.split("\n")
    )
