from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import json
import logging
import time
from typing import Any, Callable, List, Mapping, Optional, Sequence

import httpx
from sqlmodel import Session, select

from .. import config
from ..crypto import encrypt
from ..errors import (
    MissingRecipientError,
    SmtpConfigurationError,
    SmtpConnectionError,
    TemplateNotFoundError,
    TemplateValidationError,
)
from ..mailer.smtp_client import Attachment, EmailOptions, SendResult, SmtpClient, SmtpSettings
from ..mailer.templates import generate_email_content, text_to_html
from ..models import (
    DispatchRecord,
    EmailProvider,
    Orientation,
    PaperSize,
    SmtpConfiguration,
    Template,
    TemplateType,
    get_session,
    init_db,
    utcnow,
)
from ..storage import artifact_path, record_dispatches
from .blocks import TemplateSchema, iter_blocks, schema_from_dict, schema_to_dict, validate_paper
from .images import preprocess_blocks_for_pdf
from .package import archive_filename, create_batch_archive, document_filename
from .render_pdf import render_pdf_bytes
from .substitute import apply_data_to_blocks
from .variables import get_deep_value, strip_braces


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

EMAIL_FALLBACK_FIELDS = ("Email", "email", "{{employee.email}}")
NAME_FALLBACK_FIELDS = ("Name", "{{employee.fullName}}", "{{employee.firstName}}")


# ---------------------------------------------------------------------------
# templates
# ---------------------------------------------------------------------------


def load_template(template_id: int) -> Template:
    init_db()
    with get_session() as session:
        template = session.get(Template, template_id)
    if template is None:
        raise TemplateNotFoundError(f"Template {template_id} not found")
    return template


def list_templates() -> List[Template]:
    init_db()
    with get_session() as session:
        return list(session.exec(select(Template).order_by(Template.updated_at.desc())).all())


def template_schema(template: Template) -> TemplateSchema:
    return schema_from_dict(template.schema_data)


def _read_template_file(path: Path) -> tuple[dict, dict]:
    if not path.exists():
        raise FileNotFoundError(f"Template file not found: {path}")
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict) and isinstance(payload.get("schema"), dict):
        return payload["schema"], payload
    return payload, {}


def import_template(
    path: Path,
    name: Optional[str] = None,
    *,
    paper_size: Optional[str] = None,
    orientation: Optional[str] = None,
    template_type: str = TemplateType.PAYROLL.value,
    description: Optional[str] = None,
    recipient_email_field: Optional[str] = None,
    recipient_name_field: Optional[str] = None,
) -> Template:
    """
    Store a template read from a JSON file.

    The file holds either a bare schema (``blocks``, ``variables``,
    ``globalStyles``) or an exported template wrapping one under ``schema``
    along with ``name``, ``paperSize`` and ``orientation``. Explicit arguments
    win over values found in the file.
    """
    schema_data, wrapper = _read_template_file(path)

    paper = paper_size or wrapper.get("paperSize") or PaperSize.A4.value
    orient = orientation or wrapper.get("orientation") or Orientation.PORTRAIT.value
    errors = validate_paper(paper, orient)
    if errors:
        raise TemplateValidationError(errors)
    # round trip so the stored schema is normalised
    schema = schema_from_dict(schema_data)

    template = Template(
        name=name or wrapper.get("name") or path.stem,
        description=description or wrapper.get("description"),
        schema_data=schema_to_dict(schema),
        paper_size=PaperSize(paper),
        orientation=Orientation(orient),
        template_type=TemplateType(template_type),
        recipient_email_field=recipient_email_field,
        recipient_name_field=recipient_name_field,
    )
    init_db()
    with get_session() as session:
        session.add(template)
        session.commit()
        session.refresh(template)
    logger.info(
        "Imported template %s as id %s (%s blocks)",
        template.name,
        template.id,
        sum(1 for _ in iter_blocks(schema.blocks)),
    )
    return template


def duplicate_template(template_id: int) -> Template:
    source = load_template(template_id)
    copy = Template(
        name=f"{source.name} (Copy)",
        description=source.description,
        schema_data=dict(source.schema_data),
        paper_size=source.paper_size,
        orientation=source.orientation,
        template_type=source.template_type,
        recipient_email_field=source.recipient_email_field,
        recipient_name_field=source.recipient_name_field,
    )
    with get_session() as session:
        session.add(copy)
        session.commit()
        session.refresh(copy)
    return copy


def update_template(
    template_id: int,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    schema_path: Optional[Path] = None,
    paper_size: Optional[str] = None,
    orientation: Optional[str] = None,
    template_type: Optional[str] = None,
    recipient_email_field: Optional[str] = None,
    recipient_name_field: Optional[str] = None,
) -> Template:
    """Change the given fields of a stored template; ``None`` leaves a field as it is."""
    template = load_template(template_id)
    paper = paper_size or template.paper_size.value
    orient = orientation or template.orientation.value
    errors = validate_paper(paper, orient)
    if errors:
        raise TemplateValidationError(errors)

    if schema_path is not None:
        schema_data, _ = _read_template_file(schema_path)
        template.schema_data = schema_to_dict(schema_from_dict(schema_data))
    if name:
        template.name = name
    if description is not None:
        template.description = description
    if template_type:
        template.template_type = TemplateType(template_type)
    if recipient_email_field is not None:
        template.recipient_email_field = recipient_email_field or None
    if recipient_name_field is not None:
        template.recipient_name_field = recipient_name_field or None
    template.paper_size = PaperSize(paper)
    template.orientation = Orientation(orient)
    template.updated_at = utcnow()

    with get_session() as session:
        session.add(template)
        session.commit()
        session.refresh(template)
    logger.info("Updated template %s", template.id)
    return template


def delete_template(template_id: int) -> Template:
    template = load_template(template_id)
    with get_session() as session:
        for record in session.exec(select(DispatchRecord).where(DispatchRecord.template_id == template_id)):
            session.delete(record)
        session.delete(session.get(Template, template_id))
        session.commit()
    logger.info("Deleted template %s (%s)", template_id, template.name)
    return template


def export_template(template: Template, out_path: Path) -> Path:
    payload = {
        "name": template.name,
        "description": template.description,
        "paperSize": template.paper_size.value,
        "orientation": template.orientation.value,
        "schema": template.schema_data,
    }
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return out_path


# ---------------------------------------------------------------------------
# documents
# ---------------------------------------------------------------------------


def generate_document(
    template: Template,
    data: Mapping[str, Any],
    *,
    images: bool = True,
    client: httpx.Client | None = None,
) -> bytes:
    schema = template_schema(template)
    blocks = apply_data_to_blocks(schema.blocks, data)
    if images:
        blocks = preprocess_blocks_for_pdf(blocks, client=client)
    return render_pdf_bytes(
        [blocks],
        schema.global_styles,
        paper_size=template.paper_size.value,
        orientation=template.orientation.value,
        title=template.name,
    )


def generate_combined(
    template: Template,
    rows: Sequence[Mapping[str, Any]],
    *,
    client: httpx.Client | None = None,
) -> bytes:
    """All records in one PDF, one page each."""
    schema = template_schema(template)
    # image sources may themselves be placeholders, so embed after substitution
    pages = [
        preprocess_blocks_for_pdf(apply_data_to_blocks(schema.blocks, row), client=client)
        for row in rows
    ]
    return render_pdf_bytes(
        pages,
        schema.global_styles,
        paper_size=template.paper_size.value,
        orientation=template.orientation.value,
        title=template.name,
    )


def batch_export(
    template: Template,
    rows: Sequence[Mapping[str, Any]],
    out_dir: Path | None = None,
    *,
    client: httpx.Client | None = None,
) -> Path:
    if not rows:
        raise ValueError("No data rows to export")
    out_dir = out_dir or artifact_path(template.id or 0, "pdf", template.name).parent
    out_path = out_dir / archive_filename(template.name)

    def documents():
        for index, row in enumerate(rows):
            yield document_filename(template.name, row, index), generate_document(template, row, client=client)

    create_batch_archive(documents(), out_path)
    logger.info("Exported %s documents to %s", len(rows), out_path)
    return out_path


# ---------------------------------------------------------------------------
# smtp configuration
# ---------------------------------------------------------------------------


def resolve_smtp_configuration(session: Session, config_id: Optional[int] = None) -> SmtpConfiguration:
    """The configuration with ``config_id``, else the default one, else the first stored."""
    if config_id is not None:
        smtp_config = session.get(SmtpConfiguration, config_id)
    else:
        smtp_config = session.exec(
            select(SmtpConfiguration).where(SmtpConfiguration.is_default == True)  # noqa: E712
        ).first()
        if smtp_config is None:
            smtp_config = session.exec(select(SmtpConfiguration)).first()
    if smtp_config is None:
        raise SmtpConfigurationError("Email configuration not found. Please set up SMTP in Settings.")
    return smtp_config


def smtp_settings(smtp_config: SmtpConfiguration, provider: EmailProvider) -> SmtpSettings:
    return SmtpSettings(
        smtp_server=provider.smtp_server,
        smtp_port=provider.smtp_port,
        use_tls=provider.use_tls,
        sender_email=smtp_config.sender_email,
        sender_name=smtp_config.sender_name,
        smtp_username=smtp_config.smtp_username,
        smtp_password=smtp_config.smtp_password,
    )


def load_smtp_settings(config_id: Optional[int] = None) -> tuple[SmtpConfiguration, SmtpSettings]:
    init_db()
    with get_session() as session:
        smtp_config = resolve_smtp_configuration(session, config_id)
        provider = session.get(EmailProvider, smtp_config.provider_id)
        if provider is None:
            raise SmtpConfigurationError(f"Email provider {smtp_config.provider_id} not found")
        return smtp_config, smtp_settings(smtp_config, provider)


def _clear_default(session: Session, keep_id: Optional[int] = None) -> None:
    for other in session.exec(select(SmtpConfiguration).where(SmtpConfiguration.is_default == True)):  # noqa: E712
        if other.id == keep_id:
            continue
        other.is_default = False
        other.updated_at = utcnow()
        session.add(other)


def add_smtp_configuration(
    name: str,
    provider_name: str,
    sender_email: str,
    smtp_username: str,
    smtp_password: str,
    *,
    sender_name: Optional[str] = None,
    email_subject: Optional[str] = None,
    email_body: Optional[str] = None,
    is_default: bool = False,
) -> SmtpConfiguration:
    init_db()
    with get_session() as session:
        provider = session.exec(select(EmailProvider).where(EmailProvider.name == provider_name)).first()
        if provider is None:
            raise SmtpConfigurationError(f"Unknown email provider: {provider_name}")
        if is_default:
            _clear_default(session)
        smtp_config = SmtpConfiguration(
            name=name,
            provider_id=provider.id,
            sender_email=sender_email,
            sender_name=sender_name,
            smtp_username=smtp_username,
            smtp_password=encrypt(smtp_password),
            email_subject=email_subject,
            email_body=email_body,
            is_default=is_default,
        )
        session.add(smtp_config)
        session.commit()
        session.refresh(smtp_config)
    return smtp_config


def list_smtp_configurations() -> List[SmtpConfiguration]:
    init_db()
    with get_session() as session:
        return list(session.exec(select(SmtpConfiguration)).all())


def _get_smtp_configuration(session: Session, config_id: int) -> SmtpConfiguration:
    smtp_config = session.get(SmtpConfiguration, config_id)
    if smtp_config is None:
        raise SmtpConfigurationError(f"SMTP configuration {config_id} not found")
    return smtp_config


def update_smtp_configuration(
    config_id: int,
    *,
    name: Optional[str] = None,
    provider_name: Optional[str] = None,
    sender_email: Optional[str] = None,
    sender_name: Optional[str] = None,
    smtp_username: Optional[str] = None,
    smtp_password: Optional[str] = None,
    email_subject: Optional[str] = None,
    email_body: Optional[str] = None,
    is_default: Optional[bool] = None,
    is_active: Optional[bool] = None,
) -> SmtpConfiguration:
    """
    Change the given fields of a stored configuration.

    A new password is encrypted before it is stored; leaving it out keeps the
    old one. Making a configuration the default clears the flag elsewhere.
    """
    init_db()
    with get_session() as session:
        smtp_config = _get_smtp_configuration(session, config_id)
        if provider_name:
            provider = session.exec(select(EmailProvider).where(EmailProvider.name == provider_name)).first()
            if provider is None:
                raise SmtpConfigurationError(f"Unknown email provider: {provider_name}")
            smtp_config.provider_id = provider.id
        if smtp_password:
            smtp_config.smtp_password = encrypt(smtp_password)
        changes = {
            "name": name,
            "sender_email": sender_email,
            "sender_name": sender_name,
            "smtp_username": smtp_username,
            "email_subject": email_subject,
            "email_body": email_body,
            "is_active": is_active,
        }
        for key, value in changes.items():
            if value is not None:
                setattr(smtp_config, key, value)
        if is_default is True:
            _clear_default(session, keep_id=config_id)
        if is_default is not None:
            smtp_config.is_default = is_default
        smtp_config.updated_at = utcnow()
        session.add(smtp_config)
        session.commit()
        session.refresh(smtp_config)
    return smtp_config


def set_default_smtp_configuration(config_id: int) -> SmtpConfiguration:
    return update_smtp_configuration(config_id, is_default=True)


def delete_smtp_configuration(config_id: int) -> SmtpConfiguration:
    init_db()
    with get_session() as session:
        smtp_config = _get_smtp_configuration(session, config_id)
        session.delete(smtp_config)
        session.commit()
    logger.info("Deleted SMTP configuration %s (%s)", config_id, smtp_config.name)
    return smtp_config


# ---------------------------------------------------------------------------
# sending
# ---------------------------------------------------------------------------


@dataclass
class BatchSendOptions:
    document_type: str = "Document"
    period: str = "current period"
    email_field: Optional[str] = None
    name_field: Optional[str] = None
    email_subject: Optional[str] = None
    email_body: Optional[str] = None
    config_id: Optional[int] = None
    organization_name: str = field(default_factory=lambda: config.ORGANIZATION_NAME)


@dataclass
class BatchSendResult:
    success: bool
    sent: int
    failed: int
    total: int
    errors: List[dict] = field(default_factory=list)


def get_value(record: Mapping[str, Any], key: Optional[str]) -> Optional[str]:
    """Direct key first, then a dotted path into nested data."""
    if not key:
        return None
    value = record.get(key)
    if value is None or value == "":
        value = get_deep_value(record, strip_braces(key))
    if value is None or value == "":
        return None
    return str(value)


def recipient_email(record: Mapping[str, Any], email_field: Optional[str] = None) -> Optional[str]:
    for key in (email_field, *EMAIL_FALLBACK_FIELDS):
        value = get_value(record, key)
        if value:
            return value.strip()
    return None


def recipient_name(record: Mapping[str, Any], email: str, name_field: Optional[str] = None) -> str:
    for key in (name_field, *NAME_FALLBACK_FIELDS):
        value = get_value(record, key)
        if value:
            return value
    return email.split("@")[0]


def _email_options(
    template: Template,
    pdf: bytes,
    email: str,
    name: str,
    options: BatchSendOptions,
    smtp_config: SmtpConfiguration,
) -> EmailOptions:
    content = generate_email_content(
        options.email_subject or smtp_config.email_subject,
        options.email_body or smtp_config.email_body,
        {
            "recipientName": name,
            "documentType": options.document_type,
            "period": options.period,
            "organizationName": options.organization_name,
        },
    )
    return EmailOptions(
        to=email,
        subject=content.subject,
        text=content.body,
        html=text_to_html(content.body),
        attachments=[Attachment(filename=f"{template.name}-{name}.pdf", content=pdf)],
    )


def send_document(
    template: Template,
    data: Mapping[str, Any],
    email: str,
    options: BatchSendOptions | None = None,
    *,
    smtp_config: SmtpConfiguration | None = None,
    client: SmtpClient | None = None,
    http_client: httpx.Client | None = None,
) -> SendResult:
    options = options or BatchSendOptions()
    if smtp_config is None or client is None:
        resolved, settings = load_smtp_settings(options.config_id)
        smtp_config = smtp_config or resolved
        client = client or SmtpClient(settings)
    pdf = generate_document(template, data, client=http_client)
    name = recipient_name(data, email, options.name_field)
    try:
        result = client.send_email(_email_options(template, pdf, email, name, options, smtp_config))
    finally:
        client.disconnect()
    if template.id is not None:
        record_dispatches(template.id, [(email, result.success, None if result.success else result.message)])
    return result


def batch_send(
    template: Template,
    rows: Sequence[Mapping[str, Any]],
    options: BatchSendOptions | None = None,
    *,
    smtp_config: SmtpConfiguration | None = None,
    client: SmtpClient | None = None,
    http_client: httpx.Client | None = None,
    on_progress: Optional[ProgressCallback] = None,
) -> BatchSendResult:
    """
    Render and mail one document per record over a single SMTP session.

    Every record must resolve to an email address before anything is sent.
    A failing record is logged and counted; the rest of the batch continues.
    """
    options = options or BatchSendOptions()
    email_field = options.email_field or template.recipient_email_field
    name_field = options.name_field or template.recipient_name_field
    if not rows:
        raise ValueError("No data rows to send")

    missing = sum(1 for row in rows if not recipient_email(row, email_field))
    if missing:
        raise MissingRecipientError(missing)

    if smtp_config is None or client is None:
        resolved, settings = load_smtp_settings(options.config_id)
        smtp_config = smtp_config or resolved
        client = client or SmtpClient(settings)

    connected = client.connect()
    if not connected.success:
        raise SmtpConnectionError(f"SMTP connection failed: {connected.message}")

    record_options = BatchSendOptions(
        document_type=options.document_type,
        period=options.period,
        email_field=email_field,
        name_field=name_field,
        email_subject=options.email_subject,
        email_body=options.email_body,
        config_id=options.config_id,
        organization_name=options.organization_name,
    )
    sent = failed = 0
    errors: List[dict] = []
    outcomes: List[tuple[str, bool, Optional[str]]] = []
    try:
        for index, row in enumerate(rows):
            email = recipient_email(row, email_field) or ""
            try:
                pdf = generate_document(template, row, client=http_client)
                name = recipient_name(row, email, name_field)
                result = client.send_email(
                    _email_options(template, pdf, email, name, record_options, smtp_config)
                )
                if not result.success:
                    raise RuntimeError(result.message)
                sent += 1
                outcomes.append((email, True, None))
            except Exception as exc:
                logger.exception("Failed to send document to %s", email)
                failed += 1
                message = str(exc) or "Unknown error"
                errors.append({"email": email, "error": message})
                outcomes.append((email, False, message))
            if on_progress:
                on_progress(index + 1, len(rows), email)
            if index < len(rows) - 1 and config.SEND_DELAY_SECONDS > 0:
                time.sleep(config.SEND_DELAY_SECONDS)
    finally:
        client.disconnect()

    if template.id is not None:
        record_dispatches(template.id, outcomes)
    logger.info("Batch send for %s: %s sent, %s failed", template.name, sent, failed)
    return BatchSendResult(success=sent > 0, sent=sent, failed=failed, total=len(rows), errors=errors)


def data_sheet_path(template: Template) -> Path:
    return artifact_path(template.id or 0, "data_sheet", template.name)


def document_path(template: Template, name: Optional[str] = None) -> Path:
    return artifact_path(template.id or 0, "pdf", name or template.name)


def combined_path(template: Template) -> Path:
    return artifact_path(template.id or 0, "combined", template.name)


def preview_path(template: Template) -> Path:
    return artifact_path(template.id or 0, "preview", template.name)

