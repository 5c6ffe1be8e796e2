from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

import typer

from . import config
from .crypto import generate_key
from .errors import VelloError
from .mailer.smtp_client import check_smtp_connection
from .models import reset_engine, seed_email_providers
from .pipeline.render_preview import render_preview
from .pipeline.run import (
    BatchSendOptions,
    add_smtp_configuration,
    batch_export,
    batch_send,
    combined_path,
    data_sheet_path,
    delete_smtp_configuration,
    delete_template,
    document_path,
    duplicate_template,
    export_template,
    generate_combined,
    generate_document,
    import_template,
    list_smtp_configurations,
    list_templates,
    load_smtp_settings,
    load_template,
    preview_path,
    send_document,
    set_default_smtp_configuration,
    template_schema,
    update_smtp_configuration,
    update_template,
)
from .pipeline.variables import extract_used_variables, group_variables_by_category
from .pipeline.workbook import build_data_sheet, load_rows

app = typer.Typer(help="Template-driven document generation and delivery")
providers_app = typer.Typer(help="Email providers")
smtp_app = typer.Typer(help="SMTP configurations")
app.add_typer(providers_app, name="providers")
app.add_typer(smtp_app, name="smtp")


@app.callback()
def main(
    out: Optional[Path] = typer.Option(None, "--out-dir", help="Output directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if out:
        config.set_out_dir(out)
        reset_engine()


def _fail(exc: Exception) -> None:
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


def _rows(data: Optional[Path]) -> List[Dict[str, str]]:
    if data is None:
        return [{}]
    return load_rows(data)


def _row(data: Optional[Path], row: int) -> Dict[str, str]:
    rows = _rows(data)
    if row < 0 or row >= len(rows):
        raise typer.BadParameter(f"row must be between 0 and {len(rows) - 1}", param_hint="--row")
    return rows[row]


@app.command("import-template")
def import_template_cmd(
    path: Path = typer.Argument(..., help="Template JSON file"),
    name: Optional[str] = typer.Option(None, "--name"),
    paper_size: Optional[str] = typer.Option(None, "--paper-size", help="A4, LETTER or LEGAL"),
    orientation: Optional[str] = typer.Option(None, "--orientation", help="PORTRAIT or LANDSCAPE"),
    template_type: str = typer.Option("PAYROLL", "--type", help="PAYROLL or GENERAL"),
    email_field: Optional[str] = typer.Option(None, "--email-field", help="Column holding recipient email"),
    name_field: Optional[str] = typer.Option(None, "--name-field", help="Column holding recipient name"),
) -> None:
    try:
        template = import_template(
            path,
            name,
            paper_size=paper_size,
            orientation=orientation,
            template_type=template_type,
            recipient_email_field=email_field,
            recipient_name_field=name_field,
        )
    except (VelloError, ValueError, FileNotFoundError) as exc:
        _fail(exc)
    typer.echo(f"Imported template {template.id}: {template.name}")


@app.command()
def templates() -> None:
    items = list_templates()
    if not items:
        typer.echo("No templates")
        return
    for template in items:
        typer.echo(
            f"{template.id}\t{template.name}\t{template.paper_size.value}\t{template.orientation.value}"
        )


@app.command()
def duplicate(template_id: int = typer.Argument(...)) -> None:
    try:
        copy = duplicate_template(template_id)
    except VelloError as exc:
        _fail(exc)
    typer.echo(f"Created template {copy.id}: {copy.name}")


@app.command()
def update(
    template_id: int = typer.Argument(...),
    name: Optional[str] = typer.Option(None, "--name"),
    description: Optional[str] = typer.Option(None, "--description"),
    schema: Optional[Path] = typer.Option(None, "--schema", help="JSON file with a replacement schema"),
    paper_size: Optional[str] = typer.Option(None, "--paper-size", help="A4, LETTER or LEGAL"),
    orientation: Optional[str] = typer.Option(None, "--orientation", help="PORTRAIT or LANDSCAPE"),
    template_type: Optional[str] = typer.Option(None, "--type", help="PAYROLL or GENERAL"),
    email_field: Optional[str] = typer.Option(None, "--email-field", help="Empty string clears it"),
    name_field: Optional[str] = typer.Option(None, "--name-field", help="Empty string clears it"),
) -> None:
    try:
        template = update_template(
            template_id,
            name=name,
            description=description,
            schema_path=schema,
            paper_size=paper_size,
            orientation=orientation,
            template_type=template_type,
            recipient_email_field=email_field,
            recipient_name_field=name_field,
        )
    except (VelloError, ValueError, FileNotFoundError) as exc:
        _fail(exc)
    typer.echo(f"Updated template {template.id}: {template.name}")


@app.command()
def delete(template_id: int = typer.Argument(...)) -> None:
    try:
        template = delete_template(template_id)
    except VelloError as exc:
        _fail(exc)
    typer.echo(f"Deleted template {template_id}: {template.name}")


@app.command()
def export(
    template_id: int = typer.Argument(...),
    out: Path = typer.Option(..., "--out", help="Destination JSON file"),
) -> None:
    try:
        path = export_template(load_template(template_id), out)
    except VelloError as exc:
        _fail(exc)
    typer.echo(f"Exported: {path}")


@app.command()
def variables(template_id: int = typer.Argument(...)) -> None:
    try:
        schema = template_schema(load_template(template_id))
    except VelloError as exc:
        _fail(exc)
    used = extract_used_variables(schema.blocks)
    if not used:
        typer.echo("No variables used")
        return
    for category, items in group_variables_by_category(used).items():
        typer.echo(f"[{category}]")
        for item in items:
            typer.echo(f"  {item.key}\t{item.label}")


@app.command("data-sheet")
def data_sheet(
    template_id: int = typer.Argument(...),
    out: Optional[Path] = typer.Option(None, "--out", help="Destination .xlsx"),
) -> None:
    try:
        template = load_template(template_id)
        used = extract_used_variables(template_schema(template).blocks)
    except VelloError as exc:
        _fail(exc)
    path = build_data_sheet(used, out or data_sheet_path(template))
    typer.echo(f"Data sheet: {path}")


@app.command()
def generate(
    template_id: int = typer.Argument(...),
    data: Optional[Path] = typer.Option(None, "--data", help="CSV or XLSX with one record per row"),
    row: int = typer.Option(0, "--row", help="Record index (0-based)"),
    combined: bool = typer.Option(False, "--combined", help="All records in one PDF"),
    out: Optional[Path] = typer.Option(None, "--out", help="Destination PDF"),
) -> None:
    try:
        template = load_template(template_id)
        if combined:
            payload = generate_combined(template, _rows(data))
            path = out or combined_path(template)
        else:
            payload = generate_document(template, _row(data, row))
            path = out or document_path(template)
    except (VelloError, ValueError, FileNotFoundError) as exc:
        _fail(exc)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)
    typer.echo(f"PDF: {path}")


@app.command("batch-export")
def batch_export_cmd(
    template_id: int = typer.Argument(...),
    data: Path = typer.Option(..., "--data", help="CSV or XLSX with one record per row"),
    out: Optional[Path] = typer.Option(None, "--out", help="Directory for the zip"),
) -> None:
    try:
        path = batch_export(load_template(template_id), load_rows(data), out)
    except (VelloError, ValueError, FileNotFoundError) as exc:
        _fail(exc)
    typer.echo(f"Archive: {path}")


@app.command()
def preview(
    template_id: int = typer.Argument(...),
    data: Optional[Path] = typer.Option(None, "--data"),
    row: int = typer.Option(0, "--row"),
    out: Optional[Path] = typer.Option(None, "--out", help="Destination PNG"),
) -> None:
    try:
        template = load_template(template_id)
        pdf_path = document_path(template)
        pdf_path.write_bytes(generate_document(template, _row(data, row)))
        path = render_preview(pdf_path, out or preview_path(template))
    except (VelloError, ValueError, FileNotFoundError) as exc:
        _fail(exc)
    typer.echo(f"Preview: {path}")


@app.command()
def send(
    template_id: int = typer.Argument(...),
    to: str = typer.Option(..., "--to", help="Recipient email"),
    data: Optional[Path] = typer.Option(None, "--data"),
    row: int = typer.Option(0, "--row"),
    config_id: Optional[int] = typer.Option(None, "--config-id"),
    document_type: str = typer.Option("Document", "--document-type"),
    period: str = typer.Option("current period", "--period"),
    subject: Optional[str] = typer.Option(None, "--subject"),
    body: Optional[str] = typer.Option(None, "--body"),
) -> None:
    options = BatchSendOptions(
        document_type=document_type,
        period=period,
        email_subject=subject,
        email_body=body,
        config_id=config_id,
    )
    try:
        result = send_document(load_template(template_id), _row(data, row), to, options)
    except (VelloError, ValueError, FileNotFoundError) as exc:
        _fail(exc)
    typer.echo(result.message)
    if not result.success:
        raise typer.Exit(code=1)


@app.command("batch-send")
def batch_send_cmd(
    template_id: int = typer.Argument(...),
    data: Path = typer.Option(..., "--data", help="CSV or XLSX with one record per row"),
    config_id: Optional[int] = typer.Option(None, "--config-id"),
    document_type: str = typer.Option("Document", "--document-type"),
    period: str = typer.Option("current period", "--period"),
    email_field: Optional[str] = typer.Option(None, "--email-field"),
    name_field: Optional[str] = typer.Option(None, "--name-field"),
    subject: Optional[str] = typer.Option(None, "--subject"),
    body: Optional[str] = typer.Option(None, "--body"),
) -> None:
    options = BatchSendOptions(
        document_type=document_type,
        period=period,
        email_field=email_field,
        name_field=name_field,
        email_subject=subject,
        email_body=body,
        config_id=config_id,
    )

    def progress(done: int, total: int, email: str) -> None:
        typer.echo(f"[{done}/{total}] {email}")

    try:
        result = batch_send(load_template(template_id), load_rows(data), options, on_progress=progress)
    except (VelloError, ValueError, FileNotFoundError) as exc:
        _fail(exc)
    typer.echo(f"SENT: {result.sent}")
    typer.echo(f"FAILED: {result.failed}")
    for error in result.errors:
        typer.echo(f"FAILED: {error['email']}: {error['error']}")
    if not result.success:
        raise typer.Exit(code=1)


@providers_app.command("seed")
def providers_seed() -> None:
    count = seed_email_providers()
    typer.echo(f"Seeded {count} email providers")


@smtp_app.command("add")
def smtp_add(
    name: str = typer.Option(..., "--name"),
    provider: str = typer.Option(..., "--provider", help="Gmail, Outlook or Custom"),
    sender_email: str = typer.Option(..., "--sender-email"),
    username: str = typer.Option(..., "--username"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    sender_name: Optional[str] = typer.Option(None, "--sender-name"),
    subject: Optional[str] = typer.Option(None, "--subject"),
    body: Optional[str] = typer.Option(None, "--body"),
    default: bool = typer.Option(False, "--default"),
) -> None:
    try:
        smtp_config = add_smtp_configuration(
            name,
            provider,
            sender_email,
            username,
            password,
            sender_name=sender_name,
            email_subject=subject,
            email_body=body,
            is_default=default,
        )
    except VelloError as exc:
        _fail(exc)
    typer.echo(f"Added SMTP configuration {smtp_config.id}: {smtp_config.name}")


@smtp_app.command("list")
def smtp_list() -> None:
    items = list_smtp_configurations()
    if not items:
        typer.echo("No SMTP configurations")
        return
    for item in items:
        marker = "*" if item.is_default else " "
        typer.echo(f"{marker} {item.id}\t{item.name}\t{item.sender_email}")


@smtp_app.command("update")
def smtp_update(
    config_id: int = typer.Argument(...),
    name: Optional[str] = typer.Option(None, "--name"),
    provider: Optional[str] = typer.Option(None, "--provider", help="Gmail, Outlook or Custom"),
    sender_email: Optional[str] = typer.Option(None, "--sender-email"),
    sender_name: Optional[str] = typer.Option(None, "--sender-name"),
    username: Optional[str] = typer.Option(None, "--username"),
    password: Optional[str] = typer.Option(None, "--password"),
    subject: Optional[str] = typer.Option(None, "--subject"),
    body: Optional[str] = typer.Option(None, "--body"),
    active: Optional[bool] = typer.Option(None, "--active/--inactive"),
) -> None:
    try:
        smtp_config = update_smtp_configuration(
            config_id,
            name=name,
            provider_name=provider,
            sender_email=sender_email,
            sender_name=sender_name,
            smtp_username=username,
            smtp_password=password,
            email_subject=subject,
            email_body=body,
            is_active=active,
        )
    except VelloError as exc:
        _fail(exc)
    typer.echo(f"Updated SMTP configuration {smtp_config.id}: {smtp_config.name}")


@smtp_app.command("set-default")
def smtp_set_default(config_id: int = typer.Argument(...)) -> None:
    try:
        smtp_config = set_default_smtp_configuration(config_id)
    except VelloError as exc:
        _fail(exc)
    typer.echo(f"Default SMTP configuration: {smtp_config.id} {smtp_config.name}")


@smtp_app.command("remove")
def smtp_remove(config_id: int = typer.Argument(...)) -> None:
    try:
        smtp_config = delete_smtp_configuration(config_id)
    except VelloError as exc:
        _fail(exc)
    typer.echo(f"Removed SMTP configuration {config_id}: {smtp_config.name}")


@smtp_app.command("test")
def smtp_test(config_id: Optional[int] = typer.Option(None, "--config-id")) -> None:
    try:
        _, settings = load_smtp_settings(config_id)
    except VelloError as exc:
        _fail(exc)
    result = check_smtp_connection(settings)
    typer.echo(result.message)
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def keygen() -> None:
    """Print a new key for VELLO_ENCRYPTION_KEY."""
    typer.echo(generate_key())


if __name__ == "__main__":
    app()
