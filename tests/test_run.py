from __future__ import annotations

import json
import zipfile

import pytest
from sqlmodel import select

from vello.crypto import decrypt, generate_key
from vello.errors import (
    MissingRecipientError,
    SmtpConfigurationError,
    SmtpConnectionError,
    TemplateNotFoundError,
    TemplateValidationError,
)
from vello.mailer.smtp_client import SendResult
from vello.models import (
    DispatchRecord,
    DispatchStatus,
    SmtpConfiguration,
    Template,
    get_session,
    seed_email_providers,
)
from vello.pipeline.run import (
    BatchSendOptions,
    add_smtp_configuration,
    batch_export,
    batch_send,
    delete_smtp_configuration,
    delete_template,
    duplicate_template,
    export_template,
    generate_combined,
    generate_document,
    import_template,
    list_templates,
    load_template,
    recipient_email,
    recipient_name,
    resolve_smtp_configuration,
    send_document,
    set_default_smtp_configuration,
    update_smtp_configuration,
    update_template,
)


class FakeSmtpClient:
    def __init__(self, fail_for=(), connect_ok: bool = True) -> None:
        self.fail_for = set(fail_for)
        self.connect_ok = connect_ok
        self.sent = []
        self.connected = False
        self.disconnected = False

    def connect(self) -> SendResult:
        self.connected = self.connect_ok
        return SendResult(self.connect_ok, "ok" if self.connect_ok else "Authentication failed.")

    def send_email(self, options) -> SendResult:
        if options.to in self.fail_for:
            return SendResult(False, "Mailbox unavailable")
        self.sent.append(options)
        return SendResult(True, "Email sent successfully.")

    def disconnect(self) -> None:
        self.disconnected = True


def _smtp_config(**overrides) -> SmtpConfiguration:
    values = dict(
        name="Payroll",
        provider_id=1,
        sender_email="payroll@example.com",
        smtp_username="payroll@example.com",
        smtp_password="token",
    )
    values.update(overrides)
    return SmtpConfiguration(**values)


def _dispatches():
    with get_session() as session:
        return session.exec(select(DispatchRecord).order_by(DispatchRecord.id)).all()


def test_import_wrapped_template(template_file) -> None:
    template = import_template(template_file)
    assert template.id is not None
    assert template.name == "Monthly"
    assert template.paper_size.value == "A4"
    assert load_template(template.id).schema_data["blocks"][1]["type"] == "table"
    assert [t.id for t in list_templates()] == [template.id]


def test_import_bare_schema_with_overrides(out_dir, schema_data) -> None:
    path = out_dir / "bare.json"
    path.write_text(json.dumps(schema_data), encoding="utf-8")
    template = import_template(path, "Quarterly", paper_size="LETTER", orientation="LANDSCAPE")
    assert template.name == "Quarterly"
    assert template.orientation.value == "LANDSCAPE"


def test_import_rejects_invalid_schema(out_dir) -> None:
    path = out_dir / "broken.json"
    path.write_text(json.dumps({"blocks": [{"id": "x"}]}), encoding="utf-8")
    with pytest.raises(TemplateValidationError):
        import_template(path)
    with pytest.raises(TemplateValidationError):
        import_template(out_dir / "broken.json", paper_size="A5")


def test_duplicate_and_export(template_file, out_dir) -> None:
    template = import_template(template_file)
    copy = duplicate_template(template.id)
    assert copy.id != template.id
    assert copy.name == "Monthly (Copy)"
    exported = json.loads(export_template(copy, out_dir / "export.json").read_text(encoding="utf-8"))
    assert exported["name"] == "Monthly (Copy)"
    assert exported["schema"]["globalStyles"]["fontSize"] == 12
    with pytest.raises(TemplateNotFoundError):
        load_template(999)


def test_generate_document_and_combined(template_file, records) -> None:
    template = import_template(template_file)
    single = generate_document(template, records[0], images=False)
    combined = generate_combined(template, records)
    assert single.startswith(b"%PDF")
    assert combined.startswith(b"%PDF")
    assert len(combined) > len(single)


def test_batch_export_zip(template_file, records, out_dir) -> None:
    template = import_template(template_file)
    records.append({"{{employee.id}}": "E-9"})
    path = batch_export(template, records, out_dir / "exports")
    assert path.name == "Monthly-batch-export.zip"
    with zipfile.ZipFile(path) as bundle:
        names = bundle.namelist()
        assert names == [
            "payslips/Monthly-Ana_Cruz.pdf",
            "payslips/Monthly-Ben_Reyes.pdf",
            "payslips/Monthly-E-9.pdf",
        ]
        assert bundle.read(names[0]).startswith(b"%PDF")


def test_recipient_resolution() -> None:
    assert recipient_email({"Work Email": "a@x.com"}, "Work Email") == "a@x.com"
    assert recipient_email({"contact": {"email": "c@x.com"}}, "contact.email") == "c@x.com"
    assert recipient_email({"email": " b@x.com "}) == "b@x.com"
    assert recipient_email({"{{employee.email}}": "e@x.com"}) == "e@x.com"
    assert recipient_email({"Name": "No Email"}) is None
    assert recipient_name({"Name": "Ana"}, "a@x.com") == "Ana"
    assert recipient_name({"{{employee.firstName}}": "Ben"}, "b@x.com") == "Ben"
    assert recipient_name({}, "carla@x.com") == "carla"


def test_batch_send(template_file, records, no_send_delay) -> None:
    template = import_template(template_file)
    client = FakeSmtpClient(fail_for={"ben@example.com"})
    progress = []
    result = batch_send(
        template,
        records,
        BatchSendOptions(document_type="Payslip", period="May 2024", organization_name="Acme"),
        smtp_config=_smtp_config(),
        client=client,
        on_progress=lambda done, total, email: progress.append(done),
    )
    assert (result.success, result.sent, result.failed, result.total) == (True, 1, 1, 2)
    assert result.errors == [{"email": "ben@example.com", "error": "Mailbox unavailable"}]
    assert progress == [1, 2]
    assert client.disconnected is True

    message = client.sent[0]
    assert message.to == "ana@example.com"
    assert message.subject == "Payslip for May 2024"
    assert "Hi Ana Cruz," in message.text
    assert message.attachments[0].filename == "Monthly-Ana Cruz.pdf"
    assert message.attachments[0].content.startswith(b"%PDF")

    assert [d.status for d in _dispatches()] == [DispatchStatus.SENT, DispatchStatus.FAILED]


def test_batch_send_uses_configured_templates(template_file, records, no_send_delay) -> None:
    template = import_template(template_file)
    client = FakeSmtpClient()
    batch_send(
        template,
        records[:1],
        BatchSendOptions(period="June"),
        smtp_config=_smtp_config(email_subject="Your {{documentType}}", email_body="Dear {{recipientName}}"),
        client=client,
    )
    assert client.sent[0].subject == "Your Document"
    assert client.sent[0].text == "Dear Ana Cruz"
    assert client.sent[0].html == "<p>Dear Ana Cruz</p>"


def test_batch_send_requires_every_email(template_file, records) -> None:
    template = import_template(template_file)
    records.append({"{{employee.fullName}}": "Nobody"})
    records.append({})
    client = FakeSmtpClient()
    with pytest.raises(MissingRecipientError) as info:
        batch_send(template, records, smtp_config=_smtp_config(), client=client)
    assert str(info.value) == "2 record(s) are missing an Email field"
    assert client.connected is False


def test_batch_send_connection_failure(template_file, records) -> None:
    template = import_template(template_file)
    with pytest.raises(SmtpConnectionError):
        batch_send(template, records, smtp_config=_smtp_config(), client=FakeSmtpClient(connect_ok=False))
    assert _dispatches() == []


def test_send_document_records_dispatch(template_file, records) -> None:
    template = import_template(template_file)
    client = FakeSmtpClient()
    result = send_document(template, records[1], "ben@example.com", smtp_config=_smtp_config(), client=client)
    assert result.success
    assert client.sent[0].attachments[0].filename == "Monthly-Ben Reyes.pdf"
    assert client.disconnected is True
    assert [d.recipient for d in _dispatches()] == ["ben@example.com"]


def test_resolve_smtp_configuration(out_dir, monkeypatch) -> None:
    monkeypatch.setenv("VELLO_ENCRYPTION_KEY", generate_key())
    seed_email_providers()
    with get_session() as session:
        with pytest.raises(SmtpConfigurationError):
            resolve_smtp_configuration(session)

    first = add_smtp_configuration("First", "Gmail", "a@example.com", "a@example.com", "pw")
    with get_session() as session:
        assert resolve_smtp_configuration(session).id == first.id

    second = add_smtp_configuration("Second", "Outlook", "b@example.com", "b@example.com", "pw", is_default=True)
    third = add_smtp_configuration("Third", "Custom", "c@example.com", "c@example.com", "pw", is_default=True)
    with get_session() as session:
        assert resolve_smtp_configuration(session).id == third.id
        assert resolve_smtp_configuration(session, second.id).id == second.id
        assert session.get(SmtpConfiguration, second.id).is_default is False
    with get_session() as session:
        with pytest.raises(SmtpConfigurationError, match="Email configuration not found"):
            resolve_smtp_configuration(session, 999)
    assert third.smtp_password != "pw"

    with pytest.raises(SmtpConfigurationError):
        add_smtp_configuration("Bad", "Yahoo", "d@example.com", "d", "pw")


def test_import_and_duplicate_persist_timestamps(template_file) -> None:
    template = import_template(template_file)
    copy = duplicate_template(template.id)
    with get_session() as session:
        assert session.get(Template, template.id).created_at is not None
        assert session.get(Template, copy.id).updated_at is not None


def test_batch_send_default_subject(template_file, records, no_send_delay) -> None:
    template = import_template(template_file)
    client = FakeSmtpClient()
    batch_send(template, records[:1], smtp_config=_smtp_config(), client=client)
    assert client.sent[0].subject == "Document for current period"


def test_update_template(template_file, schema_data, out_dir) -> None:
    template = import_template(template_file)
    schema_data["blocks"] = schema_data["blocks"][:1]
    replacement = out_dir / "replacement.json"
    replacement.write_text(json.dumps(schema_data), encoding="utf-8")

    updated = update_template(
        template.id,
        name="Monthly v2",
        schema_path=replacement,
        orientation="LANDSCAPE",
        template_type="GENERAL",
        recipient_email_field="Work Email",
    )
    assert updated.name == "Monthly v2"
    assert updated.orientation.value == "LANDSCAPE"
    assert updated.paper_size.value == "A4"
    assert updated.template_type.value == "GENERAL"
    assert updated.recipient_email_field == "Work Email"

    stored = load_template(template.id)
    assert [b["id"] for b in stored.schema_data["blocks"]] == ["title"]
    assert stored.name == "Monthly v2"

    cleared = update_template(template.id, recipient_email_field="")
    assert cleared.recipient_email_field is None
    assert cleared.name == "Monthly v2"


def test_update_template_rejects_bad_values(template_file, out_dir) -> None:
    template = import_template(template_file)
    with pytest.raises(TemplateValidationError):
        update_template(template.id, paper_size="A5")
    broken = out_dir / "broken.json"
    broken.write_text(json.dumps({"blocks": "nope", "globalStyles": {}}), encoding="utf-8")
    with pytest.raises(TemplateValidationError):
        update_template(template.id, schema_path=broken)
    with pytest.raises(TemplateNotFoundError):
        update_template(999, name="Missing")
    assert load_template(template.id).name == "Monthly"


def test_delete_template_removes_dispatches(template_file, records) -> None:
    template = import_template(template_file)
    other = duplicate_template(template.id)
    send_document(template, records[1], "ben@example.com", smtp_config=_smtp_config(), client=FakeSmtpClient())
    assert len(_dispatches()) == 1

    deleted = delete_template(template.id)
    assert deleted.name == "Monthly"
    assert _dispatches() == []
    assert [t.id for t in list_templates()] == [other.id]
    with pytest.raises(TemplateNotFoundError):
        delete_template(template.id)


def test_update_and_remove_smtp_configuration(out_dir, monkeypatch) -> None:
    monkeypatch.setenv("VELLO_ENCRYPTION_KEY", generate_key())
    seed_email_providers()
    first = add_smtp_configuration("First", "Gmail", "a@example.com", "a@example.com", "pw", is_default=True)
    second = add_smtp_configuration("Second", "Outlook", "b@example.com", "b@example.com", "pw")

    updated = update_smtp_configuration(
        second.id,
        name="Renamed",
        provider_name="Custom",
        smtp_password="new-pw",
        email_subject="{{documentType}} ready",
    )
    assert updated.name == "Renamed"
    assert updated.sender_email == "b@example.com"
    assert updated.email_subject == "{{documentType}} ready"
    assert decrypt(updated.smtp_password) == "new-pw"
    assert updated.is_default is False

    unchanged = update_smtp_configuration(first.id, sender_name="Payroll")
    assert decrypt(unchanged.smtp_password) == "pw"

    set_default_smtp_configuration(second.id)
    with get_session() as session:
        assert resolve_smtp_configuration(session).id == second.id
        assert session.get(SmtpConfiguration, first.id).is_default is False

    delete_smtp_configuration(second.id)
    with get_session() as session:
        assert session.get(SmtpConfiguration, second.id) is None
        assert resolve_smtp_configuration(session).id == first.id

    with pytest.raises(SmtpConfigurationError):
        delete_smtp_configuration(second.id)
    with pytest.raises(SmtpConfigurationError):
        update_smtp_configuration(first.id, provider_name="Yahoo")
