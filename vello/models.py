from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, inspect, text
from sqlmodel import Field, SQLModel, Session, create_engine, select

from . import config


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaperSize(str, Enum):
    A4 = "A4"
    LETTER = "LETTER"
    LEGAL = "LEGAL"


class Orientation(str, Enum):
    PORTRAIT = "PORTRAIT"
    LANDSCAPE = "LANDSCAPE"


class TemplateType(str, Enum):
    PAYROLL = "PAYROLL"
    GENERAL = "GENERAL"


class DispatchStatus(str, Enum):
    SENT = "SENT"
    FAILED = "FAILED"


class Template(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: Optional[str] = None
    schema_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("schema", JSON, nullable=False))
    paper_size: PaperSize = Field(default=PaperSize.A4)
    orientation: Orientation = Field(default=Orientation.PORTRAIT)
    template_type: TemplateType = Field(default=TemplateType.PAYROLL)
    recipient_email_field: Optional[str] = None
    recipient_name_field: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class EmailProvider(SQLModel, table=True):
    __tablename__ = "email_providers"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    smtp_server: str
    smtp_port: int
    use_tls: bool = True
    description: Optional[str] = None


class SmtpConfiguration(SQLModel, table=True):
    __tablename__ = "smtp_configurations"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    provider_id: int = Field(foreign_key="email_providers.id")
    sender_email: str
    sender_name: Optional[str] = None
    smtp_username: str
    smtp_password: str  # encrypted, see vello.crypto
    email_subject: Optional[str] = None
    email_body: Optional[str] = None
    is_default: bool = False
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class DispatchRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    template_id: int = Field(foreign_key="template.id", index=True)
    recipient: str
    status: DispatchStatus
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


engine = create_engine(f"sqlite:///{config.DB_PATH}")


def reset_engine() -> None:
    global engine
    engine = create_engine(f"sqlite:///{config.DB_PATH}")


def init_db() -> None:
    config.OUT_DIR.mkdir(parents=True, exist_ok=True)
    SQLModel.metadata.create_all(engine)
    _migrate_db()


# columns added after the first release; older databases get them on startup
_LATE_COLUMNS = {
    "template": {
        "template_type": "VARCHAR(7) NOT NULL DEFAULT 'PAYROLL'",
        "recipient_email_field": "VARCHAR",
        "recipient_name_field": "VARCHAR",
    },
    "smtp_configurations": {
        "name": "VARCHAR NOT NULL DEFAULT 'Default'",
        "is_default": "BOOLEAN NOT NULL DEFAULT 0",
    },
}


def _migrate_db() -> None:
    """Add columns missing from databases created by older versions."""
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())
    for table, columns in _LATE_COLUMNS.items():
        if table not in tables:
            continue
        existing = {col["name"] for col in inspector.get_columns(table)}
        for column, ddl in columns.items():
            if column not in existing:
                with engine.begin() as conn:
                    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))


def get_session() -> Session:
    return Session(engine, expire_on_commit=False)


def seed_email_providers() -> int:
    init_db()
    with get_session() as session:
        for entry in config.EMAIL_PROVIDERS:
            provider = session.exec(select(EmailProvider).where(EmailProvider.name == entry["name"])).first()
            if provider is None:
                provider = EmailProvider(**entry)
            else:
                for key, value in entry.items():
                    setattr(provider, key, value)
            session.add(provider)
        session.commit()
    return len(config.EMAIL_PROVIDERS)
