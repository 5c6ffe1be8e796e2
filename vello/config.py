from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Tuple

from dotenv import load_dotenv


BASE_DIR = Path(__file__).resolve().parents[1]
ENV_PATH = BASE_DIR / ".env"

if ENV_PATH.exists():
    load_dotenv(ENV_PATH)

OUT_DIR = Path(os.getenv("VELLO_OUT_DIR", str(BASE_DIR / "out")))
DB_PATH = OUT_DIR / "vello.db"
ASSET_DIR = Path(os.getenv("VELLO_ASSET_DIR", str(BASE_DIR / "assets")))

ENCRYPTION_KEY_ENV = "VELLO_ENCRYPTION_KEY"

# 1px at 96 DPI is 0.75pt
PX_TO_PT = 0.75

PAPER_SIZES: Dict[str, Tuple[float, float]] = {
    "A4": (595.28, 841.89),
    "LETTER": (612.0, 792.0),
    "LEGAL": (612.0, 1008.0),
}
ORIENTATIONS = ("PORTRAIT", "LANDSCAPE")

DEFAULT_GLOBAL_STYLES = {
    "fontFamily": "Inter",
    "fontSize": 12,
    "primaryColor": "#1a1a1a",
    "secondaryColor": "#6b7280",
}

BORDER_COLOR = "#e5e7eb"
HEADER_BACKGROUND = "#f3f4f6"
STRIPE_BACKGROUND = "#f9fafb"

SEND_DELAY_SECONDS = float(os.getenv("VELLO_SEND_DELAY", "0.1"))
HTTP_TIMEOUT_SECONDS = float(os.getenv("VELLO_HTTP_TIMEOUT", "15"))
SMTP_TIMEOUT_SECONDS = float(os.getenv("VELLO_SMTP_TIMEOUT", "30"))

BATCH_FOLDER = "payslips"
MAX_BLOCKS = 500
ORGANIZATION_NAME = os.getenv("VELLO_ORGANIZATION_NAME", "Vello")

EMAIL_PROVIDERS = [
    {
        "name": "Gmail",
        "smtp_server": "smtp.gmail.com",
        "smtp_port": 587,
        "use_tls": True,
        "description": "Google Gmail SMTP server. Requires app-specific password.",
    },
    {
        "name": "Outlook",
        "smtp_server": "smtp-mail.outlook.com",
        "smtp_port": 587,
        "use_tls": True,
        "description": "Microsoft Outlook/Hotmail SMTP server.",
    },
    {
        "name": "Custom",
        "smtp_server": "smtp.example.com",
        "smtp_port": 587,
        "use_tls": True,
        "description": "Custom SMTP server. Configure your own server settings.",
    },
]


def set_out_dir(path: Path) -> None:
    global OUT_DIR, DB_PATH
    OUT_DIR = path
    DB_PATH = OUT_DIR / "vello.db"
