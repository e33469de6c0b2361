# app/core/config.py
"""
Application configuration - loads from environment variables.
Single source of truth for all settings.
"""
import os
from typing import Optional
from urllib.parse import quote_plus
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables FIRST
BASE_DIR = Path(__file__).resolve().parent.parent.parent
env_path = BASE_DIR / '.env'
load_dotenv(dotenv_path=env_path)


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {name} must be a number") from None


# ────────────────────────────────────────────
# WhatsApp Configuration
# ────────────────────────────────────────────
PHONE_ID: str = os.getenv("WHATSAPP_PHONE_ID", "")
TOKEN: str = os.getenv("WHATSAPP_TOKEN", "")
VERIFY_TOKEN: str = os.getenv("VERIFY_TOKEN", "")

VALIDATE_UPDATES: bool = os.getenv("VALIDATE_UPDATES", "true").lower() not in ("0", "false", "no")

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# ────────────────────────────────────────────
# Tenant / Instance
# ────────────────────────────────────────────
DEFAULT_TENANT_ID: str = os.getenv("TENANT_ID") or os.getenv("DEFAULT_TENANT_ID") or "default"
# One WhatsApp number = one instance; flows and conversations are scoped to it
DEFAULT_INSTANCE_ID: str = os.getenv("INSTANCE_ID") or PHONE_ID or "default"

# ────────────────────────────────────────────
# Database Configuration
# ────────────────────────────────────────────
DB_USER = os.getenv("DB_USER", "postgres")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "whatsaflow_db")
DATABASE_URL = os.getenv("DATABASE_URL")

# Build DATABASE_URL
if not DATABASE_URL:
    encoded_password = quote_plus(DB_PASSWORD)
    DATABASE_URL = f"postgresql://{DB_USER}:{encoded_password}@{DB_HOST}:{DB_PORT}/{DB_NAME}"

# ────────────────────────────────────────────
# Flow Engine
# ────────────────────────────────────────────
# Unset means requests waits indefinitely for webhook nodes
FLOW_WEBHOOK_TIMEOUT: Optional[float] = _optional_float("FLOW_WEBHOOK_TIMEOUT")
FLOW_DEFAULT_DELAY_MS: int = int(os.getenv("FLOW_DEFAULT_DELAY_MS", "1000"))
FLOW_HANDOFF_MESSAGE: str = os.getenv(
    "FLOW_HANDOFF_MESSAGE",
    "I'm transferring you to a human agent. Someone will be with you shortly.",
)
FLOW_EXECUTIONS_LIMIT: int = int(os.getenv("FLOW_EXECUTIONS_LIMIT", "50"))


# ────────────────────────────────────────────
# Settings Class
# ────────────────────────────────────────────
class Settings:
    DATABASE_URL: str = DATABASE_URL
    PHONE_ID: str = PHONE_ID
    TOKEN: str = TOKEN
    VERIFY_TOKEN: str = VERIFY_TOKEN
    DEFAULT_TENANT_ID: str = DEFAULT_TENANT_ID
    DEFAULT_INSTANCE_ID: str = DEFAULT_INSTANCE_ID
    LOG_LEVEL: str = LOG_LEVEL
    FLOW_WEBHOOK_TIMEOUT: Optional[float] = FLOW_WEBHOOK_TIMEOUT
    FLOW_DEFAULT_DELAY_MS: int = FLOW_DEFAULT_DELAY_MS
    FLOW_HANDOFF_MESSAGE: str = FLOW_HANDOFF_MESSAGE
    FLOW_EXECUTIONS_LIMIT: int = FLOW_EXECUTIONS_LIMIT

    @property
    def whatsapp_configured(self) -> bool:
        return bool(self.PHONE_ID and self.TOKEN and self.VERIFY_TOKEN)

settings = Settings()
