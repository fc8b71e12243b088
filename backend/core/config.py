import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./telehealth.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:5173"])

# All stored timestamps are naive wall-clock times in this zone.
PROVIDER_TIMEZONE = os.getenv("PROVIDER_TIMEZONE", "America/Sao_Paulo")
DEFAULT_LOOKAHEAD_DAYS = int(os.getenv("DEFAULT_LOOKAHEAD_DAYS", "30"))
MAX_LOOKAHEAD_DAYS = int(os.getenv("MAX_LOOKAHEAD_DAYS", "90"))

_default_provider = os.getenv("DEFAULT_PROVIDER_ID", "")
DEFAULT_PROVIDER_ID = int(_default_provider) if _default_provider.strip() else None

INTENT_API_URL = os.getenv("INTENT_API_URL", "https://api.openai.com/v1")
INTENT_API_KEY = os.getenv("INTENT_API_KEY", "")
INTENT_MODEL = os.getenv("INTENT_MODEL", "gpt-4o-mini")
INTENT_TIMEOUT_SECONDS = float(os.getenv("INTENT_TIMEOUT_SECONDS", "10"))
# Suggestions below this confidence are handed to a human.
INTENT_MIN_CONFIDENCE = float(os.getenv("INTENT_MIN_CONFIDENCE", "0.6"))

WHATSAPP_API_BASE = os.getenv("WHATSAPP_API_BASE", "https://graph.facebook.com")
WHATSAPP_API_VERSION = os.getenv("WHATSAPP_API_VERSION", "v22.0")
WHATSAPP_PHONE_NUMBER_ID = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
WHATSAPP_ACCESS_TOKEN = os.getenv("WHATSAPP_ACCESS_TOKEN", "")
WHATSAPP_VERIFY_TOKEN = os.getenv("WHATSAPP_VERIFY_TOKEN", "")
MESSAGING_TIMEOUT_SECONDS = float(os.getenv("MESSAGING_TIMEOUT_SECONDS", "15"))


def validate_runtime_config() -> None:
    if DEFAULT_LOOKAHEAD_DAYS < 1 or DEFAULT_LOOKAHEAD_DAYS > MAX_LOOKAHEAD_DAYS:
        raise RuntimeError("DEFAULT_LOOKAHEAD_DAYS must be between 1 and MAX_LOOKAHEAD_DAYS.")
    if INTENT_TIMEOUT_SECONDS <= 0:
        raise RuntimeError("INTENT_TIMEOUT_SECONDS must be positive.")
    if not 0 <= INTENT_MIN_CONFIDENCE <= 1:
        raise RuntimeError("INTENT_MIN_CONFIDENCE must be between 0 and 1.")
    if APP_ENV.lower() == "production" and not WHATSAPP_VERIFY_TOKEN:
        raise RuntimeError("WHATSAPP_VERIFY_TOKEN must be set in production.")
