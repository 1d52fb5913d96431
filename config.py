import os

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # dotenv is optional for production, but useful locally


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Logging ---
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # --- Telnyx (SMS delivery) ---
    TELNYX_API_KEY = os.environ.get("TELNYX_API_KEY")
    TELNYX_FROM_NUMBER = os.environ.get("TELNYX_FROM_NUMBER")

    # --- Webhook fan-out ---
    WEBHOOK_BASE_URL = os.environ.get("WEBHOOK_BASE_URL", "https://discord.com/api/webhooks")
    WEBHOOK_TIMEOUT = float(os.environ.get("WEBHOOK_TIMEOUT", "5"))
    WEBHOOK_MAX_CONNECTIONS = int(os.environ.get("WEBHOOK_MAX_CONNECTIONS", "100"))
    WEBHOOK_KEEPALIVE_EXPIRY = float(os.environ.get("WEBHOOK_KEEPALIVE_EXPIRY", "90"))

    # --- Loops ---
    LOOP_MIN_INTERVAL_MS = int(os.environ.get("LOOP_MIN_INTERVAL_MS", "1000"))
    LOOP_RESTORE_ON_START = _env_bool("LOOP_RESTORE_ON_START", "true")

    # --- Reminders ---
    REMINDER_MAX_CHARS = int(os.environ.get("REMINDER_MAX_CHARS", "500"))

settings = Settings()
