import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic_automation.db")

# Cron shared secret for the automatic execution endpoint
CRON_SECRET_KEY = os.getenv("CRON_SECRET_KEY")
if not CRON_SECRET_KEY:
    import warnings

    warnings.warn(
        "CRON_SECRET_KEY not set! /execute-automatic is open - DO NOT USE IN PRODUCTION",
        RuntimeWarning,
        stacklevel=2,
    )

# Chatwoot messaging bridge (WhatsApp inbox)
CHATWOOT_BASE_URL = os.getenv("CHATWOOT_BASE_URL", "https://chat.audicarefono.com.br").rstrip("/")
CHATWOOT_API_TOKEN = os.getenv("CHATWOOT_API_TOKEN")
CHATWOOT_ACCOUNT_ID = os.getenv("CHATWOOT_ACCOUNT_ID", "1")
CHATWOOT_INBOX_ID = os.getenv("CHATWOOT_INBOX_ID", "1")
CHATWOOT_TIMEOUT = float(os.getenv("CHATWOOT_TIMEOUT", "10.0"))

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Clinica <noreply@audicarefono.com.br>")

# Twilio SMS Configuration (either a From number or a Messaging Service SID)
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_FROM_NUMBER = os.getenv("TWILIO_FROM_NUMBER")
TWILIO_MESSAGING_SERVICE_SID = os.getenv("TWILIO_MESSAGING_SERVICE_SID")

# Trigger windows
SCHEDULE_TOLERANCE_MINUTES = int(os.getenv("SCHEDULE_TOLERANCE_MINUTES", "5"))
EVENT_LOOKBACK_MINUTES = int(os.getenv("EVENT_LOOKBACK_MINUTES", "60"))

# Cache (Chatwoot contact/conversation ids)
CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", "3600"))
REDIS_ENABLED = os.getenv("REDIS_ENABLED", "true").lower() == "true"
