import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# "development" or "production"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
IS_DEVELOPMENT = ENVIRONMENT != "production"

# Comma separated list, only used outside development
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "").split(",")
    if origin.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
JSON_LOGS = os.getenv("JSON_LOGS", "false" if IS_DEVELOPMENT else "true").lower() == "true"

# Quotation cleanup sweep
SWEEP_ENABLED = os.getenv("SWEEP_ENABLED", "true").lower() == "true"
SWEEP_RETENTION_DAYS = int(os.getenv("SWEEP_RETENTION_DAYS", "30"))
SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", str(24 * 60 * 60)))
SWEEP_STARTUP_DELAY_SECONDS = int(os.getenv("SWEEP_STARTUP_DELAY_SECONDS", "10"))

PORT = int(os.getenv("PORT", "8000"))
