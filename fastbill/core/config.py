import os
from dotenv import load_dotenv

# Load env vars
load_dotenv()

# --- Configuration Constants ---

# Remote intent parser (optional)
REMOTE_PARSER_URL = os.getenv("REMOTE_PARSER_URL", "").strip()
REMOTE_PARSER_TIMEOUT = float(os.getenv("REMOTE_PARSER_TIMEOUT", "4"))
DEFAULT_LOCALE = os.getenv("DEFAULT_LOCALE", "en-IN")

# Circuit breaker around the remote parser
PARSER_FAILURE_THRESHOLD = int(os.getenv("PARSER_FAILURE_THRESHOLD", "3"))
PARSER_COOLDOWN_SECONDS = float(os.getenv("PARSER_COOLDOWN_SECONDS", "120"))
PARSER_NOTICE_INTERVAL_SECONDS = float(os.getenv("PARSER_NOTICE_INTERVAL_SECONDS", "60"))

# Product matcher learning log
LEARNING_STORE_PATH = os.getenv("LEARNING_STORE_PATH", "product_learning.json")
LEARNING_CAP = int(os.getenv("LEARNING_CAP", "100"))

# Voice sessions idle longer than this are dropped from the API registry
SESSION_IDLE_SECONDS = float(os.getenv("SESSION_IDLE_SECONDS", "3600"))

# Billing defaults
DEFAULT_CREDIT_DAYS = int(os.getenv("DEFAULT_CREDIT_DAYS", "7"))

# Logging
LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_FILE = os.getenv("LOG_FILE", "fastbill.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# --- Helper Functions ---

def is_remote_parser_enabled() -> bool:
    """
    The remote parser is only used when REMOTE_PARSER_URL is set.
    """
    return bool(REMOTE_PARSER_URL)

def get_allowed_origins() -> list:
    """
    Returns CORS origins for the API.
    Comma separated in ALLOWED_ORIGINS, defaults to local dev servers.
    """
    raw = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000")
    return [o.strip().rstrip('/') for o in raw.split(",") if o.strip()]
