# utils/config.py

import os
from dotenv import load_dotenv

load_dotenv()

GITHUB_TOKEN = os.getenv("GITHUB_COMMENT_TOKEN") or os.getenv("GITHUB_TOKEN")

GITHUB_API_BASE = os.getenv("GITHUB_API_BASE", "https://api.github.com")
GITHUB_HTTP_TIMEOUT = float(os.getenv("GITHUB_HTTP_TIMEOUT", "30"))

# placement engine
PLACEMENT_WORKERS = int(os.getenv("PLACEMENT_WORKERS", "4"))
PLACEMENT_TIMEOUT_SECONDS = float(os.getenv("PLACEMENT_TIMEOUT_SECONDS", "60"))
COMMENT_MAX_ATTEMPTS = int(os.getenv("COMMENT_MAX_ATTEMPTS", "3"))
COMMENT_RETRY_BACKOFF_SECONDS = float(os.getenv("COMMENT_RETRY_BACKOFF_SECONDS", "1.0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def token_available():
    return bool(GITHUB_TOKEN)
