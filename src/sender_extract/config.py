"""Centralized configuration.

All files are resolved relative to the working directory the tool runs in:
    .env                 - optional environment overrides
    credentials.json     - Google OAuth client credentials
    tokens/token.json    - cached OAuth token (created on first run)

This module auto-loads the .env file on import. Variables already present
in the environment take precedence.

Recognized variables:
    SENDER_EXTRACT_LOG_LEVEL - logging level name (default: WARNING)
"""

import os
from pathlib import Path

# Credential file paths
ENV_FILE = Path(".env")
CREDENTIALS_FILE = Path("credentials.json")
TOKENS_DIR = Path("tokens")
TOKEN_FILE = TOKENS_DIR / "token.json"

APPLICATION_NAME = "Email Extractor"
USER_ID = "me"

# Connect and read timeout for every Gmail API request, in seconds
REQUEST_TIMEOUT = 15

# Local port the OAuth consent screen redirects back to
REDIRECT_PORT = 8888

GMAIL_SCOPES = ["gmail_labels", "gmail_readonly", "gmail_metadata"]

DEFAULT_LOG_LEVEL = "WARNING"


def _load_env_file(env_path: Path) -> dict[str, str]:
    """Load environment variables from a file.

    Args:
        env_path: Path to .env file.

    Returns:
        Dictionary of loaded variables.
    """
    loaded = {}
    if not env_path.exists():
        return loaded

    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue

            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip()

            # Remove surrounding quotes
            if (value.startswith('"') and value.endswith('"')) or (
                value.startswith("'") and value.endswith("'")
            ):
                value = value[1:-1]

            # Only set if not already in environment (env vars take precedence)
            if key and key not in os.environ:
                os.environ[key] = value
                loaded[key] = value

    return loaded


def ensure_tokens_dir(tokens_dir: Path = TOKENS_DIR) -> Path:
    """Create the token cache directory if it doesn't exist.

    Returns:
        Path to the token cache directory.
    """
    tokens_dir.mkdir(parents=True, exist_ok=True)
    return tokens_dir


def get_log_level() -> str:
    """Logging level name from SENDER_EXTRACT_LOG_LEVEL."""
    return os.environ.get("SENDER_EXTRACT_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()


def get_max_workers() -> int:
    """Size of the metadata fetch pool: one worker per available processor."""
    return os.cpu_count() or 1


# Auto-load .env from the working directory on import
_loaded = _load_env_file(ENV_FILE)
