import os
from dotenv import load_dotenv

from exceptions import ConfigurationError

# Load environment variables
load_dotenv()


def get_int_setting(name: str, default: int) -> int:
    """Read an integer setting; malformed values are a ConfigurationError."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o')

# Pages per chunk sent to the extraction service
CHUNK_SIZE = get_int_setting('CHUNK_SIZE', 3)

MAX_FILE_SIZE = get_int_setting('MAX_FILE_SIZE', 10 * 1024 * 1024)  # 10MB

UNIDENTIFIED_LABEL = os.getenv('UNIDENTIFIED_LABEL', 'Unidentified')

LOG_FILE = os.getenv('LOG_FILE', 'logs/app.log')

# Finished sessions older than this are dropped
SESSION_TTL = get_int_setting('SESSION_TTL', 3600)

APP_PORT = get_int_setting('APP_PORT', 8001)

RATE_LIMIT_WINDOW = 60  # 1 minute
RATE_LIMIT_MAX_REQUESTS = 10  # 10 requests per minute


def get_api_key():
    """Read the OpenAI API key at call time so a missing key never breaks imports."""
    return os.getenv('OPENAI_API_KEY')


def require_api_key() -> str:
    """
    Return the OpenAI API key.

    Raises:
        ConfigurationError: If OPENAI_API_KEY is not set
    """
    api_key = get_api_key()
    if not api_key:
        raise ConfigurationError("OPENAI_API_KEY environment variable is required")
    return api_key


def validate_chunk_size(chunk_size: int) -> int:
    if chunk_size < 1:
        raise ConfigurationError(f"Chunk size must be at least 1, got {chunk_size}")
    return chunk_size
