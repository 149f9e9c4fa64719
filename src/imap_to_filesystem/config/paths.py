import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env once, globally
load_dotenv()

# Project root (independent of current working directory).
PROJECT_ROOT = Path(__file__).resolve().parents[3]

ENV_CONFIG_PATH = "IMAP_TO_FS_CONFIG"
ENV_IMAP_USER = "IMAP_TO_FS_IMAP_USER"
ENV_IMAP_PASSWORD = "IMAP_TO_FS_IMAP_PASSWORD"


def resolve_path(env_key: str, default: str) -> Path:
    """
    Resolve a file path from ENV.
    Relative paths are resolved against PROJECT_ROOT.
    """
    value = os.getenv(env_key) or default
    path = Path(value).expanduser()

    if not path.is_absolute():
        path = PROJECT_ROOT / path

    return path


def config_path() -> Path:
    return resolve_path(ENV_CONFIG_PATH, "config.json")
