"""Configuration loaded from environment variables."""

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from yolorelay.errors import ConfigMissing

load_dotenv()

# Telegram (token and chat id are resolved at startup, see resolve_credentials)
TELEGRAM_MARKDOWN = os.getenv("TELEGRAM_MARKDOWN", "true").lower() == "true"

# Assistant subprocess
ASSISTANT_COMMAND = os.getenv("ASSISTANT_COMMAND", "claude")
ASSISTANT_ARGS = os.getenv("ASSISTANT_ARGS", "--dangerously-skip-permissions")
RUN_TIMEOUT_SECONDS = float(os.getenv("RUN_TIMEOUT_SECONDS", "1800"))

# Streaming
FLUSH_INTERVAL_SECONDS = float(os.getenv("FLUSH_INTERVAL_SECONDS", "1.0"))
MAX_BUFFER_SIZE = int(os.getenv("MAX_BUFFER_SIZE", "2000"))
DISPLAY_BUDGET = int(os.getenv("DISPLAY_BUDGET", "3900"))

# Audit log
AUDIT_LOG_PATH = os.getenv("AUDIT_LOG_PATH", "conversation.log")

# Self-update
PACKAGE_NAME = "yolorelay"
UPDATE_INTERVAL_MINUTES = float(os.getenv("UPDATE_INTERVAL_MINUTES", "30"))
UPDATE_SOURCE = os.getenv("UPDATE_SOURCE", "pypi")
UPDATE_BRANCH = os.getenv("UPDATE_BRANCH", "main")
REPO_DIR = Path(os.getenv("UPDATE_REPO_DIR", str(Path(__file__).resolve().parent.parent)))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))

# Service
SERVICE_NAME = "yolorelay"
PID_FILE = Path(f"/tmp/{SERVICE_NAME}.pid")


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings shared read-only by every relay session."""

    token: str
    chat_id: int
    markdown: bool = TELEGRAM_MARKDOWN
    assistant_command: str = ASSISTANT_COMMAND
    assistant_args: tuple = field(default_factory=lambda: tuple(shlex.split(ASSISTANT_ARGS)))
    run_timeout: Optional[float] = RUN_TIMEOUT_SECONDS or None
    flush_interval: float = FLUSH_INTERVAL_SECONDS
    max_buffer_size: int = MAX_BUFFER_SIZE
    display_budget: int = DISPLAY_BUDGET
    audit_log_path: Path = Path(AUDIT_LOG_PATH)

    @property
    def assistant_role(self) -> str:
        """Role tag used for assistant output in the audit log."""
        return Path(self.assistant_command).name.upper()


def _parse_chat_id(value) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def resolve_credentials(token=None, chat_id=None) -> tuple[str, int]:
    """Merge CLI values over the environment; raise ConfigMissing if either is absent."""
    token = token or os.getenv("TELEGRAM_BOT_TOKEN", "")
    if not token:
        raise ConfigMissing(
            "Telegram bot token not provided. Set TELEGRAM_BOT_TOKEN environment variable or use --token"
        )

    resolved_chat_id = _parse_chat_id(chat_id)
    if resolved_chat_id is None:
        resolved_chat_id = _parse_chat_id(os.getenv("TELEGRAM_CHAT_ID"))
    if resolved_chat_id is None:
        raise ConfigMissing(
            "Telegram chat ID not provided. Set TELEGRAM_CHAT_ID environment variable or use --chat-id"
        )

    return token, resolved_chat_id


def resolve_settings(token=None, chat_id=None) -> Settings:
    token, chat_id = resolve_credentials(token, chat_id)
    return Settings(token=token, chat_id=chat_id)
