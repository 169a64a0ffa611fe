import logging
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

USER = "USER"
BOT = "BOT"


def format_entry(role, content, timestamp=None):
    timestamp = timestamp or datetime.now()
    return f"[{timestamp.strftime('%Y-%m-%d %H:%M:%S')}] {role}: {content}\n"


def log_message(path, role, content):
    """Append one entry to the audit log. Failures are logged, never raised."""
    try:
        with open(Path(path), "a", encoding="utf-8") as f:
            f.write(format_entry(role, content))
    except OSError as e:
        logger.warning(f"Could not write to audit log {path}: {e}")
