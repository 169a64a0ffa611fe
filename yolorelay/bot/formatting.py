"""
Telegram message formatting utilities.

Handles MarkdownV2 escaping and fitting a growing transcript into
Telegram's per-message character limit.
"""

# Telegram limits
MAX_MESSAGE_LENGTH = 4096
DEFAULT_DISPLAY_BUDGET = 3900

TRUNCATION_MARKER = "... (earlier output truncated)\n"

# MarkdownV2 metacharacters that must be escaped
MARKDOWN_SPECIAL_CHARS = frozenset("_*[]()~`>#+-=|{}.!")

# The escape character itself; a bare one would swallow the next character
ESCAPE_CHAR = "\\"


def escape_markdown(text: str) -> str:
    """
    Prefix every MarkdownV2 metacharacter, and the backslash itself, with a
    backslash.

    Not idempotent: escaping already-escaped text escapes it again, so each
    outbound message must pass through here exactly once.
    """
    return "".join(
        ESCAPE_CHAR + ch if ch in MARKDOWN_SPECIAL_CHARS or ch == ESCAPE_CHAR else ch
        for ch in text
    )


def tail_window(text: str, budget: int = DEFAULT_DISPLAY_BUDGET) -> str:
    """
    Keep only the trailing ``budget`` characters of text.

    Args:
        text: The full transcript
        budget: Maximum number of transcript characters to show

    Returns:
        The text unchanged if it fits, otherwise its tail prefixed with
        the truncation marker
    """
    if len(text) <= budget:
        return text
    return TRUNCATION_MARKER + text[len(text) - budget:]


def render_for_chat(
    text: str,
    budget: int = DEFAULT_DISPLAY_BUDGET,
    markdown: bool = True,
) -> str:
    """
    Window and escape a transcript so it fits in one Telegram message.

    Escaping can grow the text, so the window is narrowed until the
    rendered result is within MAX_MESSAGE_LENGTH.
    """
    window = budget
    while True:
        shown = tail_window(text, max(window, 1))
        rendered = escape_markdown(shown) if markdown else shown
        overflow = len(rendered) - MAX_MESSAGE_LENGTH
        if overflow <= 0:
            return rendered
        if window <= 1:
            return rendered[-MAX_MESSAGE_LENGTH:]
        window = min(window, len(text)) - max(overflow // 2, 1)


def shorten(text: str, limit: int = 1500) -> str:
    """Trim captured stderr to its last ``limit`` characters."""
    value = text.strip()
    if len(value) <= limit:
        return value
    return "..." + value[-limit:]


def format_failure(exit_code, stderr: str, timed_out: bool = False, timeout=None) -> str:
    """
    Format a subprocess failure for the chat.

    Args:
        exit_code: Process exit status (None if it never exited)
        stderr: Captured standard error
        timed_out: Whether the run was killed at its deadline
        timeout: The deadline in seconds, for the message

    Returns:
        Plain (unescaped) error text
    """
    if timed_out and timeout:
        headline = f"Error: assistant timed out after {timeout:g} seconds and was stopped."
    elif timed_out:
        headline = "Error: assistant timed out and was stopped."
    elif exit_code == 0:
        headline = "Error: assistant reported an error (exit status 0)."
    else:
        headline = f"Error: assistant exited with status {exit_code}."
    details = shorten(stderr)
    if details:
        return f"{headline}\n\n{details}"
    return headline
