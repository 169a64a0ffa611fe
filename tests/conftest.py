"""
Pytest fixtures for relay tests.
"""

import itertools
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.constants import ParseMode
from telegram.error import BadRequest

from yolorelay.bot.formatting import MARKDOWN_SPECIAL_CHARS
from yolorelay.config import Settings
from yolorelay.core.runner import ExitOutcome

AUTHORIZED_CHAT_ID = 424242


class FakeHandle:
    """Stands in for a running assistant process."""

    def __init__(self, lines, outcome, stream_error=None):
        self._lines = list(lines)
        self._outcome = outcome
        self._stream_error = stream_error
        self.killed = False
        self.waited = False

    async def lines(self):
        for line in self._lines:
            yield line
        if self._stream_error is not None:
            raise self._stream_error

    def kill(self):
        self.killed = True

    async def wait(self):
        self.waited = True
        return self._outcome


class FakeRunner:
    """Records prompts instead of spawning anything."""

    def __init__(self, lines=(), outcome=None, error=None, stream_error=None):
        self.lines = lines
        self.outcome = outcome or ExitOutcome(exit_code=0)
        self.error = error
        self.stream_error = stream_error
        self.prompts = []
        self.handles = []

    async def start(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        handle = FakeHandle(self.lines, self.outcome, self.stream_error)
        self.handles.append(handle)
        return handle


@pytest.fixture
def settings(tmp_path):
    """Settings for the authorized test chat with an isolated audit log."""
    return Settings(
        token="test_token",
        chat_id=AUTHORIZED_CHAT_ID,
        markdown=True,
        assistant_command="claude",
        assistant_args=("--dangerously-skip-permissions",),
        run_timeout=30.0,
        flush_interval=1.0,
        max_buffer_size=2000,
        display_budget=3900,
        audit_log_path=tmp_path / "conversation.log",
    )


@pytest.fixture
def mock_bot():
    """Create a mock Telegram bot whose sends return message handles."""
    bot = MagicMock()
    bot.username = "yolo_relay_bot"
    message_ids = itertools.count(100)
    bot.send_message = AsyncMock(side_effect=lambda **kwargs: MagicMock(message_id=next(message_ids)))
    bot.edit_message_text = AsyncMock()
    return bot


def check_markdown_v2(text):
    """Raise like Telegram does for a reserved character left unescaped."""
    chars = iter(text)
    for ch in chars:
        if ch == "\\":
            next(chars, None)
        elif ch in MARKDOWN_SPECIAL_CHARS:
            raise BadRequest(
                f"Can't parse entities: character '{ch}' is reserved and must be escaped with the preceding '\\'"
            )


@pytest.fixture
def strict_bot(mock_bot):
    """A mock bot that rejects malformed MarkdownV2 the way the Bot API does."""
    send = mock_bot.send_message.side_effect

    def _send(**kwargs):
        if kwargs.get("parse_mode") == ParseMode.MARKDOWN_V2:
            check_markdown_v2(kwargs["text"])
        return send(**kwargs)

    def _edit(**kwargs):
        if kwargs.get("parse_mode") == ParseMode.MARKDOWN_V2:
            check_markdown_v2(kwargs["text"])

    mock_bot.send_message.side_effect = _send
    mock_bot.edit_message_text.side_effect = _edit
    return mock_bot


@pytest.fixture
def make_runner():
    """Factory for fake runners: make_runner(lines, outcome, error, stream_error)."""
    return FakeRunner


@pytest.fixture
def make_context(mock_bot, settings):
    """Build a handler context carrying settings and a runner."""

    def _make(runner=None):
        context = MagicMock()
        context.bot = mock_bot
        context.bot_data = {"settings": settings, "runner": runner or FakeRunner()}
        return context

    return _make


@pytest.fixture
def make_update():
    """Build an inbound update from a chat with optional text."""

    def _make(text, chat_id=AUTHORIZED_CHAT_ID):
        update = MagicMock()
        update.effective_chat.id = chat_id
        update.effective_message.text = text
        return update

    return _make
