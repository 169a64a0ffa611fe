"""
Tests for edit-or-send message delivery.
"""

import asyncio
from unittest.mock import MagicMock

import pytest
from telegram.constants import ParseMode
from telegram.error import BadRequest, NetworkError, RetryAfter

from yolorelay.bot.formatting import TRUNCATION_MARKER, escape_markdown
from yolorelay.bot.sink import MessageSink

CHAT_ID = 555


@pytest.fixture
def sink(mock_bot):
    return MessageSink(mock_bot, CHAT_ID)


class TestDisplay:
    """Edit in place, fall back to send."""

    def test_first_display_sends(self, sink, mock_bot):
        """With no active message, display sends and records the handle."""
        message = asyncio.run(sink.display("hello"))

        mock_bot.send_message.assert_awaited_once_with(
            chat_id=CHAT_ID, text="hello", parse_mode=ParseMode.MARKDOWN_V2
        )
        assert sink.active_message is message
        assert mock_bot.edit_message_text.await_count == 0

    def test_second_display_edits(self, sink, mock_bot):
        async def scenario():
            await sink.display("one")
            await sink.display("one two.")

        asyncio.run(scenario())

        mock_bot.edit_message_text.assert_awaited_once_with(
            text="one two\\.",
            chat_id=CHAT_ID,
            message_id=100,
            parse_mode=ParseMode.MARKDOWN_V2,
        )
        assert mock_bot.send_message.await_count == 1

    def test_rejected_edit_sends_new_active_message(self, sink, mock_bot):
        """A refused edit sends fresh and later edits target the new message."""
        async def scenario():
            await sink.display("one")
            mock_bot.edit_message_text.side_effect = BadRequest("Message can't be edited")
            await sink.display("two")
            mock_bot.edit_message_text.side_effect = None
            await sink.display("three")

        asyncio.run(scenario())

        assert mock_bot.send_message.await_count == 2
        assert sink.active_message.message_id == 101
        assert mock_bot.edit_message_text.await_args.kwargs["message_id"] == 101

    def test_long_transcript_is_truncated(self, sink, mock_bot):
        """Only the tail of a 5000-character transcript is shown."""
        asyncio.run(sink.display("q" * 5000))

        text = mock_bot.send_message.await_args.kwargs["text"]
        assert text.startswith(escape_markdown(TRUNCATION_MARKER))
        assert text.endswith("q" * 3900)

    def test_plain_mode(self, mock_bot):
        """With markdown off nothing is escaped and no parse mode is sent."""
        sink = MessageSink(mock_bot, CHAT_ID, markdown=False)
        asyncio.run(sink.display("a.b"))
        mock_bot.send_message.assert_awaited_once_with(chat_id=CHAT_ID, text="a.b", parse_mode=None)


class TestBestEffort:
    """Transport failures are logged, never raised."""

    @pytest.mark.parametrize("error", [NetworkError("connection reset"), RetryAfter(5)])
    def test_send_failure_is_swallowed(self, sink, mock_bot, error):
        mock_bot.send_message.side_effect = error

        assert asyncio.run(sink.display("lost")) is None
        assert sink.active_message is None

    def test_send_failure_on_standalone_message(self, sink, mock_bot):
        mock_bot.send_message.side_effect = NetworkError("down")
        assert asyncio.run(sink.send("error report")) is None

    def test_standalone_send_keeps_active_message(self, sink, mock_bot):
        """Error replies do not replace the streaming message."""
        async def scenario():
            await sink.display("stream")
            await sink.send("Error!")

        asyncio.run(scenario())
        assert sink.active_message.message_id == 100
        assert mock_bot.send_message.await_args.kwargs["text"] == "Error\\!"


class TestMarkupRejection:
    """Text Telegram cannot parse is retried as plain text."""

    REGEX_LINE = "Use the regex \\d+\\.\\d+ to match"

    def test_backslash_output_is_accepted(self, strict_bot):
        """Escaped backslashes keep the markup valid."""
        sink = MessageSink(strict_bot, CHAT_ID)

        async def scenario():
            await sink.display("Processing...")
            await sink.display(self.REGEX_LINE)

        asyncio.run(scenario())

        assert strict_bot.edit_message_text.await_args.kwargs["text"] == escape_markdown(self.REGEX_LINE)
        assert strict_bot.send_message.await_count == 1

    def test_unparseable_send_is_resent_plain(self, sink, mock_bot):
        plain = MagicMock(message_id=7)
        mock_bot.send_message.side_effect = [BadRequest("Can't parse entities: unclosed bold"), plain]

        assert asyncio.run(sink.display("a.b")) is plain

        retry = mock_bot.send_message.await_args
        assert retry.kwargs["text"] == "a.b"
        assert retry.kwargs["parse_mode"] is None
        assert sink.active_message is plain

    def test_unparseable_edit_is_retried_plain(self, sink, mock_bot):
        async def scenario():
            await sink.display("one")
            mock_bot.edit_message_text.side_effect = [BadRequest("Can't parse entities: bad escape"), None]
            await sink.display("one two.")

        asyncio.run(scenario())

        assert mock_bot.edit_message_text.await_count == 2
        retry = mock_bot.edit_message_text.await_args
        assert retry.kwargs["text"] == "one two."
        assert retry.kwargs["parse_mode"] is None
        assert mock_bot.send_message.await_count == 1

    def test_other_bad_requests_are_not_retried_plain(self, sink, mock_bot):
        mock_bot.send_message.side_effect = BadRequest("Chat not found")
        assert asyncio.run(sink.display("a.b")) is None
        assert mock_bot.send_message.await_count == 1

    def test_plain_mode_never_retries(self, mock_bot):
        mock_bot.send_message.side_effect = BadRequest("Can't parse entities: whatever")
        sink = MessageSink(mock_bot, CHAT_ID, markdown=False)
        assert asyncio.run(sink.send("x")) is None
        assert mock_bot.send_message.await_count == 1
