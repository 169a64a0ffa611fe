"""
Edit-or-send delivery of relay output to a Telegram chat.

Delivery is best effort: Telegram errors are logged and never abort the
relay session.
"""

import logging
from typing import Optional

from telegram import Bot, Message
from telegram.constants import ParseMode
from telegram.error import TelegramError

from yolorelay.bot.formatting import DEFAULT_DISPLAY_BUDGET, render_for_chat

logger = logging.getLogger(__name__)


class MessageSink:
    """
    Renders text into one chat, editing the active message in place.

    The active message is whatever was last sent through this sink; when an
    edit is rejected a fresh message is sent and becomes the active one.
    Text whose markup Telegram cannot parse is retried once as plain text.
    """

    def __init__(
        self,
        bot: Bot,
        chat_id: int,
        markdown: bool = True,
        budget: int = DEFAULT_DISPLAY_BUDGET,
    ):
        self.bot = bot
        self.chat_id = chat_id
        self.markdown = markdown
        self.budget = budget
        self.active_message: Optional[Message] = None

    @property
    def parse_mode(self) -> Optional[str]:
        return ParseMode.MARKDOWN_V2 if self.markdown else None

    def render(self, text: str, markdown: Optional[bool] = None) -> str:
        markdown = self.markdown if markdown is None else markdown
        return render_for_chat(text, budget=self.budget, markdown=markdown)

    async def display(self, text: str) -> Optional[Message]:
        """Show text (windowed and escaped) in the active message, or a new one."""
        if self.active_message is not None and await self._try_edit(text):
            return self.active_message

        message = await self._send(text)
        if message is not None:
            self.active_message = message
        return message

    async def send(self, text: str) -> Optional[Message]:
        """Send text as a standalone message without touching the active one."""
        return await self._send(text)

    async def _try_edit(self, text: str) -> bool:
        message_id = self.active_message.message_id
        try:
            await self._edit(text, markdown=self.markdown)
            return True
        except TelegramError as e:
            if not (self.markdown and is_markup_rejection(e)):
                logger.debug(f"Edit of message {message_id} rejected ({e}), sending new message")
                return False

        try:
            await self._edit(text, markdown=False)
            return True
        except TelegramError as e:
            logger.debug(f"Plain-text edit of message {message_id} rejected ({e}), sending new message")
            return False

    async def _edit(self, text: str, markdown: bool) -> None:
        await self.bot.edit_message_text(
            text=self.render(text, markdown),
            chat_id=self.chat_id,
            message_id=self.active_message.message_id,
            parse_mode=ParseMode.MARKDOWN_V2 if markdown else None,
        )

    async def _send(self, text: str) -> Optional[Message]:
        try:
            return await self._send_rendered(self.render(text), self.parse_mode)
        except TelegramError as e:
            if not (self.markdown and is_markup_rejection(e)):
                logger.error(f"Failed to send message to chat {self.chat_id}: {e}")
                return None
            logger.warning(f"Markup rejected by Telegram ({e}), resending as plain text")

        try:
            return await self._send_rendered(self.render(text, markdown=False), None)
        except TelegramError as e:
            logger.error(f"Failed to send plain-text message to chat {self.chat_id}: {e}")
            return None

    async def _send_rendered(self, rendered: str, parse_mode: Optional[str]) -> Message:
        return await self.bot.send_message(
            chat_id=self.chat_id,
            text=rendered,
            parse_mode=parse_mode,
        )


def is_markup_rejection(error: TelegramError) -> bool:
    """Whether Telegram refused the message because it could not parse the markup."""
    return "can't parse entities" in str(error).lower()
