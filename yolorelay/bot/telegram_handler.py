import logging
import time
import uuid

from telegram import Update
from telegram.ext import ContextTypes

from yolorelay.bot.batcher import OutputBatcher
from yolorelay.bot.commands import FreeformPrompt, parse_command
from yolorelay.bot.formatting import format_failure
from yolorelay.bot.sink import MessageSink
from yolorelay.core.prompts import NO_OUTPUT_TEXT, PROCESSING_TEXT, SPAWN_FAILURE_TEXT
from yolorelay.errors import SpawnFailure
from yolorelay.memory.audit_log import BOT, USER, log_message

logger = logging.getLogger(__name__)


def is_authorized(update: Update, settings) -> bool:
    chat = update.effective_chat
    return chat is not None and chat.id == settings.chat_id


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle incoming Telegram messages."""
    settings = context.bot_data["settings"]
    if not is_authorized(update, settings):
        chat = update.effective_chat
        logger.warning(f"Unauthorized access attempt from chat ID: {chat.id if chat else None}")
        return

    message = update.effective_message
    text = message.text if message else None
    if not text:
        return

    sink = MessageSink(
        context.bot,
        settings.chat_id,
        markdown=settings.markdown,
        budget=settings.display_budget,
    )

    intent = parse_command(text, context.bot.username)
    if not isinstance(intent, FreeformPrompt):
        log_message(settings.audit_log_path, USER, text)
        log_message(settings.audit_log_path, BOT, intent.reply)
        await sink.send(intent.reply)
        return

    await relay_prompt(intent.text, settings, context.bot_data["runner"], sink)


async def relay_prompt(prompt, settings, runner, sink: MessageSink):
    """Run the assistant on a prompt and stream its output into the chat."""
    trace_id = str(uuid.uuid4())[:8]
    audit_path = settings.audit_log_path
    started = time.monotonic()

    log_message(audit_path, USER, prompt)
    await sink.display(PROCESSING_TEXT)

    try:
        handle = await runner.start(prompt)
    except SpawnFailure as e:
        logger.error(f"[{trace_id}] {e}")
        reply = SPAWN_FAILURE_TEXT.format(error=e)
        log_message(audit_path, BOT, reply)
        await sink.send(reply)
        return

    batcher = OutputBatcher(settings.flush_interval, settings.max_buffer_size)
    try:
        async for line in handle.lines():
            chunk = batcher.push(line)
            if chunk is not None:
                log_message(audit_path, settings.assistant_role, chunk)
                await sink.display(batcher.transcript)

        chunk = batcher.drain()
        if chunk is not None:
            log_message(audit_path, settings.assistant_role, chunk)
            await sink.display(batcher.transcript)
    except BaseException:
        # the child must not outlive its session, even on cancellation
        logger.error(f"[{trace_id}] relay interrupted, stopping assistant")
        handle.kill()
        await handle.wait()
        raise

    outcome = await handle.wait()
    elapsed_ms = int((time.monotonic() - started) * 1000)

    if not outcome.succeeded:
        reply = format_failure(
            outcome.exit_code,
            outcome.stderr,
            timed_out=outcome.timed_out,
            timeout=settings.run_timeout,
        )
        logger.error(f"[{trace_id}] assistant failed after {elapsed_ms}ms: exit={outcome.exit_code} timed_out={outcome.timed_out}")
        log_message(audit_path, BOT, reply)
        await sink.send(reply)
        return

    if not batcher.transcript.strip():
        log_message(audit_path, BOT, NO_OUTPUT_TEXT)
        await sink.display(NO_OUTPUT_TEXT)

    logger.info(f"[{trace_id}] {elapsed_ms}ms | {len(batcher.transcript)} chars | Prompt: {prompt[:50]}...")
