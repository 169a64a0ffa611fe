"""
yolorelay - Telegram relay for a local assistant CLI.

Usage:
    yolorelay start [--token TOKEN] [--chat-id ID] [--daemon]
    yolorelay install [--token TOKEN] [--chat-id ID]
    yolorelay uninstall
    yolorelay status

Environment Variables:
    TELEGRAM_BOT_TOKEN - Telegram bot token (or --token)
    TELEGRAM_CHAT_ID - The one chat allowed to use the bot (or --chat-id)
"""

import argparse
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler

from telegram import Update
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from yolorelay import config
from yolorelay.bot.telegram_handler import handle_message
from yolorelay.core.runner import AssistantRunner
from yolorelay.errors import ConfigMissing, ServiceInstallError
from yolorelay.integrations import systemd
from yolorelay.integrations.version_sources import GitVersionSource, PypiVersionSource
from yolorelay.scheduler.updater import UpdateSupervisor

logger = logging.getLogger("yolorelay")


def setup_logging(console=True, level=config.LOG_LEVEL) -> logging.Logger:
    """
    Set up logging with a rotating file handler and, unless running as a
    daemon, a stdout handler.
    """
    config.LOG_DIR.mkdir(parents=True, exist_ok=True)

    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    log_format = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # File handler - rotating, max 10MB per file, keep 5 backups
    log_file = config.LOG_DIR / f"yolorelay_{datetime.now().strftime('%Y%m%d')}.log"
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(log_format)
    logger.addHandler(file_handler)

    if console:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(level)
        stdout_handler.setFormatter(log_format)
        logger.addHandler(stdout_handler)

    # python-telegram-bot logs every poll through httpx at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    telegram_logger = logging.getLogger("telegram")
    telegram_logger.setLevel(logging.WARNING)
    telegram_logger.addHandler(file_handler)

    logger.info(f"Logging initialized. Log file: {log_file}")
    return logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="yolorelay",
        description="Relay Telegram messages to a local assistant CLI and stream its output back.",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    start = sub.add_parser("start", help="Start the Telegram bot.")
    start.add_argument("-t", "--token", help="Telegram bot token (optional if TELEGRAM_BOT_TOKEN is set)")
    start.add_argument("-c", "--chat-id", type=int, help="Authorized chat ID (optional if TELEGRAM_CHAT_ID is set)")
    start.add_argument("--daemon", action="store_true", help="Run headless (no console logging, pid file).")

    install = sub.add_parser("install", help="Install and enable the systemd service.")
    install.add_argument("-t", "--token", help="Telegram bot token")
    install.add_argument("-c", "--chat-id", type=int, help="Authorized chat ID")

    sub.add_parser("uninstall", help="Stop, disable and remove the systemd service.")
    sub.add_parser("status", help="Show systemd service status.")
    return parser


def build_version_source():
    if config.UPDATE_SOURCE == "git":
        return GitVersionSource(config.REPO_DIR, branch=config.UPDATE_BRANCH)
    return PypiVersionSource(config.PACKAGE_NAME)


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE):
    logger.error(f"Error while handling update: {context.error}", exc_info=context.error)


def build_application(settings) -> Application:
    app = Application.builder().token(settings.token).concurrent_updates(True).build()
    app.bot_data["settings"] = settings
    app.bot_data["runner"] = AssistantRunner(
        settings.assistant_command,
        settings.assistant_args,
        timeout=settings.run_timeout,
    )
    app.add_handler(MessageHandler(filters.TEXT, handle_message))
    app.add_error_handler(handle_error)
    return app


def cmd_start(args) -> int:
    settings = config.resolve_settings(args.token, args.chat_id)
    setup_logging(console=not args.daemon)

    if args.daemon:
        config.PID_FILE.write_text(str(os.getpid()))

    logger.info("Starting Telegram Claude YOLO relay...")
    logger.info(f"Assistant: {settings.assistant_command} {' '.join(settings.assistant_args)}")
    logger.info(f"Authorized chat: {settings.chat_id}")
    logger.info(f"Audit log: {settings.audit_log_path}")

    if config.UPDATE_INTERVAL_MINUTES > 0:
        supervisor = UpdateSupervisor(build_version_source(), config.UPDATE_INTERVAL_MINUTES * 60)
        supervisor.start()

    app = build_application(settings)
    logger.info("Bot is running. Send a message on Telegram.")
    app.run_polling(allowed_updates=Update.ALL_TYPES)
    return 0


def cmd_install(args) -> int:
    token, chat_id = config.resolve_credentials(args.token, args.chat_id)
    path = systemd.install_service(token, chat_id)
    print(f"Service installed at: {path}")
    print(f"To start the service: sudo systemctl start {config.SERVICE_NAME}")
    print(f"To check status: sudo systemctl status {config.SERVICE_NAME}")
    return 0


def cmd_uninstall(args) -> int:
    systemd.uninstall_service()
    print(f"Service {config.SERVICE_NAME} uninstalled.")
    return 0


def cmd_status(args) -> int:
    print(systemd.service_status())
    return 0


COMMANDS = {
    "start": cmd_start,
    "install": cmd_install,
    "uninstall": cmd_uninstall,
    "status": cmd_status,
}


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return COMMANDS[args.cmd](args)
    except ConfigMissing as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    except ServiceInstallError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
