"""systemd unit management for running the relay as a service."""

import logging
import os
import subprocess
import sys
from pathlib import Path

from yolorelay.config import SERVICE_NAME
from yolorelay.errors import ServiceInstallError

logger = logging.getLogger(__name__)

UNIT_DIR = Path("/etc/systemd/system")

UNIT_TEMPLATE = """[Unit]
Description=Telegram Claude YOLO relay bot
After=network.target

[Service]
Type=simple
ExecStart={exec_start} start --token {token} --chat-id {chat_id} --daemon
WorkingDirectory={working_dir}
Restart=always
RestartSec=10
Environment=TELEGRAM_BOT_TOKEN={token}
Environment=TELEGRAM_CHAT_ID={chat_id}

[Install]
WantedBy=multi-user.target
"""


def unit_path(service_name=SERVICE_NAME) -> Path:
    return UNIT_DIR / f"{service_name}.service"


def current_executable() -> str:
    """Command line prefix that starts this program again."""
    return f"{sys.executable} -m yolorelay"


def render_unit(token, chat_id, exec_start=None, working_dir=None) -> str:
    return UNIT_TEMPLATE.format(
        exec_start=exec_start or current_executable(),
        token=token,
        chat_id=chat_id,
        working_dir=working_dir or os.getcwd(),
    )


def has_root_access() -> bool:
    if os.geteuid() == 0:
        return True
    try:
        return subprocess.run(["sudo", "-n", "true"], capture_output=True, check=False).returncode == 0
    except OSError:
        return False


def _systemctl(*args, check=True):
    try:
        proc = subprocess.run(["systemctl", *args], capture_output=True, text=True, check=False)
    except OSError as e:
        raise ServiceInstallError(f"systemctl is not available: {e}") from e
    if check and proc.returncode != 0:
        raise ServiceInstallError(f"`systemctl {' '.join(args)}` failed: {proc.stderr.strip()}")
    return proc


def install_service(token, chat_id, service_name=SERVICE_NAME) -> Path:
    if not has_root_access():
        raise ServiceInstallError("Root access required to install system daemon. Try running with sudo.")

    path = unit_path(service_name)
    try:
        path.write_text(render_unit(token, chat_id), encoding="utf-8")
    except OSError as e:
        raise ServiceInstallError(f"Could not write {path}: {e}") from e

    _systemctl("daemon-reload")
    _systemctl("enable", service_name)
    logger.info(f"Service installed at: {path}")
    return path


def uninstall_service(service_name=SERVICE_NAME) -> None:
    if not has_root_access():
        raise ServiceInstallError("Root access required to uninstall system daemon. Try running with sudo.")

    # stopping or disabling a unit that is not loaded is not an error here
    _systemctl("stop", service_name, check=False)
    _systemctl("disable", service_name, check=False)

    path = unit_path(service_name)
    if path.exists():
        try:
            path.unlink()
        except OSError as e:
            raise ServiceInstallError(f"Could not remove {path}: {e}") from e

    _systemctl("daemon-reload")
    logger.info(f"Service {service_name} removed")


def service_status(service_name=SERVICE_NAME) -> str:
    proc = _systemctl("status", service_name, "--no-pager", check=False)
    return (proc.stdout + proc.stderr).strip()
