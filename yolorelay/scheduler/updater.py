"""
Background self-update loop.

Every interval: compare the local version marker against the remote one;
when they differ, fetch, rebuild and replace the running process. Any
failure before the restart leaves the current process serving.
"""

import logging
import os
import subprocess
import sys
import threading
from enum import Enum

from yolorelay.errors import BuildOrFetchFailure, UpdateCheckFailure

logger = logging.getLogger(__name__)

# Environment markers of a terminal multiplexer session (screen, tmux)
MULTIPLEXER_MARKERS = ("STY", "TMUX")

# Set by systemd for every process it starts as part of a unit
SERVICE_MARKER = "INVOCATION_ID"


class Phase(Enum):
    SLEEPING = "sleeping"
    CHECKING = "checking"
    UP_TO_DATE = "up_to_date"
    UPDATE_AVAILABLE = "update_available"
    FETCHING = "fetching"
    BUILDING = "building"
    RESTARTING = "restarting"


def choose_restart_strategy(environ=None) -> str:
    """
    Pick how to come back after an update.

    'exec' keeps an attached screen/tmux session alive. 'exit' leaves the
    restart to systemd, which would kill a detached successor left in the
    unit's cgroup anyway. 'respawn' starts a detached successor.
    """
    environ = os.environ if environ is None else environ
    for marker in MULTIPLEXER_MARKERS:
        if environ.get(marker):
            return "exec"
    if environ.get(SERVICE_MARKER):
        return "exit"
    return "respawn"


def restart_argv() -> list:
    """The interpreter plus the original invocation (including -m and flags)."""
    return [sys.executable, *sys.orig_argv[1:]]


def restart_process(strategy=None):
    """Replace the running process with a fresh one. Does not return on success."""
    strategy = strategy or choose_restart_strategy()
    argv = restart_argv()

    if strategy == "exec":
        logger.info(f"Detected multiplexer session, replacing process image: {' '.join(argv)}")
        for handler in logging.getLogger("yolorelay").handlers:
            handler.flush()
        os.execv(argv[0], argv)

    if strategy == "exit":
        logger.info("Running under systemd, exiting so the unit restarts on the new version")
        logging.shutdown()
        os._exit(0)

    logger.info(f"Spawning successor process: {' '.join(argv)}")
    subprocess.Popen(
        argv,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        env=os.environ.copy(),
        start_new_session=True,
    )
    logging.shutdown()
    os._exit(0)


class UpdateSupervisor:
    """Polls a version source and restarts into a newer version when one appears."""

    def __init__(self, source, interval_seconds, restart=restart_process):
        self.source = source
        self.interval_seconds = interval_seconds
        self.phase = Phase.SLEEPING
        self._restart = restart

    def poll_once(self) -> Phase:
        """
        Run one check-and-maybe-update pass.

        Returns the last phase entered before going back to sleep:
        UP_TO_DATE, or the phase that failed (CHECKING, FETCHING, BUILDING),
        or RESTARTING if the restart call came back.
        """
        try:
            reached = self._poll()
        finally:
            self.phase = Phase.SLEEPING
        return reached

    def _poll(self) -> Phase:
        self.phase = Phase.CHECKING
        logger.info(f"Checking {self.source} for updates...")
        try:
            local = self.source.local_marker()
            remote = self.source.remote_marker()
        except UpdateCheckFailure as e:
            logger.warning(f"Failed to check for updates: {e}")
            return Phase.CHECKING

        if local == remote:
            logger.info(f"No updates available. Current version: {local}")
            return Phase.UP_TO_DATE

        self.phase = Phase.UPDATE_AVAILABLE
        logger.info(f"New version {remote} detected (running {local}). Updating...")

        for phase, step in ((Phase.FETCHING, self.source.fetch), (Phase.BUILDING, self.source.build)):
            self.phase = phase
            try:
                step()
            except BuildOrFetchFailure as e:
                logger.error(f"Update aborted while {phase.value}: {e}")
                return phase

        self.phase = Phase.RESTARTING
        logger.info("Restarting application...")
        try:
            self._restart()
        except OSError as e:
            logger.error(f"Failed to restart application: {e}")
        return Phase.RESTARTING

    def run_forever(self, stop_event=None):
        stop_event = stop_event or threading.Event()
        logger.info(f"Starting auto-update monitoring with {self.interval_seconds / 60:g} minute intervals")
        while not stop_event.wait(self.interval_seconds):
            try:
                self.poll_once()
            except Exception:
                logger.exception("Unexpected error in update supervisor")

    def start(self, stop_event=None) -> threading.Thread:
        thread = threading.Thread(
            target=self.run_forever,
            args=(stop_event,),
            name="update-supervisor",
            daemon=True,
        )
        thread.start()
        return thread
