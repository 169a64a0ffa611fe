"""Error taxonomy for the relay.

Subprocess exit failures and timeouts are not exceptions; they are reported as
``ExitOutcome`` values by the runner. Telegram send failures surface as
``telegram.error.TelegramError`` and are handled by the message sink.
"""


class RelayError(Exception):
    """Base class for operator-facing errors."""


class ConfigMissing(RelayError):
    """A required setting (token, chat id) was not provided."""


class SpawnFailure(RelayError):
    """The assistant binary could not be started (missing, not executable)."""

    def __init__(self, command: str, cause: Exception):
        super().__init__(f"failed to start {command}: {cause}")
        self.command = command
        self.cause = cause


class UpdateCheckFailure(RelayError):
    """The remote version marker could not be obtained or compared."""


class BuildOrFetchFailure(RelayError):
    """Pulling or reinstalling a newer version failed."""


class ServiceInstallError(RelayError):
    """Installing or removing the systemd unit failed."""
