"""Structured error types with recovery hints for engine supervision.

Only failures of the supervision layer itself are exceptions:
- the engine binary cannot be launched
- a pipe to or from the engine fails mid-transfer
- an input file or the home directory is unusable

Protocol-level failures reported by the engine (``FAILURE``, ``BADSIG`` and
friends) are never raised; they are recorded on the ``CommandOutcome``.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, auto
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .outcome import CommandOutcome


class ErrorCategory(Enum):
    """Categories of errors for routing recovery strategies."""

    ENGINE = auto()  # Missing or unspawnable gpg binary
    PIPE = auto()  # stdin/stdout/status channel I/O
    INPUT = auto()  # Caller-supplied input files
    CONFIG = auto()  # Home directory, settings
    INTERNAL = auto()  # Unexpected errors, bugs


@dataclass
class RecoveryHint:
    """A suggested recovery action for an error."""

    action: str
    command: str | None = None
    documentation_url: str | None = None

    def __str__(self) -> str:
        result = self.action
        if self.command:
            result += f"\n  Command: {self.command}"
        if self.documentation_url:
            result += f"\n  See: {self.documentation_url}"
        return result


@dataclass
class SupervisorError(Exception):
    """Base error type with recovery hints."""

    message: str
    category: ErrorCategory
    recovery_hints: list[RecoveryHint] = field(default_factory=list)
    cause: Exception | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __str__(self) -> str:
        return self.message

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def format_full(self) -> str:
        """Format error with all recovery hints."""
        lines = [f"Error: {self.message}"]

        if self.cause:
            lines.append(f"Caused by: {self.cause}")

        if self.recovery_hints:
            lines.append("\nRecovery options:")
            for i, hint in enumerate(self.recovery_hints, 1):
                lines.append(f"  {i}. {hint}")

        return "\n".join(lines)


class LaunchError(SupervisorError):
    """The engine binary could not be found or spawned."""

    def __init__(
        self,
        message: str,
        binary: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        hints = [
            RecoveryHint(
                "Install GnuPG",
                command="brew install gnupg" if sys.platform == "darwin" else "apt install gnupg2",
            ),
        ]
        if binary:
            hints.append(RecoveryHint(f"Check that '{binary}' is on PATH", command=f"which {binary}"))

        super().__init__(
            message=message,
            category=ErrorCategory.ENGINE,
            recovery_hints=hints,
            cause=cause,
        )
        self.binary = binary


class PipeError(SupervisorError):
    """I/O failure on one of the engine's pipes or on the input source."""

    def __init__(
        self,
        message: str,
        stream: str,
        outcome: CommandOutcome | None = None,
        cause: Exception | None = None,
    ) -> None:
        hints = []
        if stream == "stdin":
            hints.append(RecoveryHint("Inspect the engine's status output; it may have exited early"))
        elif stream == "input-file":
            hints.append(RecoveryHint("Check the input file is readable"))

        super().__init__(
            message=message,
            category=ErrorCategory.PIPE,
            recovery_hints=hints,
            cause=cause,
        )
        self.stream = stream
        self.outcome = outcome


class InputFileError(SupervisorError):
    """An input file given by path does not exist or cannot be opened."""

    def __init__(
        self,
        message: str,
        path: Path | str | None = None,
        cause: Exception | None = None,
    ) -> None:
        hints = []
        if path:
            hints.append(RecoveryHint(f"Check that {path} exists and is readable"))

        super().__init__(
            message=message,
            category=ErrorCategory.INPUT,
            recovery_hints=hints,
            cause=cause,
        )
        self.path = path


class ConfigError(SupervisorError):
    """Home directory or engine settings are unusable."""

    def __init__(
        self,
        message: str,
        path: Path | str | None = None,
        cause: Exception | None = None,
    ) -> None:
        hints = []
        if path:
            hints.append(RecoveryHint(f"Check permissions on {path}", command=f"ls -ld {path}"))
        hints.append(RecoveryHint("Set GNUPGHOME or pass --homedir explicitly"))

        super().__init__(
            message=message,
            category=ErrorCategory.CONFIG,
            recovery_hints=hints,
            cause=cause,
        )
        self.path = path


# Error logging


class ErrorLogger:
    """Logger for structured error tracking.

    Loggers writing to the same file share one handler on the
    ``gpg-supervisor.errors`` logger; ``close`` detaches it again.
    """

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = log_path or Path.home() / ".gpg-supervisor" / "errors.log"
        self._logger = logging.getLogger("gpg-supervisor.errors")
        self._handler: logging.FileHandler | None = None
        self._setup_logging()

    def _setup_logging(self) -> None:
        """Configure file logging."""
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._logger.setLevel(logging.WARNING)

        target = os.path.abspath(self._log_path)
        for existing in self._logger.handlers:
            if isinstance(existing, logging.FileHandler) and existing.baseFilename == target:
                return

        handler = logging.FileHandler(self._log_path)
        handler.setLevel(logging.WARNING)
        formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")
        handler.setFormatter(formatter)

        self._logger.addHandler(handler)
        self._handler = handler

    def log_error(self, error: SupervisorError) -> None:
        """Log an error with full context."""
        context = {
            "category": error.category.name,
            "error_message": error.message,
            "timestamp": error.timestamp.isoformat(),
        }
        if error.cause:
            context["cause"] = str(error.cause)

        self._logger.error(
            f"[{error.category.name}] {error.message}",
            extra=context,
        )

    def close(self) -> None:
        """Detach and close the file handler this logger added, if any."""
        if self._handler is None:
            return
        self._logger.removeHandler(self._handler)
        self._handler.close()
        self._handler = None


# Engine diagnostics and the hints they call for

COMMON_ERROR_PATTERNS: dict[str, list[RecoveryHint]] = {
    "no valid openpgp data found": [
        RecoveryHint("Check the input is an OpenPGP message or key block"),
    ],
    "inappropriate ioctl for device": [
        RecoveryHint("Use loopback pinentry for unattended passphrase entry"),
        RecoveryHint("Add allow-loopback-pinentry to gpg-agent.conf"),
    ],
    "unsafe permissions on homedir": [
        RecoveryHint("Restrict homedir permissions", command="chmod 700 ~/.gnupg"),
    ],
    "agent": [
        RecoveryHint("Kill and restart GPG agent", command="gpgconf --kill all"),
        RecoveryHint("Check socket permissions in the homedir"),
    ],
    "pinentry": [
        RecoveryHint("Install pinentry", command="apt install pinentry-curses"),
        RecoveryHint("Set pinentry program in gpg-agent.conf"),
    ],
    "no such file or directory": [
        RecoveryHint("Check the gpg binary path and the input file paths"),
    ],
}


def get_recovery_hints_for_message(error_message: str) -> list[RecoveryHint]:
    """Get recovery hints based on error message patterns."""
    hints = []
    lower_message = error_message.lower()

    for pattern, pattern_hints in COMMON_ERROR_PATTERNS.items():
        if pattern in lower_message:
            hints.extend(pattern_hints)

    return hints


def wrap_exception(
    exception: Exception,
    category: ErrorCategory = ErrorCategory.INTERNAL,
) -> SupervisorError:
    """Wrap a generic exception in a SupervisorError with recovery hints."""
    message = str(exception)
    hints = get_recovery_hints_for_message(message)

    return SupervisorError(
        message=message,
        category=category,
        recovery_hints=hints,
        cause=exception,
    )
