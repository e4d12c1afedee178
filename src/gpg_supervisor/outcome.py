from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from .status import STATUS_HANDLERS
from .types import Operation

logger = logging.getLogger(__name__)

EXIT_CODE_UNAVAILABLE = -1


@dataclass
class CommandOutcome:
    """Aggregated result of one engine invocation.

    Shared between the stdout and status-channel drain threads while the
    engine runs. Every mutator takes the internal lock for the duration of the
    field update only. ``freeze`` is called once the exit code is recorded;
    after that the outcome is read-only.
    """

    operation: Operation = Operation.NOT_SET
    raw_output: str = ""
    output_text: str = ""
    data: bytes = b""
    exit_code: int | None = None
    last_status_keyword: str | None = None
    last_status_message: str | None = None
    success: bool = True
    problems: list[dict[str, str]] = field(default_factory=list)
    debug_log: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    _frozen: bool = field(default=False, repr=False, compare=False)

    def _check_open(self) -> None:
        if self._frozen:
            raise RuntimeError("CommandOutcome is frozen")

    def append_output(self, chunk: bytes, text: str) -> None:
        """Record a chunk read from the engine's primary output."""
        with self._lock:
            self._check_open()
            self.data += chunk
            self.output_text += text
            self.raw_output += text

    def append_raw(self, text: str) -> None:
        """Record text read from the status channel."""
        with self._lock:
            self._check_open()
            self.raw_output += text

    def handle_status(self, keyword: str, payload: str) -> None:
        with self._lock:
            self._check_open()
            self.last_status_keyword = keyword
            self.last_status_message = payload
            handler = STATUS_HANDLERS.get(keyword)
            if handler is not None:
                handler(self, payload)
                logger.debug("status %s applied (success=%s)", keyword, self.success)

    def capture_debug_log(self, line: str) -> None:
        with self._lock:
            self._check_open()
            self.debug_log.append(line)

    def set_exit_code(self, exit_code: int) -> None:
        with self._lock:
            self._check_open()
            if self.exit_code is not None:
                raise RuntimeError("exit code already recorded")
            self.exit_code = exit_code

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    @property
    def is_success(self) -> bool:
        return self.success

    @property
    def error_message(self) -> str:
        if self.last_status_message is None:
            return "Undefined Error"
        return self.last_status_message

    def __bool__(self) -> bool:
        return self.success
