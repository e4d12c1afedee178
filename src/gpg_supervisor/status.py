"""Status-channel protocol decoding.

The engine writes one event per line on the status descriptor::

    [GNUPG:] KEYWORD payload...

Interleaved with those are human-oriented diagnostics prefixed with ``gpg: ``.
``parse_status_line`` classifies a single line, and ``STATUS_HANDLERS`` maps
each keyword with an effect on the outcome to the function applying it.
Handlers are called by ``CommandOutcome.handle_status`` with the outcome lock
already held, so they mutate fields directly.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .types import Operation

if TYPE_CHECKING:
    from .outcome import CommandOutcome

STATUS_PREFIX = "[GNUPG:] "
DEBUG_PREFIX = "gpg: "

NOTHING_EXPORTED = "WARNING: nothing exported"
NO_VALID_DATA = "no valid OpenPGP data found"
BAD_SIGNATURE = "bad signature"

DELETE_PROBLEMS: dict[str, str] = {
    "1": "No such key",
    "2": "Must delete secret key first",
    "3": "Ambiguous specification",
    "4": "Key is stored on a smartcard",
}


@dataclass(frozen=True)
class StatusEvent:
    keyword: str
    payload: str


@dataclass(frozen=True)
class DebugLine:
    text: str


def parse_status_line(line: str) -> StatusEvent | DebugLine | None:
    """Classify one line read from the status channel.

    Returns a ``StatusEvent`` for marker lines, a ``DebugLine`` for plain
    diagnostics and ``None`` for anything else.
    """
    line = line.rstrip("\r\n")
    if line.startswith(STATUS_PREFIX):
        parts = line[len(STATUS_PREFIX) :].split(None, 1)
        if not parts:
            return StatusEvent(keyword="", payload="")
        keyword = parts[0]
        payload = parts[1] if len(parts) > 1 else ""
        return StatusEvent(keyword=keyword, payload=payload)
    if line.startswith(DEBUG_PREFIX):
        return DebugLine(text=line[len(DEBUG_PREFIX) :])
    return None


def delete_problem_reason(code: str) -> str:
    return DELETE_PROBLEMS.get(code.strip(), f"Unknown error: {code.strip()}")


def _on_failure(outcome: CommandOutcome, payload: str) -> None:
    # Exporting several secret keys fails as a whole when one of them is
    # protected, but the unprotected ones were still written.
    if outcome.operation is Operation.EXPORT_SECRET_KEY:
        outcome.success = NOTHING_EXPORTED not in outcome.raw_output
    else:
        outcome.success = False


def _on_badsig(outcome: CommandOutcome, payload: str) -> None:
    outcome.success = False
    outcome.last_status_keyword = BAD_SIGNATURE
    parts = payload.split(None, 1)
    outcome.problems.append(
        {
            "status": BAD_SIGNATURE,
            "key_id": parts[0] if parts else "",
            "username": parts[1] if len(parts) > 1 else "",
        }
    )


def _on_nodata(outcome: CommandOutcome, payload: str) -> None:
    if NO_VALID_DATA in outcome.raw_output:
        outcome.success = False


def _on_delete_problem(outcome: CommandOutcome, payload: str) -> None:
    outcome.success = False
    outcome.problems.append({"delete_problem": delete_problem_reason(payload)})


def _recording(field_name: str) -> Callable[[CommandOutcome, str], None]:
    """Build a handler that fails the outcome and records the payload verbatim."""

    def handler(outcome: CommandOutcome, payload: str) -> None:
        outcome.success = False
        outcome.problems.append({field_name: payload})

    return handler


STATUS_HANDLERS: dict[str, Callable[[CommandOutcome, str], None]] = {
    "FAILURE": _on_failure,
    "BADSIG": _on_badsig,
    "NODATA": _on_nodata,
    "DELETE_PROBLEM": _on_delete_problem,
    "UNKNOWN_KEYWORD": _recording("unknown_keyword"),
    "NO_PASSPHRASE": _recording("passphrase"),
    "BAD_PASSPHRASE": _recording("passphrase"),
    "INVALID_FINGERPRINT": _recording("fingerprint"),
}
