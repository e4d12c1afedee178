"""Engine subprocess supervision.

One invocation runs three threads against the child:

- a feeder writing the passphrase and payload to stdin, then closing it
- a drain reading stdout in fixed-size chunks
- a drain reading the status channel (stderr, ``--status-fd 2``)

All three start before the parent blocks. Both drains must finish before
``wait()`` is called and the feeder must be joined before the exit code is
treated as final, otherwise a full pipe buffer can stall the child forever.
There is no timeout: a child waiting on input it will never get blocks the
caller.
"""

from __future__ import annotations

import codecs
import contextlib
import logging
import os
import subprocess
import threading
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import IO, Any

from .config import EngineSettings
from .errors import InputFileError, LaunchError, PipeError
from .outcome import EXIT_CODE_UNAVAILABLE, CommandOutcome
from .status import DebugLine, StatusEvent, parse_status_line
from .types import Operation, Result, SecureString

logger = logging.getLogger(__name__)

BUFFER_SIZE = 8192


class PipeWorker(threading.Thread):
    """Daemon thread that keeps the ``PipeError`` its target raised."""

    def __init__(self, name: str, target: Callable[..., None], *args: Any) -> None:
        super().__init__(name=name, daemon=True)
        self._target_fn = target
        self._target_args = args
        self.error: PipeError | None = None

    def run(self) -> None:
        try:
            self._target_fn(*self._target_args)
        except PipeError as e:
            logger.warning("%s failed: %s", self.name, e)
            self.error = e


def build_command_args(
    command: Sequence[str],
    settings: EngineSettings,
    passphrase: SecureString | None = None,
) -> list[str]:
    args = [
        settings.binary,
        "--status-fd",
        "2",
        "--no-tty",
        "--no-verbose",
    ]
    if passphrase is not None and settings.supports_loopback:
        args[1:1] = ["--pinentry-mode", "loopback"]
    args.extend(["--fixed-list-mode", "--batch", "--with-colons"])
    args.extend(["--homedir", str(settings.resolved_homedir)])
    if passphrase is not None:
        args.extend(["--passphrase-fd", "0"])
    if settings.use_agent:
        args.append("--use-agent")
    args.extend(settings.options)
    args.extend(command)
    return args


def launch(
    args: Sequence[str],
    env: dict[str, str] | None = None,
    cwd: Path | str | None = None,
) -> subprocess.Popen[bytes]:
    """Start the engine with independent stdin, stdout and status pipes."""
    child_env = os.environ.copy()
    if env:
        child_env.update(env)

    logger.debug("launching: %s", " ".join(args))
    try:
        return subprocess.Popen(
            list(args),
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=child_env,
            cwd=cwd,
        )
    except OSError as e:
        raise LaunchError(f"Failed to start {args[0]}: {e}", binary=args[0], cause=e) from e


def feed_input(
    stdin: IO[bytes],
    payload: bytes | None = None,
    source: IO[bytes] | None = None,
    passphrase: SecureString | None = None,
) -> None:
    """Write the passphrase and then the payload or source file to stdin.

    stdin is closed on every path. The engine only sees end of input once the
    pipe is closed; left open, most operations never finish.
    """
    sent = 0
    try:
        try:
            if passphrase is not None:
                stdin.write(passphrase.get().encode("utf-8") + b"\n")
            if payload is not None:
                stdin.write(payload)
                sent += len(payload)
            elif source is not None:
                while True:
                    try:
                        chunk = source.read(BUFFER_SIZE)
                    except OSError as e:
                        raise PipeError(
                            f"Failed to read input source: {e}", stream="input-file", cause=e
                        ) from e
                    if not chunk:
                        break
                    stdin.write(chunk)
                    sent += len(chunk)
            stdin.flush()
        except OSError as e:
            raise PipeError(f"Failed to write to engine stdin: {e}", stream="stdin", cause=e) from e
    except PipeError:
        # The close below may fail the same way the write did
        with contextlib.suppress(OSError):
            stdin.close()
        raise

    try:
        stdin.close()
    except OSError as e:
        raise PipeError(f"Failed to close engine stdin: {e}", stream="stdin", cause=e) from e
    logger.debug("closed engine stdin, %d bytes sent", sent)


def drain_output(stream: IO[bytes], outcome: CommandOutcome) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        try:
            chunk = stream.read(BUFFER_SIZE)
        except OSError as e:
            raise PipeError(f"Failed to read engine output: {e}", stream="stdout", cause=e) from e
        if not chunk:
            break
        logger.debug("stdout chunk: %d bytes", len(chunk))
        outcome.append_output(chunk, decoder.decode(chunk))

    tail = decoder.decode(b"", final=True)
    if tail:
        outcome.append_output(b"", tail)


def drain_status(stream: IO[bytes], outcome: CommandOutcome) -> None:
    try:
        data = stream.read()
    except OSError as e:
        raise PipeError(f"Failed to read status channel: {e}", stream="stderr", cause=e) from e

    text = data.decode("utf-8", errors="replace")
    outcome.append_raw(text)

    for line in text.split("\n"):
        logger.debug("status line: %s", line)
        parsed = parse_status_line(line)
        if isinstance(parsed, StatusEvent):
            outcome.handle_status(parsed.keyword, parsed.payload)
        elif isinstance(parsed, DebugLine):
            outcome.capture_debug_log(parsed.text)


def collect_output(
    process: subprocess.Popen[bytes],
    outcome: CommandOutcome,
    feeder: PipeWorker | None = None,
) -> PipeError | None:
    """Drain both output pipes, join the feeder and record the exit code.

    Returns the first pipe failure seen by any worker, or ``None``. The
    outcome is frozen either way.
    """
    assert process.stdout is not None
    assert process.stderr is not None

    readers = [
        PipeWorker("stdout-drain", drain_output, process.stdout, outcome),
        PipeWorker("status-drain", drain_status, process.stderr, outcome),
    ]
    for reader in readers:
        reader.start()
    for reader in readers:
        reader.join()
    if feeder is not None:
        feeder.join()

    try:
        exit_code = process.wait()
    except OSError as e:
        logger.warning("could not retrieve engine exit code: %s", e)
        exit_code = EXIT_CODE_UNAVAILABLE
    finally:
        process.stdout.close()
        process.stderr.close()

    outcome.set_exit_code(exit_code)
    outcome.freeze()
    logger.debug(
        "engine exited with %s (success=%s, problems=%d)",
        exit_code,
        outcome.success,
        len(outcome.problems),
    )

    workers = ([feeder] if feeder is not None else []) + readers
    for worker in workers:
        if worker.error is not None:
            worker.error.outcome = outcome
            return worker.error
    return None


def run_command(
    command: Sequence[str],
    settings: EngineSettings,
    operation: Operation = Operation.NOT_SET,
    passphrase: SecureString | None = None,
    payload: bytes | str | None = None,
    source: Path | IO[bytes] | None = None,
    cwd: Path | str | None = None,
) -> Result[CommandOutcome]:
    """Run one engine command to completion and return its outcome."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")

    opened: IO[bytes] | None = None
    if isinstance(source, Path):
        try:
            opened = source.open("rb")
        except OSError as e:
            return Result.err(InputFileError(f"Cannot open input file: {e}", path=source, cause=e))
        source = opened

    try:
        args = build_command_args(command, settings, passphrase)
        try:
            process = launch(args, env=settings.env, cwd=cwd)
        except LaunchError as e:
            return Result.err(e)

        assert process.stdin is not None
        outcome = CommandOutcome(operation=operation)
        feeder = PipeWorker("stdin-feeder", feed_input, process.stdin, payload, source, passphrase)
        feeder.start()

        error = collect_output(process, outcome, feeder)
        if error is not None:
            return Result.err(error)
        return Result.ok(outcome)
    finally:
        if opened is not None:
            opened.close()
