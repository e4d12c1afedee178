from __future__ import annotations

import argparse
import logging
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .errors import ErrorLogger, SupervisorError, wrap_exception
from .gpg import GnuPG
from .keylist import KeyRecord
from .outcome import CommandOutcome
from .types import Result

console = Console()

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def get_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gpg-supervisor",
        description="Run GnuPG commands and report decoded status and key listings",
    )
    parser.add_argument(
        "--homedir",
        type=Path,
        default=None,
        help="GnuPG home directory (default: $GNUPGHOME or ~/.gnupg)",
    )
    parser.add_argument(
        "--gpg-binary",
        default="gpg",
        help="Engine binary to run (default: gpg)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log engine arguments, status lines and diagnostics",
    )
    parser.add_argument(
        "--error-log",
        type=Path,
        default=None,
        help="Where to record failures (default: ~/.gpg-supervisor/errors.log)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("version", help="Show the engine version")

    list_parser = subparsers.add_parser("list-keys", help="List keys in the keyring")
    list_parser.add_argument("--secret", action="store_true", help="List secret keys")
    list_parser.add_argument("--sigs", action="store_true", help="Include signatures")
    list_parser.add_argument("keys", nargs="*", help="Restrict to these key IDs or user IDs")

    import_parser = subparsers.add_parser("import", help="Import keys from a file")
    import_parser.add_argument("file", type=Path, help="Key file to import")

    export_parser = subparsers.add_parser("export", help="Export keys as ASCII armor")
    export_parser.add_argument("keyids", nargs="+", help="Key IDs or fingerprints")
    export_parser.add_argument("--secret", action="store_true", help="Export secret keys")

    verify_parser = subparsers.add_parser("verify", help="Verify a signed file")
    verify_parser.add_argument("file", type=Path, help="Signed file, or the data for --signature")
    verify_parser.add_argument("--signature", type=Path, help="Detached signature file")

    raw_parser = subparsers.add_parser("raw", help="Run arbitrary engine arguments")
    raw_parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments passed to the engine")

    return parser


CONSOLE_HANDLER = "gpg-supervisor-console"


def setup_logging(verbose: bool) -> None:
    root = logging.getLogger("gpg_supervisor")
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if any(h.get_name() == CONSOLE_HANDLER for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.set_name(CONSOLE_HANDLER)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)


def report_error(error: Exception, error_logger: ErrorLogger) -> None:
    """Print an error with its recovery hints and record it in the error log."""
    if not isinstance(error, SupervisorError):
        error = wrap_exception(error)
    console.print(error.format_full(), style="red", markup=False, highlight=False)
    error_logger.log_error(error)


def show_outcome(outcome: CommandOutcome, verbose: bool = False) -> None:
    status = "[green]succeeded[/green]" if outcome.success else "[red]failed[/red]"
    console.print(f"{outcome.operation.value}: {status} (exit code {outcome.exit_code})")
    if not outcome.success:
        console.print(f"  Last status: {outcome.last_status_keyword or '-'}")
        console.print(f"  Message: {outcome.error_message}", markup=False)
    for problem in outcome.problems:
        for key, value in problem.items():
            console.print(f"  Problem: {key}={value}", markup=False)
    if verbose:
        for line in outcome.debug_log:
            console.print(f"[dim]gpg: {line}[/dim]", highlight=False)


def _unwrap_outcome(result: Result[CommandOutcome], ns: argparse.Namespace) -> CommandOutcome | None:
    if result.is_err():
        report_error(result.unwrap_err(), ns.error_logger)
        return None
    return result.unwrap()


def display_key_table(keys: list[KeyRecord], signatures: bool = False) -> None:
    table = Table(title="Keys")
    table.add_column("Type", style="cyan")
    table.add_column("Key ID")
    table.add_column("Fingerprint")
    table.add_column("User IDs")
    table.add_column("Subkeys")
    if signatures:
        table.add_column("Signatures")

    for key in keys:
        row = [
            key.record_type,
            key.keyid,
            key.fingerprint or "-",
            "\n".join(key.uids) or "-",
            "\n".join(f"{sub.keyid} [{sub.cap}]" for sub in key.subkeys) or "-",
        ]
        if signatures:
            row.append("\n".join(f"{sig.keyid} ({sig.sig_class})" for sig in key.signatures) or "-")
        table.add_row(*row)

    console.print(table)


def cmd_version(gpg: GnuPG, ns: argparse.Namespace) -> int:
    result = gpg.detect_version()
    if result.is_err():
        report_error(result.unwrap_err(), ns.error_logger)
        return 1
    console.print(f"{ns.gpg_binary} {result.unwrap()}")
    return 0


def cmd_list_keys(gpg: GnuPG, ns: argparse.Namespace) -> int:
    result = gpg.list_keys(secret=ns.secret, keys=ns.keys, signatures=ns.sigs)
    if result.is_err():
        report_error(result.unwrap_err(), ns.error_logger)
        return 1

    keys = result.unwrap()
    if not keys:
        console.print("[yellow]No keys found in keyring.[/yellow]")
        return 0

    display_key_table(keys, signatures=ns.sigs)
    return 0


def cmd_import(gpg: GnuPG, ns: argparse.Namespace) -> int:
    outcome = _unwrap_outcome(gpg.import_keys(ns.file), ns)
    if outcome is None:
        return 1
    show_outcome(outcome, ns.verbose)
    return 0 if outcome.success else 1


def cmd_export(gpg: GnuPG, ns: argparse.Namespace) -> int:
    outcome = _unwrap_outcome(gpg.export_keys(ns.keyids, secret=ns.secret), ns)
    if outcome is None:
        return 1
    if not outcome.success or not outcome.output_text:
        show_outcome(outcome, ns.verbose)
        return 1
    console.print(outcome.output_text, markup=False, highlight=False, end="")
    return 0


def cmd_verify(gpg: GnuPG, ns: argparse.Namespace) -> int:
    outcome = _unwrap_outcome(gpg.verify(ns.file, signature=ns.signature), ns)
    if outcome is None:
        return 1
    show_outcome(outcome, ns.verbose)
    return 0 if outcome.success else 1


def cmd_raw(gpg: GnuPG, ns: argparse.Namespace) -> int:
    args = ns.args[1:] if ns.args and ns.args[0] == "--" else ns.args
    if not args:
        console.print("[red]No engine arguments given[/red]")
        console.print("Usage: gpg-supervisor raw -- ARGS...")
        return 1

    outcome = _unwrap_outcome(gpg.run_raw(args), ns)
    if outcome is None:
        return 1
    if outcome.output_text:
        console.print(outcome.output_text, markup=False, highlight=False, end="")
    show_outcome(outcome, ns.verbose)
    return 0 if outcome.success else 1


COMMANDS = {
    "version": cmd_version,
    "list-keys": cmd_list_keys,
    "import": cmd_import,
    "export": cmd_export,
    "verify": cmd_verify,
    "raw": cmd_raw,
}


def run(args: list[str]) -> int:
    """Main entry point."""
    parser = get_parser()
    ns = parser.parse_args(args)

    if not ns.command:
        parser.print_help()
        return 1

    setup_logging(ns.verbose)
    ns.error_logger = ErrorLogger(ns.error_log)
    try:
        gpg = GnuPG(homedir=ns.homedir, binary=ns.gpg_binary)
        return COMMANDS[ns.command](gpg, ns)
    finally:
        ns.error_logger.close()
