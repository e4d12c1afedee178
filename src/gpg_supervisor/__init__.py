"""Host-side supervision of the GnuPG engine.

Launches the engine as a child process, feeds it passphrases and payloads,
drains its output and status channel concurrently, and decodes status events
and colon key listings into structured results.
"""

from .config import (
    LOOPBACK_MIN_VERSION,
    EngineSettings,
    ensure_homedir,
    get_gnupghome,
    parse_engine_version,
)
from .errors import (
    ConfigError,
    ErrorCategory,
    ErrorLogger,
    InputFileError,
    LaunchError,
    PipeError,
    RecoveryHint,
    SupervisorError,
    get_recovery_hints_for_message,
    wrap_exception,
)
from .gpg import GnuPG
from .keylist import UNAVAILABLE, KeyRecord, Signature, SubkeyRecord, decode_key_list
from .main import run
from .outcome import EXIT_CODE_UNAVAILABLE, CommandOutcome
from .process import (
    build_command_args,
    collect_output,
    feed_input,
    launch,
    run_command,
)
from .status import STATUS_HANDLERS, DebugLine, StatusEvent, parse_status_line
from .types import Operation, Result, SecureString, TrustLevel

__version__ = "0.1.0"

__all__ = [
    # Types
    "Operation",
    "Result",
    "SecureString",
    "TrustLevel",
    # Supervision
    "CommandOutcome",
    "EXIT_CODE_UNAVAILABLE",
    "build_command_args",
    "collect_output",
    "feed_input",
    "launch",
    "run_command",
    # Status protocol
    "STATUS_HANDLERS",
    "DebugLine",
    "StatusEvent",
    "parse_status_line",
    # Key listings
    "KeyRecord",
    "Signature",
    "SubkeyRecord",
    "UNAVAILABLE",
    "decode_key_list",
    # Operations
    "GnuPG",
    # Configuration
    "EngineSettings",
    "LOOPBACK_MIN_VERSION",
    "ensure_homedir",
    "get_gnupghome",
    "parse_engine_version",
    # Errors
    "SupervisorError",
    "ErrorCategory",
    "RecoveryHint",
    "LaunchError",
    "PipeError",
    "InputFileError",
    "ConfigError",
    "ErrorLogger",
    "get_recovery_hints_for_message",
    "wrap_exception",
    # Main
    "run",
    "__version__",
]
