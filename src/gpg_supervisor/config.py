from __future__ import annotations

import os
import platform
import re
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError
from .types import Result

# Below this version the engine prompts through its own pinentry and rejects
# --pinentry-mode.
LOOPBACK_MIN_VERSION = (2, 1)

VERSION_PATTERN = re.compile(r"^cfg:version:(\d+(?:\.\d+)*)", re.MULTILINE)


@dataclass
class EngineSettings:
    """How to invoke the engine binary."""

    binary: str = "gpg"
    homedir: Path | None = None
    env: dict[str, str] = field(default_factory=dict)
    use_agent: bool = False
    options: list[str] = field(default_factory=list)
    version: tuple[int, ...] = (0, 0)
    full_version: str = "0.0.0"

    @property
    def resolved_homedir(self) -> Path:
        return self.homedir or get_gnupghome()

    @property
    def supports_loopback(self) -> bool:
        return self.version[:2] >= LOOPBACK_MIN_VERSION


def get_gnupghome() -> Path:
    """Get the GnuPG home directory."""
    env_home = os.environ.get("GNUPGHOME")
    if env_home:
        return Path(env_home)
    return Path.home() / ".gnupg"


def ensure_homedir(gnupghome: Path | None = None) -> Result[Path]:
    """Ensure the GnuPG directory exists with correct permissions."""
    home = gnupghome or get_gnupghome()

    if home.exists() and not home.is_dir():
        return Result.err(ConfigError(f"{home} is not a directory", path=home))

    try:
        home.mkdir(parents=True, exist_ok=True)

        # Without 0700 the engine warns about unsafe permissions on every call
        if platform.system() != "Windows":
            home.chmod(0o700)

        return Result.ok(home)
    except OSError as e:
        return Result.err(ConfigError(f"Could not create GnuPG directory: {e}", path=home, cause=e))


def parse_engine_version(text: str) -> tuple[tuple[int, ...], str]:
    """Extract the engine version from ``--list-config --with-colons`` output.

    Returns ``((0, 0), "0.0.0")`` when no version line is present.
    """
    match = VERSION_PATTERN.search(text)
    if not match:
        return (0, 0), "0.0.0"

    full_version = match.group(1)
    parts = tuple(int(p) for p in full_version.split("."))
    if len(parts) < 2:
        parts = parts + (0,)
    return parts, full_version
