from __future__ import annotations

import contextlib
import shutil
import subprocess
import sys
import tempfile
import textwrap
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from gpg_supervisor.config import EngineSettings
from gpg_supervisor.outcome import CommandOutcome
from gpg_supervisor.types import Operation

FakeEngine = Callable[[str], Path]


def gpg_available() -> bool:
    return shutil.which("gpg") is not None


@pytest.fixture
def fake_engine(tmp_path: Path) -> FakeEngine:
    """Return a factory writing an executable Python script that stands in for gpg.

    The body is run as a script with the engine arguments in ``sys.argv``.
    """
    counter = iter(range(1000))

    def make(body: str) -> Path:
        script = tmp_path / f"fake-gpg-{next(counter)}"
        script.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
        script.chmod(0o755)
        return script

    return make


@pytest.fixture
def engine_settings(tmp_path: Path) -> EngineSettings:
    homedir = tmp_path / "gnupg"
    homedir.mkdir(mode=0o700)
    return EngineSettings(homedir=homedir)


@pytest.fixture
def outcome() -> CommandOutcome:
    return CommandOutcome(operation=Operation.NOT_SET)


@pytest.fixture
def gpg_home() -> Generator[Path, None, None]:
    """Create an isolated homedir for the real engine.

    Note: Uses /tmp directly instead of pytest's tmp_path because Unix domain
    sockets have a maximum path length (~104 chars on macOS). Pytest's temp
    paths are often too long for gpg-agent's socket files.
    """
    gnupghome = Path(tempfile.mkdtemp(prefix="gpg_"))
    gnupghome.chmod(0o700)

    agent_conf = gnupghome / "gpg-agent.conf"
    agent_conf.write_text("allow-loopback-pinentry\n")
    agent_conf.chmod(0o600)

    yield gnupghome

    with contextlib.suppress(OSError, subprocess.SubprocessError):
        subprocess.run(
            ["gpgconf", "--homedir", str(gnupghome), "--kill", "gpg-agent"],
            capture_output=True,
            timeout=5,
        )

    shutil.rmtree(gnupghome, ignore_errors=True)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "slow: marks tests as running the real gpg binary")


def pytest_collection_modifyitems(  # noqa: ARG001
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    skip_gpg = pytest.mark.skip(reason="gpg is not installed")
    skip_posix = pytest.mark.skip(reason="fake engine scripts need a POSIX shebang")

    for item in items:
        if "slow" in item.keywords and not gpg_available():
            item.add_marker(skip_gpg)
        if "fake_engine" in getattr(item, "fixturenames", ()) and sys.platform == "win32":
            item.add_marker(skip_posix)
