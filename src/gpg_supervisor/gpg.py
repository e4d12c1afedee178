from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import IO

from .config import EngineSettings, parse_engine_version
from .keylist import KeyRecord, decode_key_list
from .outcome import CommandOutcome
from .process import run_command
from .types import Operation, Result, SecureString, TrustLevel

logger = logging.getLogger(__name__)

Input = bytes | str | Path | IO[bytes]


def _split_input(data: Input) -> tuple[bytes | str | None, Path | IO[bytes] | None]:
    if isinstance(data, (bytes, str)):
        return data, None
    return None, data


class GnuPG:
    """Argument templating for the common engine operations.

    Every method builds a token list and hands it to ``run_command``; the
    status decoding, pipe handling and listing decoding all live below this
    class.
    """

    def __init__(
        self,
        homedir: Path | None = None,
        binary: str = "gpg",
        env: dict[str, str] | None = None,
        use_agent: bool = False,
        options: Sequence[str] | None = None,
    ) -> None:
        self.settings = EngineSettings(
            binary=binary,
            homedir=homedir,
            env=dict(env or {}),
            use_agent=use_agent,
            options=list(options or []),
        )
        self._version_detected = False

    @property
    def homedir(self) -> Path:
        return self.settings.resolved_homedir

    @property
    def version(self) -> tuple[int, ...]:
        return self.settings.version

    def _run(
        self,
        args: list[str],
        operation: Operation,
        passphrase: SecureString | None = None,
        payload: bytes | str | None = None,
        source: Path | IO[bytes] | None = None,
    ) -> Result[CommandOutcome]:
        # Loopback pinentry is only passed once the engine version is known
        if passphrase is not None and not self._version_detected:
            detected = self.detect_version()
            if detected.is_err():
                return Result.err(detected.unwrap_err())

        return run_command(
            args,
            self.settings,
            operation=operation,
            passphrase=passphrase,
            payload=payload,
            source=source,
        )

    def detect_version(self) -> Result[str]:
        """Ask the engine for its version and remember it.

        The loopback pinentry flag is only passed once a version >= 2.1 has
        been detected. Methods given a passphrase call this themselves the
        first time round.
        """
        result = self._run(["--list-config", "--with-colons"], Operation.VERSION)
        if result.is_err():
            return Result.err(result.unwrap_err())

        version, full_version = parse_engine_version(result.unwrap().output_text)
        self.settings.version = version
        self.settings.full_version = full_version
        self._version_detected = True
        logger.debug("engine version %s", full_version)
        return Result.ok(full_version)

    def list_keys(
        self,
        secret: bool = False,
        keys: Iterable[str] | None = None,
        signatures: bool = False,
    ) -> Result[list[KeyRecord]]:
        if secret:
            args = ["--list-secret-keys"]
        elif signatures:
            args = ["--list-sigs"]
        else:
            args = ["--list-keys"]
        args.append("--with-keygrip")
        args.extend(keys or [])

        return self._run(args, Operation.LIST_KEYS).map(
            lambda outcome: decode_key_list(outcome.output_text, Operation.LIST_KEYS)
        )

    def search_keys(
        self,
        query: str,
        keyserver: str = "hkps://keys.openpgp.org",
    ) -> Result[list[KeyRecord]]:
        args = ["--keyserver", keyserver, "--search-keys", query]
        return self._run(args, Operation.SEARCH_KEYS).map(
            lambda outcome: decode_key_list(outcome.output_text, Operation.SEARCH_KEYS)
        )

    def gen_key_input(self, control: Sequence[str] = (), **params: str) -> str:
        """Build a ``--gen-key`` batch script from keyword parameters.

        ``key_type="RSA"`` becomes ``Key-Type: RSA``. Name-Real, Name-Email,
        Key-Type and Key-Length get defaults when omitted. ``control`` lines
        such as ``Passphrase:`` or ``%no-protection`` go after the parameters;
        a parameter block must open with Key-Type.
        """
        fields = {
            "Key-Type": "RSA",
            "Key-Length": "2048",
            "Name-Real": "Autogenerated Key",
            "Name-Email": "autogenerated@example.com",
        }
        for key, value in params.items():
            fields["-".join(part.capitalize() for part in key.split("_"))] = str(value)

        lines = [f"Key-Type: {fields.pop('Key-Type')}"]
        lines.extend(f"{key}: {value}" for key, value in fields.items())
        lines.extend(control)
        lines.append("%commit")
        return "\n".join(lines) + "\n"

    def gen_key(
        self,
        params: dict[str, str] | None = None,
        passphrase: SecureString | None = None,
    ) -> Result[CommandOutcome]:
        if passphrase is None:
            control = ["%no-protection"]
        else:
            control = [f"Passphrase: {passphrase.get()}"]
        script = self.gen_key_input(control, **(params or {}))
        return self._run(["--gen-key"], Operation.GENERATE_KEY, payload=script)

    def import_keys(
        self,
        data: Input,
        passphrase: SecureString | None = None,
    ) -> Result[CommandOutcome]:
        payload, source = _split_input(data)
        return self._run(
            ["--import"],
            Operation.IMPORT_KEYS,
            passphrase=passphrase,
            payload=payload,
            source=source,
        )

    def export_keys(
        self,
        keyids: Sequence[str],
        secret: bool = False,
        passphrase: SecureString | None = None,
        armor: bool = True,
    ) -> Result[CommandOutcome]:
        args = ["--armor"] if armor else []
        if secret:
            args.append("--export-secret-keys")
            operation = Operation.EXPORT_SECRET_KEY
        else:
            args.append("--export")
            operation = Operation.EXPORT_PUBLIC_KEY
        args.extend(keyids)
        return self._run(args, operation, passphrase=passphrase if secret else None)

    def delete_keys(
        self,
        fingerprints: Sequence[str],
        secret: bool = False,
        passphrase: SecureString | None = None,
    ) -> Result[CommandOutcome]:
        # Batch mode refuses key IDs here; callers must pass full fingerprints
        args = ["--yes", "--delete-secret-keys" if secret else "--delete-keys"]
        args.extend(fingerprints)
        return self._run(args, Operation.DELETE_KEYS, passphrase=passphrase if secret else None)

    def encrypt(
        self,
        data: Input,
        recipients: Sequence[str],
        sign: str | None = None,
        passphrase: SecureString | None = None,
        armor: bool = True,
        always_trust: bool = False,
        output: Path | None = None,
    ) -> Result[CommandOutcome]:
        args = ["--encrypt"]
        if armor:
            args.append("--armor")
        for recipient in recipients:
            args.extend(["--recipient", recipient])
        if sign:
            args.extend(["--sign", "--local-user", sign])
        if always_trust:
            args.extend(["--trust-model", "always"])
        if output:
            args.extend(["--yes", "--output", str(output)])

        payload, source = _split_input(data)
        return self._run(
            args,
            Operation.ENCRYPT,
            passphrase=passphrase if sign else None,
            payload=payload,
            source=source,
        )

    def decrypt(
        self,
        data: Input,
        passphrase: SecureString | None = None,
        output: Path | None = None,
    ) -> Result[CommandOutcome]:
        args = ["--decrypt"]
        if output:
            args.extend(["--yes", "--output", str(output)])

        payload, source = _split_input(data)
        return self._run(
            args,
            Operation.DECRYPT,
            passphrase=passphrase,
            payload=payload,
            source=source,
        )

    def sign(
        self,
        data: Input,
        keyid: str | None = None,
        passphrase: SecureString | None = None,
        detach: bool = True,
        clearsign: bool = False,
        armor: bool = True,
    ) -> Result[CommandOutcome]:
        if detach:
            args = ["--detach-sign"]
        elif clearsign:
            args = ["--clearsign"]
        else:
            args = ["--sign"]
        if armor:
            args.append("--armor")
        if keyid:
            args.extend(["--local-user", keyid])

        payload, source = _split_input(data)
        return self._run(
            args,
            Operation.SIGN,
            passphrase=passphrase,
            payload=payload,
            source=source,
        )

    def verify(
        self,
        data: Input,
        signature: Path | None = None,
    ) -> Result[CommandOutcome]:
        """Verify inline-signed data, or detached ``signature`` over ``data``.

        With a detached signature the engine reads the signed data from
        stdin (``-``).
        """
        args = ["--verify"]
        if signature is not None:
            args.extend([str(signature), "-"])

        payload, source = _split_input(data)
        return self._run(args, Operation.VERIFY, payload=payload, source=source)

    def trust_keys(
        self,
        fingerprints: Sequence[str],
        level: TrustLevel,
    ) -> Result[CommandOutcome]:
        lines = "".join(f"{fpr}:{level.value}:\n" for fpr in fingerprints)
        return self._run(["--import-ownertrust"], Operation.TRUST_KEYS, payload=lines)

    def run_raw(
        self,
        args: Sequence[str],
        passphrase: SecureString | None = None,
        data: Input | None = None,
    ) -> Result[CommandOutcome]:
        payload, source = _split_input(data) if data is not None else (None, None)
        return self._run(
            list(args),
            Operation.RAW,
            passphrase=passphrase,
            payload=payload,
            source=source,
        )
