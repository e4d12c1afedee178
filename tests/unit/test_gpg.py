"""Unit tests for the GnuPG facade with a mocked command runner."""

from __future__ import annotations

import io
from pathlib import Path
from unittest.mock import patch

import pytest

from gpg_supervisor.errors import LaunchError
from gpg_supervisor.gpg import GnuPG
from gpg_supervisor.outcome import CommandOutcome
from gpg_supervisor.types import Operation, Result, SecureString, TrustLevel

LISTING = "\n".join(
    [
        "pub:u:255:22:0123456789ABCDEF:1700000000:::u:::scSC:::::ed25519:::0:",
        "fpr:::::::::0123456789ABCDEF0123456789ABCDEF01234567:",
        "uid:u::::1700000000::HASH::Alice <alice@example.com>::::::::::0:",
    ]
)


def _ok(output_text: str = "", operation: Operation = Operation.NOT_SET) -> Result[CommandOutcome]:
    outcome = CommandOutcome(operation=operation)
    outcome.append_output(output_text.encode(), output_text)
    outcome.set_exit_code(0)
    outcome.freeze()
    return Result.ok(outcome)


@pytest.fixture
def gpg(tmp_path: Path) -> GnuPG:
    return GnuPG(homedir=tmp_path)


class TestGnuPGInit:
    def test_settings(self, tmp_path: Path) -> None:
        gpg = GnuPG(
            homedir=tmp_path,
            binary="gpg2",
            env={"LANG": "C"},
            use_agent=True,
            options=["--keyid-format", "long"],
        )
        assert gpg.settings.binary == "gpg2"
        assert gpg.settings.env == {"LANG": "C"}
        assert gpg.settings.use_agent
        assert gpg.settings.options == ["--keyid-format", "long"]
        assert gpg.homedir == tmp_path
        assert gpg.version == (0, 0)


class TestDetectVersion:
    def test_stores_version(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok("cfg:version:2.4.5\n")) as run:
            result = gpg.detect_version()
        assert result.unwrap() == "2.4.5"
        assert gpg.version == (2, 4, 5)
        assert gpg.settings.supports_loopback
        assert run.call_args[0][0] == ["--list-config", "--with-colons"]
        assert run.call_args[1]["operation"] is Operation.VERSION

    def test_propagates_error(self, gpg: GnuPG) -> None:
        error = LaunchError("Failed to start gpg", binary="gpg")
        with patch("gpg_supervisor.gpg.run_command", return_value=Result.err(error)):
            result = gpg.detect_version()
        assert result.unwrap_err() is error
        assert gpg.version == (0, 0)

    def test_passphrase_detects_version_once(self, gpg: GnuPG) -> None:
        """Test the first passphrase call detects the version before running."""
        responses = [_ok("cfg:version:2.2.40\n"), _ok(), _ok()]
        with patch("gpg_supervisor.gpg.run_command", side_effect=responses) as run:
            gpg.decrypt(b"cipher", passphrase=SecureString("pw"))
            gpg.decrypt(b"cipher", passphrase=SecureString("pw"))
        assert run.call_count == 3
        assert run.call_args_list[0][0][0] == ["--list-config", "--with-colons"]
        assert run.call_args_list[1][0][0] == ["--decrypt"]
        assert gpg.settings.supports_loopback

    def test_no_detection_without_passphrase(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.decrypt(b"cipher")
        assert run.call_count == 1
        assert gpg.version == (0, 0)

    def test_explicit_detection_not_repeated(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok("cfg:version:2.4.5\n")) as run:
            gpg.detect_version()
            gpg.sign("data", passphrase=SecureString("pw"))
        assert run.call_count == 2
        assert run.call_args[1]["operation"] is Operation.SIGN

    def test_detection_failure_returned(self, gpg: GnuPG) -> None:
        error = LaunchError("Failed to start gpg", binary="gpg")
        with patch("gpg_supervisor.gpg.run_command", return_value=Result.err(error)) as run:
            result = gpg.sign("data", passphrase=SecureString("pw"))
        assert result.unwrap_err() is error
        assert run.call_count == 1


class TestListKeys:
    def test_decodes_listing(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok(LISTING)) as run:
            keys = gpg.list_keys().unwrap()
        assert len(keys) == 1
        assert keys[0].uids == ["Alice <alice@example.com>"]
        assert run.call_args[0][0] == ["--list-keys", "--with-keygrip"]

    def test_secret_and_filters(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok("")) as run:
            assert gpg.list_keys(secret=True, keys=["alice", "bob"]).unwrap() == []
        assert run.call_args[0][0] == ["--list-secret-keys", "--with-keygrip", "alice", "bob"]

    def test_signatures(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok("")) as run:
            gpg.list_keys(signatures=True)
        assert run.call_args[0][0][0] == "--list-sigs"

    def test_search(self, gpg: GnuPG) -> None:
        listing = "info:1:1\npub:0123456789ABCDEF:1:2048:1700000000::\nuid:Alice%20A:1700000000::\n"
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok(listing)) as run:
            keys = gpg.search_keys("alice", keyserver="hkps://keys.example.org").unwrap()
        assert keys[0].uids == ["Alice A"]
        assert run.call_args[0][0] == [
            "--keyserver",
            "hkps://keys.example.org",
            "--search-keys",
            "alice",
        ]
        assert run.call_args[1]["operation"] is Operation.SEARCH_KEYS


class TestGenKey:
    def test_gen_key_input_defaults(self, gpg: GnuPG) -> None:
        script = gpg.gen_key_input()
        lines = script.splitlines()
        assert lines[0] == "Key-Type: RSA"
        assert "Key-Length: 2048" in lines
        assert "Name-Real: Autogenerated Key" in lines
        assert lines[-1] == "%commit"

    def test_gen_key_input_overrides(self, gpg: GnuPG) -> None:
        script = gpg.gen_key_input(
            key_type="RSA",
            key_length="3072",
            name_real="Alice",
            name_email="alice@example.com",
            expire_date="1y",
        )
        assert "Key-Length: 3072" in script
        assert "Name-Real: Alice" in script
        assert "Expire-Date: 1y" in script

    def test_gen_key_without_passphrase(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.gen_key({"name_real": "Alice"})
        payload = run.call_args[1]["payload"]
        assert payload.splitlines()[0] == "Key-Type: RSA"
        assert payload.endswith("%no-protection\n%commit\n")
        assert run.call_args[1]["operation"] is Operation.GENERATE_KEY

    def test_gen_key_with_passphrase(self, gpg: GnuPG) -> None:
        """Test the passphrase line follows Key-Type and precedes %commit."""
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.gen_key({"name_real": "Alice"}, passphrase=SecureString("pw"))
        lines = run.call_args[1]["payload"].splitlines()
        assert lines[0] == "Key-Type: RSA"
        assert lines[-2:] == ["Passphrase: pw", "%commit"]
        assert "%no-protection" not in lines
        assert run.call_args[1]["passphrase"] is None


class TestImportExport:
    def test_import_bytes(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.import_keys(b"KEYDATA")
        assert run.call_args[0][0] == ["--import"]
        assert run.call_args[1]["payload"] == b"KEYDATA"
        assert run.call_args[1]["source"] is None

    def test_import_path(self, gpg: GnuPG, tmp_path: Path) -> None:
        key_file = tmp_path / "key.asc"
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.import_keys(key_file)
        assert run.call_args[1]["source"] == key_file
        assert run.call_args[1]["payload"] is None

    def test_export_public(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.export_keys(["ABCD"], passphrase=SecureString("ignored"))
        assert run.call_args[0][0] == ["--armor", "--export", "ABCD"]
        assert run.call_args[1]["operation"] is Operation.EXPORT_PUBLIC_KEY
        assert run.call_args[1]["passphrase"] is None

    def test_export_secret(self, gpg: GnuPG) -> None:
        passphrase = SecureString("pw")
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.export_keys(["ABCD", "EF01"], secret=True, passphrase=passphrase, armor=False)
        assert run.call_args[0][0] == ["--export-secret-keys", "ABCD", "EF01"]
        assert run.call_args[1]["operation"] is Operation.EXPORT_SECRET_KEY
        assert run.call_args[1]["passphrase"] is passphrase


class TestDeleteAndTrust:
    def test_delete_public(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.delete_keys(["FPR1"])
        assert run.call_args[0][0] == ["--yes", "--delete-keys", "FPR1"]
        assert run.call_args[1]["operation"] is Operation.DELETE_KEYS

    def test_delete_secret(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.delete_keys(["FPR1"], secret=True)
        assert run.call_args[0][0] == ["--yes", "--delete-secret-keys", "FPR1"]

    def test_trust_keys(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.trust_keys(["FPR1", "FPR2"], TrustLevel.FULLY)
        assert run.call_args[0][0] == ["--import-ownertrust"]
        assert run.call_args[1]["payload"] == "FPR1:5:\nFPR2:5:\n"
        assert run.call_args[1]["operation"] is Operation.TRUST_KEYS


class TestCryptoOperations:
    def test_encrypt(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.encrypt("plain", ["alice", "bob"], always_trust=True)
        assert run.call_args[0][0] == [
            "--encrypt",
            "--armor",
            "--recipient",
            "alice",
            "--recipient",
            "bob",
            "--trust-model",
            "always",
        ]
        assert run.call_args[1]["passphrase"] is None

    def test_encrypt_and_sign_to_file(self, gpg: GnuPG, tmp_path: Path) -> None:
        passphrase = SecureString("pw")
        out = tmp_path / "out.asc"
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.encrypt(b"plain", ["alice"], sign="alice", passphrase=passphrase, output=out)
        args = run.call_args[0][0]
        assert args[4:7] == ["--sign", "--local-user", "alice"]
        assert args[-3:] == ["--yes", "--output", str(out)]
        assert run.call_args[1]["passphrase"] is passphrase

    def test_decrypt_stream(self, gpg: GnuPG) -> None:
        stream = io.BytesIO(b"cipher")
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.decrypt(stream, passphrase=SecureString("pw"))
        assert run.call_args[0][0] == ["--decrypt"]
        assert run.call_args[1]["source"] is stream
        assert run.call_args[1]["operation"] is Operation.DECRYPT

    def test_sign_variants(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.sign("data", keyid="ABCD")
            assert run.call_args[0][0] == ["--detach-sign", "--armor", "--local-user", "ABCD"]
            gpg.sign("data", detach=False, clearsign=True, armor=False)
            assert run.call_args[0][0] == ["--clearsign"]
            gpg.sign("data", detach=False)
            assert run.call_args[0][0] == ["--sign", "--armor"]
        assert run.call_args[1]["operation"] is Operation.SIGN

    def test_verify_inline(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.verify(b"signed")
        assert run.call_args[0][0] == ["--verify"]
        assert run.call_args[1]["operation"] is Operation.VERIFY

    def test_verify_detached(self, gpg: GnuPG, tmp_path: Path) -> None:
        sig = tmp_path / "data.sig"
        data = tmp_path / "data"
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.verify(data, signature=sig)
        assert run.call_args[0][0] == ["--verify", str(sig), "-"]
        assert run.call_args[1]["source"] == data

    def test_run_raw(self, gpg: GnuPG) -> None:
        with patch("gpg_supervisor.gpg.run_command", return_value=_ok()) as run:
            gpg.run_raw(("--list-packets",), data=b"x")
        assert run.call_args[0][0] == ["--list-packets"]
        assert run.call_args[1]["operation"] is Operation.RAW
        assert run.call_args[1]["payload"] == b"x"
