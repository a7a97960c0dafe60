import os
import pathlib
import subprocess
import tempfile
from typing import List, Optional, Sequence

from passbook import (
    ConfigError,
    DecryptError,
    GPGCallError,
    KeyResolutionError,
    NoRecipientsError,
    PassphraseTooLongError,
)
from passbook._output import output
from passbook.config import Settings

GPG_ID_FILE = ".gpg-id"
# Stays below the pipe buffer, so the write before starting gpg never blocks.
MAX_PASSPHRASE_BYTES = 4096


def read_recipients(root: pathlib.Path) -> List[str]:
    """Return the key identifiers listed in the store's `.gpg-id`.

    A missing file yields no recipients; writes then fail with
    NoRecipientsError.

    """
    path = root / GPG_ID_FILE
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError.from_context(
            "Could not read recipients from {}: {}".format(path, e)
        ) from e
    recipients = []
    for line in content.splitlines():
        line = line.strip()
        if line:
            recipients.append(line)
    return recipients


class Supplied(object):
    """Feed a caller-supplied passphrase to gpg (loopback pinentry)."""

    def __init__(self, passphrase: str):
        self.passphrase = passphrase

    def run(self, gpg, args, ciphertext):
        passphrase = self.passphrase.encode("utf-8")
        if len(passphrase) > MAX_PASSPHRASE_BYTES:
            raise PassphraseTooLongError.from_context(MAX_PASSPHRASE_BYTES)
        read_fd, write_fd = os.pipe()
        try:
            os.write(write_fd, passphrase + b"\n")
            os.close(write_fd)
            write_fd = None
            return gpg.call(
                [
                    "--batch",
                    "--pinentry-mode",
                    "loopback",
                    "--passphrase-fd",
                    str(read_fd),
                ]
                + args,
                input=ciphertext,
                pass_fds=(read_fd,),
            )
        finally:
            if write_fd is not None:
                os.close(write_fd)
            os.close(read_fd)

    def __repr__(self):
        return "<Supplied passphrase>"


class Interactive(object):
    """Let gpg-agent ask for the passphrase through its pinentry."""

    def run(self, gpg, args, ciphertext):
        return gpg.call(["--pinentry-mode", "ask"] + args, input=ciphertext)

    def __repr__(self):
        return "<Interactive passphrase>"


class GPG(object):
    """Encrypt and decrypt records by calling the gpg binary."""

    _gpg = None
    GPG_BINARY_CANDIDATES = ["gpg", "gpg2"]

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    def binary(self):
        if self.settings.gpg_binary:
            return self.settings.gpg_binary
        return self.gpg()

    @classmethod
    def gpg(cls):
        if cls._gpg is not None:
            return cls._gpg
        with tempfile.TemporaryFile() as null:
            for gpg in cls.GPG_BINARY_CANDIDATES:
                args = [gpg, "--version"]
                output.annotate(f"Running `{args}`", debug=True)
                try:
                    subprocess.check_call(args, stdout=null, stderr=null)
                except (subprocess.CalledProcessError, OSError):
                    pass
                else:
                    cls._gpg = gpg
                    return cls._gpg
        raise ConfigError.from_context(
            "Could not find gpg binary."
            " Is GPG installed? I tried looking for: {}".format(
                ", ".join("`{}`".format(x) for x in cls.GPG_BINARY_CANDIDATES)
            )
        )

    def call(self, args, input=None, pass_fds=()):
        """Run gpg and return the completed process, whatever its exit code."""
        command = [self.binary()] + self.settings.gpg_options + args
        output.annotate(f"Running `{command}`", debug=True)
        try:
            return subprocess.run(
                command,
                input=input,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                pass_fds=pass_fds,
            )
        except OSError as e:
            raise ConfigError.from_context(
                "Could not run gpg ({}): {}".format(command[0], e)
            ) from e

    def resolve_keys(self, recipients: Sequence[str]) -> List[str]:
        """Map recipient identifiers to key fingerprints of the local keyring.
        """
        fingerprints = []
        for recipient in recipients:
            p = self.call(
                [
                    "--batch",
                    "--with-colons",
                    "--with-fingerprint",
                    "--list-keys",
                    "--",
                    recipient,
                ]
            )
            if p.returncode != 0:
                raise KeyResolutionError.from_context(
                    recipient, p.returncode, p.stderr
                )
            fingerprint = primary_fingerprint(p.stdout)
            if fingerprint is None:
                raise KeyResolutionError.from_context(
                    recipient, p.returncode, p.stderr
                )
            if fingerprint not in fingerprints:
                fingerprints.append(fingerprint)
        if not fingerprints:
            raise NoRecipientsError.from_context(recipients)
        output.annotate(
            "Resolved recipients {} to {}".format(
                ", ".join(recipients), ", ".join(fingerprints)
            ),
            debug=True,
        )
        return fingerprints

    def encrypt_for(
        self, recipients: Sequence[str], plaintext: bytes
    ) -> bytes:
        args = ["--batch", "--yes", "--armor", "--encrypt"]
        for fingerprint in self.resolve_keys(recipients):
            args.extend(["-r", fingerprint])
        p = self.call(args, input=plaintext)
        if p.returncode != 0:
            raise GPGCallError.from_context(
                [self.binary()] + args, p.returncode, p.stderr
            )
        return p.stdout

    def decrypt(self, ciphertext: bytes, mode) -> bytes:
        args = ["--quiet", "--decrypt"]
        p = mode.run(self, args, ciphertext)
        if p.returncode != 0:
            raise DecryptError.from_context(
                [self.binary()] + args, p.returncode, p.stderr
            )
        return p.stdout


def primary_fingerprint(listing: bytes) -> Optional[str]:
    """Extract the fingerprint of the first public key from a
    `--with-colons` listing."""
    expect_primary = False
    for line in listing.decode("utf-8", errors="replace").splitlines():
        record = line.split(":")
        if record[0] == "pub":
            expect_primary = True
        elif record[0] == "fpr" and expect_primary and len(record) > 9:
            return record[9]
    return None
