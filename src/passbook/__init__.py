import os.path
from typing import List

from ._output import output

with open(os.path.dirname(__file__) + "/version.txt") as f:
    __version__ = f.read().strip()


class ReportingException(Exception):
    """Exceptions that support user-readable reporting."""

    def __str__(self):
        raise NotImplementedError()

    def report(self):
        raise NotImplementedError()


class ConfigError(ReportingException):
    """The store, its repository or its settings could not be resolved."""

    message: str

    @classmethod
    def from_context(cls, message):
        self = cls()
        self.message = message
        return self

    def __str__(self):
        return str(self.message)

    def report(self):
        output.error(self.message)


class NotFoundError(ReportingException):
    """The requested record does not exist."""

    identifier: str

    @classmethod
    def from_context(cls, identifier):
        self = cls()
        self.identifier = identifier
        return self

    def __str__(self):
        return "Record not found: {}".format(self.identifier)

    def report(self):
        output.error("Record not found")
        output.tabular("Record", self.identifier, red=True)


class AlreadyExistsError(ReportingException):
    """The target of a rename is already taken."""

    identifier: str

    @classmethod
    def from_context(cls, identifier):
        self = cls()
        self.identifier = identifier
        return self

    def __str__(self):
        return "Record already exists: {}".format(self.identifier)

    def report(self):
        output.error("Record already exists")
        output.tabular("Record", self.identifier, red=True)


class InvalidPathError(ReportingException):
    """An identifier contains a hidden or relative path component."""

    identifier: str
    component: str

    @classmethod
    def from_context(cls, identifier, component):
        self = cls()
        self.identifier = identifier
        self.component = component
        return self

    def __str__(self):
        return "Invalid path component `{}` in `{}`".format(
            self.component, self.identifier
        )

    def report(self):
        output.error("Invalid record identifier")
        output.tabular("Record", self.identifier, red=True)
        output.tabular("Component", repr(self.component), red=True)


class StoreLockedError(ReportingException):
    """Another operation is in flight on the same store and we do not
    want to block."""

    operation: str

    @classmethod
    def from_context(cls, operation):
        self = cls()
        self.operation = operation
        return self

    def __str__(self):
        return "Store is busy, refusing to run `{}` concurrently".format(
            self.operation
        )

    def report(self):
        output.error(str(self))


class RecordDecodeError(ReportingException):
    """Decrypted content is not valid UTF-8."""

    position: int
    reason: str

    @classmethod
    def from_context(cls, error):
        self = cls()
        self.position = error.start
        self.reason = error.reason
        return self

    def __str__(self):
        return "Decrypted record is not valid UTF-8 (byte {}: {})".format(
            self.position, self.reason
        )

    def report(self):
        output.error("Decrypted record is not valid UTF-8")
        output.tabular("Position", str(self.position), red=True)
        output.tabular("Reason", self.reason, red=True)


class CryptoError(ReportingException):
    """Base class for errors of the encryption layer."""


class NoRecipientsError(CryptoError):
    """There is no key to encrypt for."""

    recipients: List[str]

    @classmethod
    def from_context(cls, recipients=()):
        self = cls()
        self.recipients = list(recipients)
        return self

    def __str__(self):
        return "No recipients found for encryption"

    def report(self):
        output.error(str(self))
        output.annotate(
            "Add at least one key ID to the `.gpg-id` file of the store.",
            red=True,
        )


class KeyResolutionError(CryptoError):
    """A recipient could not be found in the local keyring."""

    recipient: str
    exitcode: str
    output: str

    @classmethod
    def from_context(cls, recipient, exitcode, output):
        self = cls()
        self.recipient = recipient
        self.exitcode = str(exitcode)
        self.output = output.decode("utf-8", errors="replace")
        return self

    def __str__(self):
        return "Could not resolve key for recipient `{}`".format(
            self.recipient
        )

    def report(self):
        output.error("Could not resolve recipient key")
        output.tabular("recipient", self.recipient, red=True)
        output.tabular("exit code", self.exitcode)
        if self.output:
            output.tabular("message", self.output, separator=":\n")


class GPGCallError(CryptoError):
    """There was an error calling GPG."""

    command: str
    exitcode: str
    output: str

    @classmethod
    def from_context(cls, command, exitcode, output):
        self = cls()
        self.command = " ".join(command)
        self.exitcode = str(exitcode)
        self.output = output.decode("utf-8", errors="replace")
        return self

    def __str__(self):
        return (
            f"Exitcode {self.exitcode} while calling: "
            f"{self.command}\n{self.output}"
        )

    def report(self):
        output.error("Error while calling GPG")
        output.tabular("command", self.command, red=True)
        output.tabular("exit code", self.exitcode)
        output.tabular("message", self.output, separator=":\n")


class DecryptError(GPGCallError):
    """A record could not be decrypted: wrong passphrase, corrupt data
    or missing secret key."""

    def __str__(self):
        return f"Decryption failed (exitcode {self.exitcode})\n{self.output}"

    def report(self):
        output.error("Could not decrypt record")
        output.tabular("exit code", self.exitcode, red=True)
        output.tabular("message", self.output, separator=":\n")


class PassphraseTooLongError(CryptoError):
    """The supplied passphrase exceeds what is handed to gpg."""

    limit: int

    @classmethod
    def from_context(cls, limit):
        self = cls()
        self.limit = limit
        return self

    def __str__(self):
        return "Passphrase is longer than {} bytes".format(self.limit)

    def report(self):
        output.error("Passphrase too long")
        output.tabular("Limit", "{} bytes".format(self.limit), red=True)


class AuthError(ReportingException):
    """No supported credential method for a remote."""

    url: str
    reason: str

    @classmethod
    def from_context(cls, url, reason):
        self = cls()
        self.url = url
        self.reason = reason
        return self

    def __str__(self):
        return "No supported authentication method for {}: {}".format(
            self.url, self.reason
        )

    def report(self):
        output.error("No supported authentication method")
        output.tabular("Remote", self.url, red=True)
        output.tabular("Reason", self.reason, red=True)


class SyncError(ReportingException):
    """Base class for errors of the version control layer."""


class DetachedHeadError(SyncError):
    """HEAD does not point to a branch."""

    @classmethod
    def from_context(cls):
        return cls()

    def __str__(self):
        return "Detached HEAD"

    def report(self):
        output.error("The store repository is not on a branch (detached HEAD)")


class NoUpstreamError(SyncError):
    """The current branch does not track a remote branch."""

    branch: str

    @classmethod
    def from_context(cls, branch):
        self = cls()
        self.branch = branch
        return self

    def __str__(self):
        return "No upstream configured for branch `{}`".format(self.branch)

    def report(self):
        output.error("No upstream configured")
        output.tabular("Branch", self.branch, red=True)


class NoRemoteError(SyncError):
    """The remote to push to does not exist."""

    remote: str

    @classmethod
    def from_context(cls, remote):
        self = cls()
        self.remote = remote
        return self

    def __str__(self):
        return "Remote `{}` not found".format(self.remote)

    def report(self):
        output.error(str(self))


class MergeConflictError(SyncError):
    """Merging the upstream produced conflicts. The merge is left in place
    for inspection."""

    upstream: str
    branch: str
    paths: List[str]

    @classmethod
    def from_context(cls, upstream, branch, paths):
        self = cls()
        self.upstream = upstream
        self.branch = branch
        self.paths = sorted(paths)
        return self

    def __str__(self):
        return "Merge conflicts detected merging {} into {}: {}".format(
            self.upstream, self.branch, ", ".join(self.paths)
        )

    def report(self):
        output.error("Merge conflicts detected")
        output.tabular("Upstream", self.upstream, red=True)
        output.tabular("Branch", self.branch, red=True)
        for path in self.paths:
            output.tabular("Conflict", path, red=True)
        output.annotate(
            "Resolve the conflicts in the store repository and commit.",
            red=True,
        )


class NotEmptyError(SyncError):
    """The clone destination already contains files."""

    path: str

    @classmethod
    def from_context(cls, path):
        self = cls()
        self.path = str(path)
        return self

    def __str__(self):
        return "Destination is not empty: {}".format(self.path)

    def report(self):
        output.error("Refusing to clone into a non-empty directory")
        output.tabular("Path", self.path, red=True)


class PushRejectedError(SyncError):
    """The remote refused to update a ref."""

    refspec: str
    summary: str

    @classmethod
    def from_context(cls, refspec, summary):
        self = cls()
        self.refspec = refspec
        self.summary = summary.strip()
        return self

    def __str__(self):
        return "Push of {} was rejected: {}".format(self.refspec, self.summary)

    def report(self):
        output.error("Push was rejected")
        output.tabular("Refspec", self.refspec, red=True)
        output.tabular("Summary", self.summary, red=True)


class GitCallError(SyncError):
    """There was an error calling git."""

    command: str
    exitcode: str
    output: str

    @classmethod
    def from_context(cls, error):
        self = cls()
        command = error.command
        if not isinstance(command, str):
            command = " ".join(str(x) for x in command)
        self.command = command
        self.exitcode = str(error.status)
        self.output = (error.stderr or "").strip()
        return self

    def __str__(self):
        return (
            f"Exitcode {self.exitcode} while calling: "
            f"{self.command}\n{self.output}"
        )

    def report(self):
        output.error("Error while calling git")
        output.tabular("command", self.command, red=True)
        output.tabular("exit code", self.exitcode)
        output.tabular("message", self.output, separator=":\n")

