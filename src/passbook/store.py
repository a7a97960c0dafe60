import functools
import os
import pathlib
import threading
from typing import List, Optional

from passbook import (
    AlreadyExistsError,
    ConfigError,
    InvalidPathError,
    NotFoundError,
    StoreLockedError,
)
from passbook._output import output
from passbook.config import Settings
from passbook.crypto import GPG, Interactive, Supplied, read_recipients
from passbook.locator import discover_root, store_exists  # noqa: F401
from passbook.record import Record, decode, encode
from passbook.repository import GitRepository

SUFFIX = ".gpg"


class Uninitialized(object):
    """The store could not be set up. Every operation reports `reason`."""

    def __init__(self, root, reason):
        self.root = root
        self.reason = reason


class Ready(object):

    def __init__(self, root, repository, gpg):
        self.root = root
        self.repository = repository
        self.gpg = gpg


def exclusive(method):
    """Run at most one store operation at a time.

    A second caller fails with StoreLockedError instead of waiting.

    """

    @functools.wraps(method)
    def wrapper(self, *args, **kw):
        if not self._lock.acquire(blocking=False):
            raise StoreLockedError.from_context(method.__name__)
        try:
            return method(self, *args, **kw)
        finally:
            self._lock.release()

    return wrapper


def validate(identifier):
    """Reject identifiers that are empty, absolute or contain hidden or
    relative components."""
    if not identifier:
        raise InvalidPathError.from_context(identifier, identifier)
    for component in identifier.split("/"):
        if not component or component.startswith("."):
            raise InvalidPathError.from_context(identifier, component)


def is_valid(identifier):
    try:
        validate(identifier)
    except InvalidPathError:
        return False
    return True


class Store(object):
    """A `pass` compatible password store kept in a git repository.

    Construction never fails: when the store directory or its repository
    cannot be found, the store is uninitialized and every operation except
    `exists` raises ConfigError with the reason.

    """

    def __init__(
        self,
        root: Optional[pathlib.Path] = None,
        settings: Optional[Settings] = None,
    ):
        self._lock = threading.Lock()
        self.state = self._initialize(root, settings)

    @staticmethod
    def _initialize(root, settings):
        try:
            root = pathlib.Path(root) if root else discover_root()
        except ConfigError as e:
            return Uninitialized(None, e.message)
        if not root.is_dir():
            return Uninitialized(
                root, "Password store {} does not exist".format(root)
            )
        try:
            if settings is None:
                settings = Settings.load()
            repository = GitRepository.discover(root, settings)
        except ConfigError as e:
            return Uninitialized(root, e.message)
        output.annotate("Using password store {}".format(root), debug=True)
        return Ready(root, repository, GPG(settings))

    @classmethod
    def from_git(cls, url, root=None, settings=None) -> "Store":
        """Clone `url` into the store directory and open the result."""
        root = pathlib.Path(root) if root else discover_root()
        if settings is None:
            settings = Settings.load()
        GitRepository.clone(url, root, settings)
        return cls(root, settings)

    @property
    def ok(self):
        return isinstance(self.state, Ready)

    @property
    def root(self):
        return self.state.root

    def _ready(self) -> Ready:
        if not isinstance(self.state, Ready):
            raise ConfigError.from_context(self.state.reason)
        return self.state

    def _path(self, identifier):
        validate(identifier)
        return self._ready().root / (identifier + SUFFIX)

    @exclusive
    def list(self) -> List[str]:
        """All record identifiers, sorted. Hidden files and directories are
        skipped, so are directories that cannot be read."""
        root = self._ready().root

        def skip(error):
            if pathlib.Path(error.filename) == root:
                raise ConfigError.from_context(
                    "Could not read password store {}: {}".format(
                        root, error.strerror
                    )
                )
            output.warn(
                "Skipping unreadable entry {}: {}".format(
                    error.filename, error.strerror
                )
            )

        identifiers = []
        # Real paths of the directories above each pending directory. A
        # symlink pointing back into its own ancestry is not descended.
        ancestors = {str(root): frozenset()}
        for dirpath, dirnames, filenames in os.walk(
            root, onerror=skip, followlinks=True
        ):
            chain = ancestors.pop(dirpath, frozenset()) | {
                os.path.realpath(dirpath)
            }
            kept = []
            for dirname in dirnames:
                if dirname.startswith("."):
                    continue
                path = os.path.join(dirpath, dirname)
                if os.path.realpath(path) in chain:
                    continue
                ancestors[path] = chain
                kept.append(dirname)
            dirnames[:] = kept
            relative = pathlib.Path(dirpath).relative_to(root)
            for filename in filenames:
                if filename.startswith(".") or not filename.endswith(SUFFIX):
                    continue
                identifier = (relative / filename[: -len(SUFFIX)]).as_posix()
                if is_valid(identifier):
                    identifiers.append(identifier)
        return sorted(identifiers)

    @exclusive
    def exists(self, identifier) -> bool:
        return self._exists(identifier)

    def _exists(self, identifier):
        if not self.ok or not is_valid(identifier):
            return False
        return self._path(identifier).is_file()

    @exclusive
    def get(self, identifier, passphrase) -> Record:
        """Decrypt a record with the given passphrase."""
        return self._read(identifier, Supplied(passphrase))

    @exclusive
    def ask(self, identifier) -> Record:
        """Decrypt a record and let gpg-agent ask for the passphrase."""
        return self._read(identifier, Interactive())

    def _read(self, identifier, mode):
        path = self._path(identifier)
        try:
            ciphertext = path.read_bytes()
        except (FileNotFoundError, IsADirectoryError) as e:
            raise NotFoundError.from_context(identifier) from e
        return decode(self._ready().gpg.decrypt(ciphertext, mode))

    @exclusive
    def add(self, identifier, record: Record):
        """Encrypt `record` for the store's recipients, write and commit it.
        """
        state = self._ready()
        state.repository.ensure_no_merge()
        path = self._path(identifier)
        if self._exists(identifier):
            message = "Update {}".format(identifier)
        else:
            message = "Add {}".format(identifier)
        recipients = read_recipients(state.root)
        ciphertext = state.gpg.encrypt_for(recipients, encode(record))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(ciphertext)
        state.repository.commit_all(message)

    @exclusive
    def remove(self, identifier):
        state = self._ready()
        state.repository.ensure_no_merge()
        path = self._path(identifier)
        if not path.is_file():
            raise NotFoundError.from_context(identifier)
        path.unlink()
        state.repository.commit_all("Remove {}".format(identifier))

    @exclusive
    def rename(self, old, new):
        state = self._ready()
        state.repository.ensure_no_merge()
        source = self._path(old)
        destination = self._path(new)
        if not source.is_file():
            raise NotFoundError.from_context(old)
        if destination.exists():
            raise AlreadyExistsError.from_context(new)
        destination.parent.mkdir(parents=True, exist_ok=True)
        source.rename(destination)
        state.repository.commit_all("Rename {} to {}".format(old, new))

    @exclusive
    def sync(self):
        """Fetch, integrate the upstream and push.

        The first failure aborts the remaining steps. Whatever a completed
        step did to the repository stays.

        """
        repository = self._ready().repository
        repository.fetch_all_remotes()
        repository.pull(fetch=False)
        repository.push()
