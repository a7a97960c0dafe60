import os
import pathlib
import re
import urllib.parse
from typing import Dict, Optional

import git
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from passbook import (
    AuthError,
    ConfigError,
    DetachedHeadError,
    GitCallError,
    MergeConflictError,
    NoRemoteError,
    NoUpstreamError,
    NotEmptyError,
    PushRejectedError,
)
from passbook._output import output
from passbook.config import Settings

DEFAULT_REMOTE = "origin"
DEFAULT_USER = "git"

UP_TO_DATE = "up-to-date"
FAST_FORWARD = "fast-forward"
DIVERGENT = "divergent"

MERGE_STATE_FILES = ("MERGE_HEAD", "MERGE_MSG", "MERGE_MODE", "AUTO_MERGE")

PUSH_FAILURE = (
    git.PushInfo.ERROR
    | git.PushInfo.REJECTED
    | git.PushInfo.REMOTE_REJECTED
    | git.PushInfo.REMOTE_FAILURE
)

SCP_LIKE = re.compile(r"^(?:(?P<user>[^@/]+)@)?(?P<host>[^:/]+):(?P<path>.*)$")


class Credentials(object):
    """Decide how git authenticates against a remote URL.

    Public key authentication through the local SSH agent is the only
    credential we hand out. Transports that merely need to know who we are
    get the user name from the URL. Passwords are never asked for.

    """

    LOCAL = "local"
    SSH = "ssh"
    USERNAME = "username"

    def __init__(self, url, transport, username=None, explicit_user=False):
        self.url = url
        self.transport = transport
        self.username = username
        self.explicit_user = explicit_user

    @classmethod
    def for_url(cls, url: str) -> "Credentials":
        if "://" not in url:
            # Either scp-like `user@host:path` or a local path.
            m = SCP_LIKE.match(url)
            if m is None:
                return cls(url, cls.LOCAL)
            user = m.group("user")
            return cls(
                url, cls.SSH, user or DEFAULT_USER, explicit_user=bool(user)
            )
        parsed = urllib.parse.urlsplit(url)
        scheme = parsed.scheme.lower()
        if scheme in ("ssh", "git+ssh", "ssh+git"):
            return cls(
                url,
                cls.SSH,
                parsed.username or DEFAULT_USER,
                explicit_user=bool(parsed.username),
            )
        if scheme in ("http", "https", "git"):
            return cls(url, cls.USERNAME, parsed.username or DEFAULT_USER)
        if scheme == "file":
            return cls(url, cls.LOCAL)
        raise AuthError.from_context(
            url, "unsupported transport `{}`".format(scheme)
        )

    def environment(self, settings: Settings) -> Dict[str, str]:
        """Environment for a git process talking to this remote."""
        if self.transport == self.LOCAL:
            return {}
        env = {
            "GIT_TERMINAL_PROMPT": "0",
            # An empty value clears all configured credential helpers.
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "credential.helper",
            "GIT_CONFIG_VALUE_0": "",
        }
        if self.transport == self.SSH:
            if not os.environ.get("SSH_AUTH_SOCK"):
                raise AuthError.from_context(
                    self.url, "public key authentication needs an SSH agent"
                )
            command = [
                settings.ssh_command,
                "-o",
                "BatchMode=yes",
                "-o",
                "PreferredAuthentications=publickey",
            ]
            if not self.explicit_user:
                command.extend(["-l", self.username])
            env["GIT_SSH_COMMAND"] = " ".join(command)
        return env


class GitRepository(object):
    """The git repository that holds the store.

    All repository mutation and remote synchronization goes through this
    single handle.

    """

    def __init__(self, repo: git.Repo, settings: Optional[Settings] = None):
        self.repo = repo
        self.settings = settings or Settings()

    @classmethod
    def discover(cls, root, settings=None) -> "GitRepository":
        try:
            repo = git.Repo(str(root), search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise ConfigError.from_context(
                "No git repository found for store at {}".format(root)
            ) from e
        return cls(repo, settings)

    @property
    def working_dir(self) -> pathlib.Path:
        return pathlib.Path(self.repo.working_tree_dir)

    def _remote_environment(self, url):
        return Credentials.for_url(url).environment(self.settings)

    def _active_branch(self):
        if self.repo.head.is_detached:
            raise DetachedHeadError.from_context()
        return self.repo.active_branch

    def fetch_all_remotes(self):
        for remote in self.repo.remotes:
            env = self._remote_environment(remote.url)
            output.annotate("Fetching {}".format(remote.name), debug=True)
            try:
                with self.repo.git.custom_environment(**env):
                    remote.fetch()
            except GitCommandError as e:
                raise GitCallError.from_context(e) from e

    def merge_analysis(self, branch, upstream_commit):
        if not branch.is_valid():
            return FAST_FORWARD
        local_commit = branch.commit
        if local_commit == upstream_commit or self.repo.is_ancestor(
            upstream_commit, local_commit
        ):
            return UP_TO_DATE
        if self.repo.is_ancestor(local_commit, upstream_commit):
            return FAST_FORWARD
        return DIVERGENT

    def pull(self, fetch=True):
        """Bring the current branch up to date with its upstream.

        Up to date: nothing happens. Fast-forward: the branch moves to the
        upstream commit without a new commit. Diverged: the upstream is
        merged and a merge commit is created, unless the merge conflicts.

        """
        self.ensure_no_merge()
        branch = self._active_branch()
        upstream = branch.tracking_branch()
        if upstream is None:
            raise NoUpstreamError.from_context(branch.name)

        if fetch:
            self.fetch_all_remotes()

        if not upstream.is_valid():
            raise NoUpstreamError.from_context(branch.name)
        upstream_commit = upstream.commit

        analysis = self.merge_analysis(branch, upstream_commit)
        output.annotate(
            "{} vs. {}: {}".format(branch.name, upstream.name, analysis),
            debug=True,
        )
        if analysis == UP_TO_DATE:
            return analysis
        if analysis == FAST_FORWARD:
            branch.set_commit(upstream_commit)
            self.repo.head.reference = branch
            self.checkout_force(branch)
            return analysis
        self.merge(branch, upstream, upstream_commit)
        return analysis

    def merge(self, branch, upstream, upstream_commit):
        local_commit = branch.commit
        try:
            self.repo.git.merge(
                "--no-commit", "--no-ff", upstream_commit.hexsha
            )
        except GitCommandError as e:
            conflicts = self.conflicts()
            if conflicts:
                raise MergeConflictError.from_context(
                    upstream.path, branch.name, conflicts
                ) from e
            raise GitCallError.from_context(e) from e

        conflicts = self.conflicts()
        if conflicts:
            raise MergeConflictError.from_context(
                upstream.path, branch.name, conflicts
            )

        self.repo.index.commit(
            "Merge {} into {}".format(upstream.path, branch.name),
            parent_commits=[local_commit, upstream_commit],
            head=True,
        )
        self.checkout_force(branch)
        self.cleanup_state()

    def conflicts(self):
        return [str(path) for path in self.repo.index.unmerged_blobs()]

    def checkout_force(self, branch):
        try:
            self.repo.git.checkout("--force", branch.name)
        except GitCommandError as e:
            raise GitCallError.from_context(e) from e

    def cleanup_state(self):
        git_dir = pathlib.Path(self.repo.git_dir)
        for name in MERGE_STATE_FILES:
            try:
                (git_dir / name).unlink()
            except FileNotFoundError:
                pass

    def merge_in_progress(self):
        git_dir = pathlib.Path(self.repo.git_dir)
        return (git_dir / "MERGE_HEAD").exists() or bool(self.conflicts())

    def ensure_no_merge(self):
        """Refuse to touch the repository while a merge is unconcluded."""
        if not self.merge_in_progress():
            return
        branch = "HEAD"
        if not self.repo.head.is_detached:
            branch = self.repo.active_branch.name
        raise MergeConflictError.from_context(
            "MERGE_HEAD", branch, self.conflicts()
        )

    def commit_all(self, message):
        """Stage every change of the working tree, including deletions, and
        commit it on top of HEAD."""
        self.ensure_no_merge()
        try:
            self.repo.git.add(A=True)
        except GitCommandError as e:
            raise GitCallError.from_context(e) from e
        commit = self.repo.index.commit(message)
        output.annotate(
            "Committed {}: {}".format(commit.hexsha[:8], message), debug=True
        )
        return commit

    def push(self):
        branch = self._active_branch()
        try:
            remote = self.repo.remote(DEFAULT_REMOTE)
        except ValueError as e:
            raise NoRemoteError.from_context(DEFAULT_REMOTE) from e
        refspec = "refs/heads/{0}:refs/heads/{0}".format(branch.name)
        env = self._remote_environment(remote.url)
        output.annotate(
            "Pushing {} to {}".format(refspec, remote.name), debug=True
        )
        try:
            with self.repo.git.custom_environment(**env):
                infos = remote.push(refspec)
        except GitCommandError as e:
            raise GitCallError.from_context(e) from e
        for info in infos:
            if info.flags & PUSH_FAILURE:
                raise PushRejectedError.from_context(refspec, info.summary)

    @classmethod
    def clone(cls, url, destination, settings=None) -> "GitRepository":
        """Clone `url` into `destination` and make sure the result is on a
        local branch that tracks the remote."""
        settings = settings or Settings()
        destination = pathlib.Path(destination)
        if destination.exists() and (
            not destination.is_dir() or any(destination.iterdir())
        ):
            raise NotEmptyError.from_context(destination)
        env = Credentials.for_url(url).environment(settings)
        destination.mkdir(parents=True, exist_ok=True)
        output.annotate(
            "Cloning {} into {}".format(url, destination), debug=True
        )
        try:
            repo = git.Repo.clone_from(url, str(destination), env=env)
        except GitCommandError as e:
            raise GitCallError.from_context(e) from e
        self = cls(repo, settings)
        self.ensure_local_branch()
        self.ensure_upstream()
        return self

    def default_remote_branch(self):
        """The branch `origin/HEAD` points to, if any."""
        head = git.SymbolicReference(
            self.repo, "refs/remotes/{}/HEAD".format(DEFAULT_REMOTE)
        )
        if not head.is_valid():
            return None
        try:
            return head.reference
        except TypeError:
            return None

    def _local_branch_for(self, remote_branch):
        name = remote_branch.remote_head
        if name in self.repo.heads:
            return self.repo.heads[name]
        return self.repo.create_head(name, remote_branch)

    def ensure_local_branch(self):
        default = self.default_remote_branch()
        if default is None:
            return
        name = default.remote_head
        if not self.repo.head.is_detached and name in self.repo.heads:
            return
        branch = self._local_branch_for(default)
        branch.set_tracking_branch(default)
        branch.checkout()

    def ensure_upstream(self):
        if self.repo.head.is_detached:
            return
        branch = self.repo.active_branch
        if branch.tracking_branch() is not None:
            return
        candidate = git.RemoteReference(
            self.repo,
            "refs/remotes/{}/{}".format(DEFAULT_REMOTE, branch.name),
        )
        if candidate.is_valid():
            branch.set_tracking_branch(candidate)
            return
        default = self.default_remote_branch()
        if default is None:
            return
        branch = self._local_branch_for(default)
        branch.set_tracking_branch(default)
        if self.repo.active_branch != branch:
            branch.checkout()
