import os

import git
import pytest

from passbook import (
    AuthError,
    ConfigError,
    DetachedHeadError,
    GitCallError,
    MergeConflictError,
    NoRemoteError,
    NotEmptyError,
    NoUpstreamError,
    PushRejectedError,
)
from passbook.config import Settings
from passbook.repository import (
    DIVERGENT,
    FAST_FORWARD,
    UP_TO_DATE,
    Credentials,
    GitRepository,
)


@pytest.fixture
def clone(upstream, tmp_path):
    def clone(name):
        return GitRepository.clone(str(upstream), tmp_path / name)

    return clone


def write_and_commit(repository, name, content, message=None):
    (repository.working_dir / name).write_text(content)
    return repository.commit_all(message or "Write {}".format(name))


def test_discover_without_repository_is_config_error(tmp_path):
    with pytest.raises(ConfigError):
        GitRepository.discover(tmp_path)


def test_discover_missing_directory_is_config_error(tmp_path):
    with pytest.raises(ConfigError):
        GitRepository.discover(tmp_path / "missing")


def test_clone_sets_up_tracking_branch(clone, git_main_branch):
    repository = clone("local")
    branch = repository.repo.active_branch
    assert branch.name == git_main_branch
    assert branch.tracking_branch().name == "origin/" + git_main_branch
    assert (repository.working_dir / ".gpg-id").exists()


def test_clone_creates_missing_destination(upstream, tmp_path):
    destination = tmp_path / "deeply" / "nested" / "store"
    GitRepository.clone(str(upstream), destination)
    assert (destination / ".gpg-id").exists()


def test_clone_into_empty_directory(upstream, tmp_path):
    destination = tmp_path / "empty"
    destination.mkdir()
    GitRepository.clone(str(upstream), destination)
    assert (destination / ".gpg-id").exists()


def test_clone_into_non_empty_directory_fails(upstream, tmp_path):
    destination = tmp_path / "occupied"
    destination.mkdir()
    (destination / "file").write_text("x")
    with pytest.raises(NotEmptyError):
        GitRepository.clone(str(upstream), destination)
    assert os.listdir(destination) == ["file"]


def test_clone_onto_regular_file_fails(upstream, tmp_path):
    destination = tmp_path / "store"
    destination.write_text("x")
    with pytest.raises(NotEmptyError):
        GitRepository.clone(str(upstream), destination)
    assert destination.read_text() == "x"


def test_ensure_upstream_restores_missing_tracking_branch(
    clone, git_main_branch
):
    repository = clone("local")
    repository.repo.active_branch.set_tracking_branch(None)
    assert repository.repo.active_branch.tracking_branch() is None
    repository.ensure_upstream()
    tracking = repository.repo.active_branch.tracking_branch()
    assert tracking.name == "origin/" + git_main_branch


def test_ensure_local_branch_recovers_from_detached_head(
    clone, git_main_branch
):
    repository = clone("local")
    repository.repo.git.checkout("--detach")
    repository.ensure_local_branch()
    assert not repository.repo.head.is_detached
    assert repository.repo.active_branch.name == git_main_branch


def test_commit_all_stages_additions_and_deletions(clone):
    repository = clone("local")
    write_and_commit(repository, "a.gpg", "a")
    (repository.working_dir / "a.gpg").unlink()
    write_and_commit(repository, "b.gpg", "b", "Replace a with b")
    head = repository.repo.head.commit
    assert head.message == "Replace a with b"
    names = [blob.path for blob in head.tree.traverse()]
    assert "a.gpg" not in names
    assert "b.gpg" in names
    assert len(head.parents) == 1


def test_commit_all_on_unborn_branch_has_no_parent(tmp_path):
    repo = git.Repo.init(str(tmp_path / "fresh"))
    repository = GitRepository(repo)
    commit = write_and_commit(repository, "first.gpg", "x")
    assert not commit.parents
    assert repo.head.commit == commit
    assert commit.author.email == "test@example.com"


def test_pull_up_to_date(clone):
    repository = clone("local")
    before = repository.repo.head.commit
    assert repository.pull() == UP_TO_DATE
    assert repository.repo.head.commit == before


def test_pull_with_only_local_commits_is_up_to_date(clone):
    repository = clone("local")
    commit = write_and_commit(repository, "a.gpg", "a")
    assert repository.pull() == UP_TO_DATE
    assert repository.repo.head.commit == commit


def test_pull_fast_forwards_without_merge_commit(clone):
    alice = clone("alice")
    bob = clone("bob")
    commit = write_and_commit(alice, "a.gpg", "from alice")
    alice.push()

    assert bob.pull() == FAST_FORWARD
    head = bob.repo.head.commit
    assert head == commit
    assert len(head.parents) == 1
    assert (bob.working_dir / "a.gpg").read_text() == "from alice"
    assert not bob.repo.is_dirty(untracked_files=True)


def test_pull_divergent_creates_merge_commit(clone, git_main_branch):
    alice = clone("alice")
    bob = clone("bob")
    theirs = write_and_commit(alice, "a.gpg", "from alice")
    alice.push()
    ours = write_and_commit(bob, "b.gpg", "from bob")

    assert bob.pull() == DIVERGENT
    head = bob.repo.head.commit
    assert list(head.parents) == [ours, theirs]
    assert head.message == "Merge refs/remotes/origin/{0} into {0}".format(
        git_main_branch
    )
    assert (bob.working_dir / "a.gpg").read_text() == "from alice"
    assert (bob.working_dir / "b.gpg").read_text() == "from bob"
    assert not (bob.working_dir / ".git" / "MERGE_HEAD").exists()
    assert not bob.repo.is_dirty(untracked_files=True)

    bob.push()
    assert alice.pull() == FAST_FORWARD
    assert alice.repo.head.commit == head


def test_pull_conflict_is_reported_and_left_for_inspection(clone):
    alice = clone("alice")
    bob = clone("bob")
    write_and_commit(alice, "shared.gpg", "alice's version\n")
    alice.push()
    ours = write_and_commit(bob, "shared.gpg", "bob's version\n")

    with pytest.raises(MergeConflictError) as e:
        bob.pull()
    assert e.value.paths == ["shared.gpg"]
    assert bob.repo.head.commit == ours
    assert (bob.working_dir / ".git" / "MERGE_HEAD").exists()
    content = (bob.working_dir / "shared.gpg").read_text()
    assert "<<<<<<<" in content
    assert "alice's version" in content
    assert "bob's version" in content


def test_commit_all_refuses_unconcluded_merge(clone):
    alice = clone("alice")
    bob = clone("bob")
    write_and_commit(alice, "shared.gpg", "alice's version\n")
    alice.push()
    ours = write_and_commit(bob, "shared.gpg", "bob's version\n")
    with pytest.raises(MergeConflictError):
        bob.pull()

    (bob.working_dir / "other.gpg").write_text("other\n")
    with pytest.raises(MergeConflictError) as e:
        bob.commit_all("Add other")
    assert e.value.paths == ["shared.gpg"]
    assert bob.repo.head.commit == ours

    # Staged resolution without a commit still leaves MERGE_HEAD behind.
    (bob.working_dir / "shared.gpg").write_text("resolved\n")
    bob.repo.git.add("shared.gpg")
    assert bob.conflicts() == []
    with pytest.raises(MergeConflictError):
        bob.commit_all("Add other")
    with pytest.raises(MergeConflictError):
        bob.pull()
    assert bob.repo.head.commit == ours


def test_fetch_all_remotes_updates_every_remote(
    clone, upstream, git_main_branch
):
    alice = clone("alice")
    bob = clone("bob")
    bob.repo.create_remote("mirror", str(upstream))
    head = write_and_commit(alice, "a.gpg", "a\n")
    alice.push()

    bob.fetch_all_remotes()
    assert bob.repo.remotes.origin.refs[git_main_branch].commit == head
    assert bob.repo.remotes.mirror.refs[git_main_branch].commit == head
    # Fetching moves remote tracking refs only.
    assert bob.repo.head.commit != head


def test_fetch_all_remotes_reports_unreachable_remote(clone, tmp_path):
    repository = clone("local")
    repository.repo.create_remote("broken", str(tmp_path / "missing"))
    with pytest.raises(GitCallError) as e:
        repository.fetch_all_remotes()
    assert "fetch" in e.value.command


def test_pull_on_detached_head_fails(clone):
    repository = clone("local")
    repository.repo.git.checkout("--detach")
    with pytest.raises(DetachedHeadError):
        repository.pull()


def test_pull_without_upstream_fails(clone):
    repository = clone("local")
    repository.repo.create_head("other").checkout()
    with pytest.raises(NoUpstreamError) as e:
        repository.pull()
    assert e.value.branch == "other"


def test_push_updates_upstream(clone, upstream, git_main_branch):
    repository = clone("local")
    commit = write_and_commit(repository, "a.gpg", "a")
    repository.push()
    bare = git.Repo(str(upstream))
    assert bare.heads[git_main_branch].commit == commit


def test_push_on_detached_head_fails(clone):
    repository = clone("local")
    repository.repo.git.checkout("--detach")
    with pytest.raises(DetachedHeadError):
        repository.push()


def test_push_without_origin_fails(tmp_path):
    repository = GitRepository(git.Repo.init(str(tmp_path / "lonely")))
    write_and_commit(repository, "a.gpg", "a")
    with pytest.raises(NoRemoteError) as e:
        repository.push()
    assert e.value.remote == "origin"


def test_push_behind_upstream_is_rejected(clone):
    alice = clone("alice")
    bob = clone("bob")
    write_and_commit(alice, "a.gpg", "a")
    alice.push()
    write_and_commit(bob, "b.gpg", "b")
    with pytest.raises(PushRejectedError):
        bob.push()


@pytest.mark.parametrize(
    "url, transport, username, explicit",
    [
        ("/srv/git/store.git", Credentials.LOCAL, None, False),
        ("file:///srv/git/store.git", Credentials.LOCAL, None, False),
        ("../store.git", Credentials.LOCAL, None, False),
        ("git@example.com:store.git", Credentials.SSH, "git", True),
        ("alice@example.com:store.git", Credentials.SSH, "alice", True),
        ("example.com:store.git", Credentials.SSH, "git", False),
        ("ssh://example.com/store.git", Credentials.SSH, "git", False),
        ("ssh://bob@example.com:2222/store.git", Credentials.SSH, "bob", True),
        ("git+ssh://example.com/store.git", Credentials.SSH, "git", False),
        ("https://example.com/store.git", Credentials.USERNAME, "git", False),
        ("git://example.com/store.git", Credentials.USERNAME, "git", False),
    ],
)
def test_credentials_for_url(url, transport, username, explicit):
    credentials = Credentials.for_url(url)
    assert credentials.transport == transport
    assert credentials.username == username
    assert credentials.explicit_user == explicit


def test_credentials_unsupported_transport():
    with pytest.raises(AuthError) as e:
        Credentials.for_url("ftp://example.com/store.git")
    assert "ftp" in e.value.reason


def test_ssh_credentials_need_an_agent(monkeypatch):
    monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
    with pytest.raises(AuthError):
        Credentials.for_url("example.com:store.git").environment(Settings())


def test_ssh_credentials_use_agent_and_default_user(monkeypatch):
    monkeypatch.setitem(os.environ, "SSH_AUTH_SOCK", "/tmp/agent.sock")
    env = Credentials.for_url("example.com:store.git").environment(
        Settings(ssh_command="ssh -F /dev/null")
    )
    assert env["GIT_TERMINAL_PROMPT"] == "0"
    assert env["GIT_SSH_COMMAND"] == (
        "ssh -F /dev/null -o BatchMode=yes"
        " -o PreferredAuthentications=publickey -l git"
    )


def test_ssh_credentials_keep_user_from_url(monkeypatch):
    monkeypatch.setitem(os.environ, "SSH_AUTH_SOCK", "/tmp/agent.sock")
    env = Credentials.for_url("alice@example.com:store.git").environment(
        Settings()
    )
    assert "-l" not in env["GIT_SSH_COMMAND"].split()


def test_http_credentials_never_prompt():
    env = Credentials.for_url("https://example.com/s.git").environment(
        Settings()
    )
    assert env == {
        "GIT_TERMINAL_PROMPT": "0",
        "GIT_CONFIG_COUNT": "1",
        "GIT_CONFIG_KEY_0": "credential.helper",
        "GIT_CONFIG_VALUE_0": "",
    }


def test_ssh_credentials_disable_credential_helpers(monkeypatch):
    monkeypatch.setitem(os.environ, "SSH_AUTH_SOCK", "/tmp/agent.sock")
    env = Credentials.for_url("git@example.com:store.git").environment(
        Settings()
    )
    assert env["GIT_CONFIG_KEY_0"] == "credential.helper"
    assert env["GIT_CONFIG_VALUE_0"] == ""


def test_local_credentials_need_no_environment():
    assert Credentials.for_url("/srv/store.git").environment(Settings()) == {}
