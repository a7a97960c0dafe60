import os
import shutil
import subprocess
import tempfile

import git
import pytest

from passbook._output import output

PASSPHRASE = "correct horse battery staple"
KEY_UID = "Passbook Test <test@example.com>"


@pytest.fixture(autouse=True)
def ensure_git_config(monkeypatch):
    monkeypatch.setitem(os.environ, "GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setitem(os.environ, "GIT_AUTHOR_NAME", "Mr. U. Test")
    monkeypatch.setitem(os.environ, "GIT_COMMITTER_EMAIL", "test@example.com")
    monkeypatch.setitem(os.environ, "GIT_COMMITTER_NAME", "Mr. U. Test")


@pytest.fixture(autouse=True)
def isolate_settings(monkeypatch, tmp_path):
    monkeypatch.setitem(
        os.environ, "PASSBOOK_CONFIG", str(tmp_path / "no-passbook.cfg")
    )
    monkeypatch.delenv("PASSWORD_STORE_GPG_OPTS", raising=False)
    monkeypatch.delenv("PASSWORD_STORE_DIR", raising=False)


@pytest.fixture(autouse=True)
def reset_output():
    backend, debug = output.backend, output.enable_debug
    yield
    output.backend, output.enable_debug = backend, debug


@pytest.fixture(scope="session")
def git_main_branch() -> str:
    with tempfile.TemporaryDirectory() as tmpdir:
        subprocess.check_call(["git", "-C", tmpdir, "init", "."])
        return (
            subprocess.check_output(
                ["git", "-C", tmpdir, "branch", "--show-current"]
            )
            .decode("ascii")
            .strip()
        )


@pytest.fixture
def upstream(tmp_path):
    """A bare repository with one commit holding the recipients file."""
    bare = tmp_path / "upstream.git"
    git.Repo.init(str(bare), bare=True)
    seed_dir = tmp_path / "seed"
    seed = git.Repo.clone_from(str(bare), str(seed_dir))
    (seed_dir / ".gpg-id").write_text("test@example.com\n")
    seed.git.add(A=True)
    seed.index.commit("Initialize store")
    seed.git.push("origin", "HEAD")
    return bare


@pytest.fixture(scope="session")
def gnupg_home(tmp_path_factory):
    """A throwaway keyring with one secret key protected by PASSPHRASE."""
    if shutil.which("gpg") is None:
        pytest.skip("gpg is not installed")
    home = tmp_path_factory.mktemp("gnupg")
    home.chmod(0o700)
    (home / "gpg-agent.conf").write_text(
        "allow-loopback-pinentry\ndefault-cache-ttl 0\nmax-cache-ttl 0\n"
    )
    subprocess.check_call(
        [
            "gpg",
            "--homedir",
            str(home),
            "--batch",
            "--pinentry-mode",
            "loopback",
            "--passphrase",
            PASSPHRASE,
            "--quick-gen-key",
            KEY_UID,
            "default",
            "default",
            "never",
        ],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    yield home
    subprocess.call(
        ["gpgconf", "--homedir", str(home), "--kill", "all"],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )


@pytest.fixture
def gpg_home(gnupg_home, monkeypatch):
    monkeypatch.setitem(os.environ, "GNUPGHOME", str(gnupg_home))
    return gnupg_home


@pytest.fixture
def passphrase():
    return PASSPHRASE
