"""Settings for the gpg and git collaborators.

The settings file is optional. The store location is deliberately not part
of it, see `passbook.locator`.

"""

import configparser
import os
import pathlib
import shlex
from typing import List, Optional

from configupdater import ConfigUpdater

from passbook import ConfigError
from passbook._output import output

CONFIG_ENV = "PASSBOOK_CONFIG"
GPG_OPTS_ENV = "PASSWORD_STORE_GPG_OPTS"


def default_config_path() -> pathlib.Path:
    if os.environ.get(CONFIG_ENV):
        return pathlib.Path(os.environ[CONFIG_ENV])
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.expanduser(
        "~/.config"
    )
    return pathlib.Path(base) / "passbook" / "passbook.cfg"


class Settings(object):
    """Tunables for the external programs passbook drives."""

    gpg_binary: Optional[str] = None
    gpg_options: List[str]
    ssh_command: str = "ssh"

    def __init__(self, gpg_binary=None, gpg_options=(), ssh_command="ssh"):
        self.gpg_binary = gpg_binary
        self.gpg_options = list(gpg_options)
        self.ssh_command = ssh_command

    @classmethod
    def load(cls, path: Optional[pathlib.Path] = None) -> "Settings":
        path = path or default_config_path()
        self = cls()
        if path.exists():
            output.annotate(f"Reading settings from {path}", debug=True)
            self.read(path)
        extra = os.environ.get(GPG_OPTS_ENV)
        if extra:
            self.gpg_options.extend(shlex.split(extra))
        return self

    def read(self, path: pathlib.Path):
        config = ConfigUpdater()
        try:
            config.read(str(path))
        except (OSError, configparser.Error) as e:
            raise ConfigError.from_context(
                f"Could not read settings file {path}: {e}"
            ) from e

        binary = value(config, "gpg", "binary")
        if binary:
            self.gpg_binary = binary
        options = value(config, "gpg", "options")
        if options:
            self.gpg_options.extend(shlex.split(options))
        ssh = value(config, "git", "ssh_command")
        if ssh:
            self.ssh_command = ssh


def value(config, section, option):
    if not config.has_option(section, option):
        return None
    return (config.get(section, option).value or "").strip()
