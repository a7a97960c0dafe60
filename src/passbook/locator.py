import os
import pathlib
import pwd

from passbook import ConfigError

STORE_DIR_ENV = "PASSWORD_STORE_DIR"
DEFAULT_STORE_DIR = ".password-store"


def home_dir():
    home = os.environ.get("HOME")
    if home:
        return pathlib.Path(home)
    try:
        return pathlib.Path(pwd.getpwuid(os.getuid()).pw_dir)
    except KeyError:
        return None


def discover_root() -> pathlib.Path:
    """Determine the password store directory.

    `PASSWORD_STORE_DIR` wins and is used verbatim. Otherwise the store lives
    in `.password-store` inside the user's home directory.

    """
    override = os.environ.get(STORE_DIR_ENV)
    if override:
        return pathlib.Path(override)
    home = home_dir()
    if home is None:
        raise ConfigError.from_context(
            "Could not determine home directory and {} is not set".format(
                STORE_DIR_ENV
            )
        )
    return home / DEFAULT_STORE_DIR


def store_exists() -> bool:
    try:
        return discover_root().is_dir()
    except ConfigError:
        return False
