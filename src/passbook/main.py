import argparse
import getpass
import sys
from typing import Optional

import importlib_resources

import passbook
from passbook._output import TerminalBackend, output
from passbook.record import Record
from passbook.store import Store


def list_records(**kw):
    for identifier in Store().list():
        output.line(identifier)


def show(name, ask, **kw):
    store = Store()
    if ask:
        record = store.ask(name)
    else:
        record = store.get(name, getpass.getpass("Passphrase: "))
    for line in record.lines:
        output.line(line)


def insert(name, multiline, **kw):
    if multiline:
        output.line(
            "Enter contents of {} and press Ctrl+D when done:".format(name)
        )
        lines = sys.stdin.read().split("\n")
        if lines and lines[-1] == "":
            lines.pop()
        record = Record(lines[0] if lines else "", lines[1:])
    else:
        password = getpass.getpass("Enter password for {}: ".format(name))
        again = getpass.getpass("Retype password for {}: ".format(name))
        if password != again:
            output.error("The entered passwords do not match.")
            return 1
        record = Record(password)
    Store().add(name, record)
    output.step("insert", name)


def remove(name, **kw):
    Store().remove(name)
    output.step("rm", name)


def rename(old, new, **kw):
    Store().rename(old, new)
    output.step("mv", "{} -> {}".format(old, new))


def sync(**kw):
    Store().sync()
    output.step("sync", "done")


def clone(url, **kw):
    store = Store.from_git(url)
    output.step("clone", "{} -> {}".format(url, store.root))


def main(args: Optional[list] = None) -> int:
    version = (
        importlib_resources.files("passbook")
        .joinpath("version.txt")
        .read_text()
        .strip()
    )
    parser = argparse.ArgumentParser(
        description="passbook v{}: a git synchronized password store".format(
            version
        ),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.set_defaults(func=parser.print_usage)

    parser.add_argument(
        "-d", "--debug", action="store_true", help="Enable debug mode."
    )

    subparsers = parser.add_subparsers()

    p = subparsers.add_parser("ls", help="List all records.")
    p.set_defaults(func=list_records)

    p = subparsers.add_parser("show", help="Decrypt and show a record.")
    p.add_argument("name", help="Record to show.")
    p.add_argument(
        "--ask",
        action="store_true",
        help="Let gpg-agent ask for the passphrase.",
    )
    p.set_defaults(func=show)

    p = subparsers.add_parser("insert", help="Add or update a record.")
    p.add_argument("name", help="Record to write.")
    p.add_argument(
        "-m",
        "--multiline",
        action="store_true",
        help="Read the whole record from stdin. "
        "The first line is the password.",
    )
    p.set_defaults(func=insert)

    p = subparsers.add_parser("rm", help="Remove a record.")
    p.add_argument("name", help="Record to remove.")
    p.set_defaults(func=remove)

    p = subparsers.add_parser("mv", help="Rename a record.")
    p.add_argument("old", help="Current name of the record.")
    p.add_argument("new", help="New name of the record.")
    p.set_defaults(func=rename)

    p = subparsers.add_parser(
        "sync", help="Fetch, merge the upstream and push the store."
    )
    p.set_defaults(func=sync)

    p = subparsers.add_parser(
        "clone", help="Set up the password store from a git remote."
    )
    p.add_argument("url", help="The remote to clone.")
    p.set_defaults(func=clone)

    args = parser.parse_args(args)

    # Consume global arguments
    output.enable_debug = args.debug

    # Pass over to function
    if args.func.__name__ == "print_usage":
        args.func()
        return 1

    output.backend = TerminalBackend()
    func_args = dict(args._get_kwargs())
    del func_args["func"]
    del func_args["debug"]
    try:
        return args.func(**func_args) or 0
    except passbook.ReportingException as e:
        e.report()
        return 1
    except KeyboardInterrupt:
        return 1
    except Exception:
        output.error("Unexpected error", exc_info=sys.exc_info())
        return 1


if __name__ == "__main__":
    sys.exit(main())
