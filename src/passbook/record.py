"""The plaintext form of a record.

The first line is the password. All further lines are kept verbatim; some
of them may look like `field: value` but the store does not interpret them.

"""

from typing import Iterable

from passbook import RecordDecodeError


class Record(object):

    def __init__(self, password: str = "", extra: Iterable[str] = ()):
        self.password = password
        self.extra = list(extra)

    @property
    def lines(self):
        return [self.password] + self.extra

    def __eq__(self, other):
        if isinstance(other, Record):
            return self.lines == other.lines
        return NotImplemented

    def __repr__(self):
        return "<Record with {} extra line(s)>".format(len(self.extra))


def encode(record: Record) -> bytes:
    return "".join(line + "\n" for line in record.lines).encode("utf-8")


def decode(data: bytes) -> Record:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise RecordDecodeError.from_context(e) from e
    if not text:
        return Record()
    lines = text.split("\n")
    if text.endswith("\n"):
        lines.pop()
    return Record(lines[0], lines[1:])
