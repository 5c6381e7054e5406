"""Keyword tables for the multilock wire protocol.

Every table is an ordered tuple of Token entries searched linearly by
exact length with a case-insensitive compare.  The last entry of each
table has a zero match length and supplies the default value for an
optional field that is absent.
"""

import enum
import fcntl
import os
from collections import namedtuple
from typing import Optional, Sequence

Token = namedtuple("Token", ["name", "length", "value"])


def _table(*entries):
    return tuple(Token(name, len(name), value) for name, value in entries)


# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------

MAX_STR = 1024
MAX_PATH = 4095
MAX_XFER = MAX_PATH + 2 * MAX_STR

# Wire encoding; every character of a line is one byte.
ENCODING = "iso-8859-1"

DEFAULT_OPEN_MODE = 0o600

WILDCARD = -1


# ---------------------------------------------------------------------------
# Commands and statuses
# ---------------------------------------------------------------------------

class Command(enum.IntEnum):
    OPEN = 0
    CLOSE = 1
    LOCKW = 2
    LOCK = 3
    UNLOCK = 4
    TEST = 5
    LIST = 6
    HOP = 7
    UNHOP = 8
    SEEK = 9
    READ = 10
    WRITE = 11
    COMMENT = 12
    ALARM = 13
    HELLO = 14
    FORK = 15
    QUIT = 16
    UNKNOWN = 17


COMMANDS = _table(
    *((c.name, c) for c in Command if c is not Command.UNKNOWN),
    ("", Command.UNKNOWN))

# Commands whose payload is a lock range with a lock type.
LOCK_COMMANDS = frozenset(
    [Command.LOCKW, Command.LOCK, Command.TEST, Command.HOP])

# Commands answered with lock statuses rather than OK.
RANGE_COMMANDS = LOCK_COMMANDS | frozenset(
    [Command.UNLOCK, Command.LIST, Command.UNHOP])

STRING_COMMANDS = frozenset([Command.COMMENT, Command.HELLO, Command.FORK])


class Status(enum.IntEnum):
    OK = 0
    AVAILABLE = 1
    GRANTED = 2
    DENIED = 3
    DEADLOCK = 4
    CONFLICT = 5
    CANCELED = 6
    COMPLETED = 7
    ERRNO = 8
    PARSE_ERROR = 9
    ERROR = 10

    @property
    def is_error(self):
        """True for statuses reported on the error stream."""
        return self >= Status.ERRNO


STATUSES = _table(*((s.name, s) for s in Status), ("", Status.ERROR))

# Delayed completions of a LOCKW.
COMPLETION_STATUSES = frozenset(
    [Status.GRANTED, Status.DENIED, Status.CANCELED, Status.DEADLOCK])


# ---------------------------------------------------------------------------
# Field value tables
# ---------------------------------------------------------------------------

LOCK_TYPES = _table(
    ("read", fcntl.F_RDLCK),
    ("write", fcntl.F_WRLCK),
    ("shared", fcntl.F_RDLCK),
    ("exclusive", fcntl.F_WRLCK),
    ("F_RDLCK", fcntl.F_RDLCK),
    ("F_WRLCK", fcntl.F_WRLCK),
    ("unlock", fcntl.F_UNLCK),
    ("F_UNLCK", fcntl.F_UNLCK),
    ("*", WILDCARD),
    ("", 0),
)

READ_WRITE_FLAGS = _table(
    ("rw", os.O_RDWR),
    ("ro", os.O_RDONLY),
    ("wo", os.O_WRONLY),
    ("O_RDWR", os.O_RDWR),
    ("O_RDONLY", os.O_RDONLY),
    ("O_WRONLY", os.O_WRONLY),
    ("", 0),
)

OPEN_FLAGS = _table(
    ("create", os.O_CREAT),
    ("creat", os.O_CREAT),
    ("O_CREAT", os.O_CREAT),
    ("exclusive", os.O_EXCL),
    ("excl", os.O_EXCL),
    ("O_EXCL", os.O_EXCL),
    ("truncate", os.O_TRUNC),
    ("trunc", os.O_TRUNC),
    ("O_TRUNC", os.O_TRUNC),
    ("", 0),
)


class LockMode(enum.IntEnum):
    POSIX = 0
    OFD = 1


LOCK_MODES = _table(
    ("POSIX", LockMode.POSIX),
    ("OFD", LockMode.OFD),
    ("", LockMode.POSIX),
)

ON_OFF = _table(
    ("on", True),
    ("off", False),
    ("", True),
)


# ---------------------------------------------------------------------------
# Lookup helpers
# ---------------------------------------------------------------------------

def lookup(tokens, text):
    # type: (Sequence[Token], str) -> Optional[Token]
    """Return the entry of *tokens* matching *text*, or None.

    The sentinel entry never matches.
    """
    length = len(text)
    folded = text.lower()
    for tok in tokens:
        if tok.length == 0:
            break
        if tok.length == length and tok.name.lower() == folded:
            return tok
    return None


def default(tokens):
    # type: (Sequence[Token]) -> object
    """Return the default value carried by the sentinel entry."""
    return tokens[-1].value


def lock_type_name(value):
    """Canonical spelling of a lock type value."""
    if value == fcntl.F_RDLCK:
        return "read"
    if value == fcntl.F_WRLCK:
        return "write"
    if value == fcntl.F_UNLCK:
        return "unlock"
    if value == WILDCARD:
        return "*"
    return "unknown"


def read_write_name(flags):
    """Canonical spelling of the access mode in *flags*."""
    access = flags & os.O_ACCMODE
    if access == os.O_RDWR:
        return "rw"
    if access == os.O_RDONLY:
        return "ro"
    if access == os.O_WRONLY:
        return "wo"
    return "unknown"


def open_flag_names(flags):
    """Canonical spellings of the optional open flags set in *flags*.

    Each flag value is emitted once, under the first name the table
    lists for it.
    """
    names = []
    seen = 0
    for tok in OPEN_FLAGS:
        if tok.length == 0:
            break
        if not seen & tok.value and flags & tok.value == tok.value:
            names.append(tok.name)
        seen |= tok.value
    return names


def lock_mode_name(mode):
    """Canonical spelling of a lock mode."""
    for tok in LOCK_MODES:
        if tok.length and tok.value == mode:
            return tok.name
    return "unknown"
