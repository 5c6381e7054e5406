"""In-memory form of one protocol message (request, response or
expectation)."""

from typing import Optional

from .tokens import (
    Command, DEFAULT_OPEN_MODE, LockMode, Status, WILDCARD,
)

# Payload fields, in the order reports and comparisons list them.
FIELDS = (
    "tag", "command", "status", "fpos", "fno", "start", "length",
    "lock_type", "flags", "mode", "lock_mode", "data", "secs", "pid",
    "errno",
)


class Record:
    """One request, response or expected response.

    Only the fields the (command, status) pair calls for carry meaning;
    the rest keep their defaults.  ``status is None`` marks a relaxed
    expectation that accepts any status outside the error class.

    A record may reference the Client it travels on.  The reference is
    counted: attach() takes one, release() gives it back, and every
    attach must be paired with a release.
    """

    def __init__(self, command: Command = Command.UNKNOWN,
                 tag: int = WILDCARD, status: Optional[Status] = None,
                 **fields) -> None:
        self.tag = tag
        self.command = command
        self.status = status
        self.fpos = 0
        self.fno = 0
        self.start = 0
        self.length = 0
        self.lock_type = 0
        self.flags = 0
        self.mode = DEFAULT_OPEN_MODE
        self.lock_mode = LockMode.POSIX
        self.data = ""
        self.secs = 0
        self.pid = 0
        self.errno = 0
        self.original = ""
        self.client = None
        for name, value in fields.items():
            if name not in FIELDS and name != "original":
                raise TypeError("Record has no field {!r}".format(name))
            setattr(self, name, value)

    def __repr__(self) -> str:
        status = self.status.name if self.status is not None else "*"
        owner = self.client.name if self.client is not None else None
        return "Record({} {} {} client={!r})".format(
            self.tag, self.command.name, status, owner)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return all(getattr(self, f) == getattr(other, f) for f in FIELDS)

    __hash__ = None  # type: ignore

    @property
    def relaxed(self) -> bool:
        return self.status is None

    @property
    def client_name(self) -> str:
        return self.client.name if self.client is not None else "<NULL>"

    # -- Client reference --------------------------------------------------

    def attach(self, client) -> "Record":
        """Point this record at *client*, taking a reference."""
        if client is self.client:
            return self
        self.release()
        if client is not None:
            client.acquire()
        self.client = client
        return self

    def release(self) -> None:
        """Drop the client reference, if any.  Safe to call twice."""
        client = self.client
        self.client = None
        if client is not None:
            client.release()

    def copy(self, **changes) -> "Record":
        """Return a detached copy, optionally overriding fields.

        The copy takes its own reference on the client.
        """
        dup = Record(self.command)
        for name in FIELDS:
            setattr(dup, name, getattr(self, name))
        dup.original = self.original
        for name, value in changes.items():
            setattr(dup, name, value)
        dup.attach(self.client)
        return dup
