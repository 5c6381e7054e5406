"""Comparison of expected against received responses.

Expectations use -1 for numeric "don't care" and ``*`` for textual
"don't care".  compare() stops at the first mismatch and reports it as
``Unexpected <field> <value>``.
"""

import itertools
import threading
from collections import OrderedDict
from typing import Iterator, List, Optional, Tuple

from . import tokens as tok
from .record import Record
from .tokens import Command, Status


class Mismatch(Exception):
    """Internal: first field that differs."""


def _check(expected, received, what: str) -> None:
    if expected != tok.WILDCARD and expected != received:
        raise Mismatch("Unexpected {} {}".format(what, received))


def _check_lock_type(expected: int, received: int) -> None:
    if expected != tok.WILDCARD and expected != received:
        raise Mismatch("Unexpected lock type {}".format(
            tok.lock_type_name(received)))


def _check_string(expected: str, received: str, what: str) -> None:
    if expected != "*" and expected != received:
        raise Mismatch("Unexpected {} {}".format(what, received))


def _check_range(expected: Record, received: Record) -> None:
    _check(expected.start, received.start, "start")
    _check(expected.length, received.length, "length")


def _check_ok(expected: Record, received: Record) -> None:
    cmd = expected.command
    if cmd in tok.STRING_COMMANDS or cmd is Command.QUIT:
        # HELLO already named the client and the client was checked.
        return
    if cmd in tok.RANGE_COMMANDS or cmd is Command.UNKNOWN:
        raise Mismatch("Unexpected Status {} for {}".format(
            received.status.name, received.command.name))
    if cmd is Command.ALARM:
        _check(expected.secs, received.secs, "secs")
    elif cmd is Command.OPEN:
        _check(expected.fpos, received.fpos, "fpos")
        _check(expected.fno, received.fno, "file number")
    elif cmd in (Command.CLOSE, Command.SEEK):
        _check(expected.fpos, received.fpos, "fpos")
    elif cmd is Command.WRITE:
        _check(expected.fpos, received.fpos, "fpos")
        _check(expected.length, received.length, "length")
    elif cmd is Command.READ:
        _check(expected.fpos, received.fpos, "fpos")
        _check(expected.length, received.length, "length")
        _check_string(expected.data, received.data, "data")


def _check_payload(expected: Record, received: Record) -> None:
    status = expected.status
    if status is Status.OK:
        _check_ok(expected, received)
    elif status in (Status.AVAILABLE, Status.GRANTED, Status.DENIED,
                    Status.DEADLOCK):
        _check(expected.fpos, received.fpos, "fpos")
        if expected.command is not Command.LIST:
            _check_lock_type(expected.lock_type, received.lock_type)
        _check_range(expected, received)
    elif status is Status.CONFLICT:
        _check(expected.fpos, received.fpos, "fpos")
        _check(expected.pid, received.pid, "pid")
        _check_lock_type(expected.lock_type, received.lock_type)
        _check_range(expected, received)
    elif status is Status.CANCELED:
        if expected.command is Command.LOCKW:
            _check(expected.fpos, received.fpos, "fpos")
            _check_lock_type(expected.lock_type, received.lock_type)
            _check_range(expected, received)
        elif expected.command is Command.ALARM:
            _check(expected.secs, received.secs, "secs")


def compare(expected: Record,
            received: Optional[Record]) -> Tuple[bool, str]:
    """Check *received* against *expected*.

    Order: client, command, tag, status, then the payload fields the
    status and command call for.  Returns ``(matched, reason)`` with an
    empty reason on success.
    """
    if received is None:
        return False, "Unexpected NULL response"
    try:
        if (expected.client is not None and received.client is not None
                and expected.client is not received.client
                and expected.client.name != received.client.name):
            raise Mismatch(
                "Unexpected response from {}".format(received.client.name))
        if expected.command is not received.command:
            raise Mismatch(
                "Unexpected command {}".format(received.command.name))
        _check(expected.tag, received.tag, "tag")
        if expected.status is None:
            if received.status is None or received.status.is_error:
                raise Mismatch("Unexpected status {}".format(
                    received.status.name if received.status else None))
            return True, ""
        if expected.status is not received.status:
            raise Mismatch("Unexpected status {}".format(
                received.status.name if received.status else None))
        _check_payload(expected, received)
    except Mismatch as e:
        return False, str(e)
    return True, ""


class PendingList:
    """Expectations not yet observed, in registration order.

    Each entry is addressed by an integer handle that is never reused.
    The list owns the client reference of every Record stored in it;
    remove() hands that ownership back to the caller.
    """

    def __init__(self) -> None:
        self._entries = OrderedDict()  # type: OrderedDict[int, Record]
        self._handles = itertools.count(1)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[Tuple[int, Record]]:
        with self._lock:
            return iter(list(self._entries.items()))

    def add(self, record: Record) -> int:
        with self._lock:
            handle = next(self._handles)
            self._entries[handle] = record
            return handle

    def get(self, handle: int) -> Optional[Record]:
        with self._lock:
            return self._entries.get(handle)

    def remove(self, handle: int) -> Optional[Record]:
        """Unlink and return the entry, or None if it is already gone."""
        with self._lock:
            return self._entries.pop(handle, None)

    def find_match(self, received: Record) -> Optional[int]:
        """Handle of the first entry *received* satisfies, or None."""
        with self._lock:
            entries = list(self._entries.items())
        for handle, expected in entries:
            if compare(expected, received)[0]:
                return handle
        return None

    def take_match(self, received: Record) -> Optional[Record]:
        """Find, unlink and return the first entry *received* satisfies."""
        with self._lock:
            for handle, expected in self._entries.items():
                if compare(expected, received)[0]:
                    del self._entries[handle]
                    return expected
        return None

    def for_client(self, client) -> List[Tuple[int, Record]]:
        with self._lock:
            return [(h, r) for h, r in self._entries.items()
                    if r.client is client]

    def take_oldest_blocking(self, client) -> Optional[Record]:
        """Unlink and return the oldest LOCKW expectation of *client*."""
        with self._lock:
            for handle, rec in self._entries.items():
                if rec.client is client and rec.command is Command.LOCKW:
                    del self._entries[handle]
                    return rec
        return None

    def replace_relaxed(self, record: Record) -> int:
        """Add *record*, dropping relaxed entries it supersedes.

        A relaxed entry is superseded when it has the same client,
        command and tag.  Superseded records are released.
        """
        dropped = []
        with self._lock:
            for handle, rec in list(self._entries.items()):
                if (rec.relaxed and rec.client is record.client
                        and rec.command is record.command
                        and rec.tag == record.tag):
                    dropped.append(self._entries.pop(handle))
            handle = next(self._handles)
            self._entries[handle] = record
        for rec in dropped:
            rec.release()
        return handle
