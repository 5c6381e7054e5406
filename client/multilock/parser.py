"""Line -> Record conversion for requests and responses.

Requests look like ``<tag> <COMMAND> <payload>`` and responses like
``<tag> <COMMAND> <STATUS> <payload>``; see the serializer for the exact
inverse.  Any failure raises ParseError carrying a diagnostic Record with
status PARSE_ERROR.  A failed parse never touches the tag slots.
"""

import fcntl
import os
from typing import Callable, Dict, Optional

from . import tokens as tok
from .correlator import TagCorrelator
from .exceptions import ParseError
from .lexer import (
    Cursor, GrammarError, Requires, integer, next_token, parse_number,
    optional_keyword, optional_token_value, quoted_string, skip_white,
    token_value,
)
from .record import Record
from .tokens import Command, Status

MORE = Requires.MORE
NO_MORE = Requires.NO_MORE
EITHER = Requires.EITHER


# ---------------------------------------------------------------------------
# Shared field parsers
# ---------------------------------------------------------------------------

def _command(cur: Cursor, allow_unknown: bool = False) -> Command:
    start = cur.pos
    text = next_token(cur, EITHER, "Invalid command")
    entry = tok.lookup(tok.COMMANDS, text)
    if entry is None and allow_unknown and text.upper() == "UNKNOWN":
        # Responders answer unparseable requests as UNKNOWN.
        skip_white(cur, MORE, text)
        return Command.UNKNOWN
    if entry is None:
        raise GrammarError("Invalid command", cur.line[start:].strip())
    if entry.value is Command.QUIT:
        skip_white(cur, EITHER, entry.name)
    else:
        skip_white(cur, MORE, entry.name)
    return entry.value


def _fpos(cur: Cursor, requires: Requires, wildcard: bool = False) -> int:
    value = integer(cur, requires, "Invalid fpos")
    if wildcard and value == tok.WILDCARD:
        return value
    if value < 0:
        raise GrammarError("Invalid fpos", str(value))
    return value


def _lock_type(cur: Cursor) -> int:
    return token_value(cur, tok.LOCK_TYPES, MORE, "Invalid lock type")


def _range(cur: Cursor, rec: Record) -> None:
    rec.start = integer(cur, MORE, "Invalid lock start")
    rec.length = integer(cur, NO_MORE, "Invalid lock length")


def _string(cur: Cursor, maximum: int = tok.MAX_STR) -> str:
    return quoted_string(cur, maximum, NO_MORE, "string")


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------

def _rq_open(cur: Cursor, rec: Record) -> None:
    rec.fpos = _fpos(cur, MORE)
    rec.flags = token_value(cur, tok.READ_WRITE_FLAGS, MORE,
                            "Invalid open flags")
    while True:
        flag = optional_token_value(cur, tok.OPEN_FLAGS, MORE,
                                    "Invalid optional open flag")
        if not flag:
            break
        rec.flags |= flag
    if optional_keyword(cur, "mode", MORE, "Invalid optional open flag"):
        rec.mode = integer(cur, MORE, "Invalid mode")
    rec.lock_mode = optional_token_value(cur, tok.LOCK_MODES, MORE,
                                         "Invalid optional lock mode")
    rec.data = _string(cur, tok.MAX_PATH)


def _rq_close(cur: Cursor, rec: Record) -> None:
    rec.fpos = _fpos(cur, NO_MORE)


def _rq_lock(cur: Cursor, rec: Record) -> None:
    rec.fpos = _fpos(cur, MORE)
    start = cur.pos
    rec.lock_type = _lock_type(cur)
    if rec.lock_type not in (fcntl.F_RDLCK, fcntl.F_WRLCK):
        raise GrammarError("Invalid lock type",
                           cur.line[start:].split(None, 1)[0])
    _range(cur, rec)


def _rq_unlock(cur: Cursor, rec: Record) -> None:
    rec.lock_type = fcntl.F_UNLCK
    rec.fpos = _fpos(cur, MORE)
    _range(cur, rec)


def _rq_list(cur: Cursor, rec: Record) -> None:
    rec.lock_type = fcntl.F_WRLCK
    rec.fpos = _fpos(cur, MORE)
    _range(cur, rec)


def _rq_seek(cur: Cursor, rec: Record) -> None:
    rec.fpos = _fpos(cur, MORE)
    rec.start = integer(cur, NO_MORE, "Invalid pos")


def _rq_read(cur: Cursor, rec: Record) -> None:
    rec.fpos = _fpos(cur, MORE)
    if cur.char == '"':
        rec.data = _string(cur)
        rec.length = len(rec.data)
    else:
        rec.length = integer(cur, NO_MORE, "Invalid len")


def _rq_write(cur: Cursor, rec: Record) -> None:
    rec.fpos = _fpos(cur, MORE)
    rec.data = _string(cur)
    rec.length = len(rec.data)


def _rq_string(cur: Cursor, rec: Record) -> None:
    rec.data = _string(cur)


def _rq_alarm(cur: Cursor, rec: Record) -> None:
    rec.secs = integer(cur, NO_MORE, "Invalid secs")


def _rq_empty(cur: Cursor, rec: Record) -> None:
    skip_white(cur, NO_MORE, "QUIT")


_REQUEST_PARSERS = {
    Command.OPEN: _rq_open,
    Command.CLOSE: _rq_close,
    Command.LOCKW: _rq_lock,
    Command.LOCK: _rq_lock,
    Command.UNLOCK: _rq_unlock,
    Command.TEST: _rq_lock,
    Command.LIST: _rq_list,
    Command.HOP: _rq_lock,
    Command.UNHOP: _rq_unlock,
    Command.SEEK: _rq_seek,
    Command.READ: _rq_read,
    Command.WRITE: _rq_write,
    Command.COMMENT: _rq_string,
    Command.ALARM: _rq_alarm,
    Command.HELLO: _rq_string,
    Command.FORK: _rq_string,
    Command.QUIT: _rq_empty,
}  # type: Dict[Command, Callable[[Cursor, Record], None]]


# ---------------------------------------------------------------------------
# Response payloads
# ---------------------------------------------------------------------------

def _unexpected_status(rec: Record) -> GrammarError:
    return GrammarError("Unexpected Status", rec.status.name)


def _rs_ok(cur: Cursor, rec: Record) -> None:
    cmd = rec.command
    if cmd in tok.STRING_COMMANDS:
        rec.data = _string(cur)
    elif cmd in tok.RANGE_COMMANDS or cmd is Command.UNKNOWN:
        raise _unexpected_status(rec)
    elif cmd is Command.ALARM:
        rec.secs = integer(cur, NO_MORE, "Invalid alarm time")
    elif cmd is Command.QUIT:
        pass
    elif cmd is Command.OPEN:
        rec.fpos = _fpos(cur, MORE, wildcard=True)
        rec.fno = integer(cur, NO_MORE, "Invalid file number")
    elif cmd in (Command.CLOSE, Command.SEEK):
        rec.fpos = _fpos(cur, NO_MORE, wildcard=True)
    elif cmd is Command.WRITE:
        rec.fpos = _fpos(cur, MORE, wildcard=True)
        rec.length = integer(cur, NO_MORE, "Invalid length")
    elif cmd is Command.READ:
        rec.fpos = _fpos(cur, MORE, wildcard=True)
        rec.length = integer(cur, MORE, "Invalid length")
        rec.data = _string(cur)
        if rec.data != "*" and rec.length not in (tok.WILDCARD,
                                                  len(rec.data)):
            raise GrammarError("Read length doesn't match",
                               "{} != {}".format(rec.length, len(rec.data)))


def _rs_lock(cur: Cursor, rec: Record) -> None:
    rec.fpos = _fpos(cur, MORE, wildcard=True)
    if rec.command is not Command.LIST:
        rec.lock_type = _lock_type(cur)
    _range(cur, rec)


def _rs_conflict(cur: Cursor, rec: Record) -> None:
    rec.fpos = _fpos(cur, MORE, wildcard=True)
    rec.pid = integer(cur, MORE, "Invalid conflict pid")
    rec.lock_type = _lock_type(cur)
    _range(cur, rec)


def _rs_canceled(cur: Cursor, rec: Record) -> None:
    if rec.command is Command.LOCKW:
        _rs_lock(cur, rec)
    elif rec.command is Command.ALARM:
        rec.secs = integer(cur, NO_MORE, "Invalid alarm time")
    else:
        raise _unexpected_status(rec)


def _rs_none(cur: Cursor, rec: Record) -> None:
    pass


def _rs_errno(cur: Cursor, rec: Record) -> None:
    rec.errno = integer(cur, MORE, "Invalid errno")
    rec.data = cur.rest().rstrip()
    cur.pos = len(cur.line)


def _rs_text(cur: Cursor, rec: Record) -> None:
    rec.data = cur.rest().rstrip()
    cur.pos = len(cur.line)


_RESPONSE_PARSERS = {
    Status.OK: _rs_ok,
    Status.AVAILABLE: _rs_lock,
    Status.GRANTED: _rs_lock,
    Status.DENIED: _rs_lock,
    Status.DEADLOCK: _rs_lock,
    Status.CONFLICT: _rs_conflict,
    Status.CANCELED: _rs_canceled,
    Status.COMPLETED: _rs_none,
    Status.ERRNO: _rs_errno,
    Status.PARSE_ERROR: _rs_text,
    Status.ERROR: _rs_text,
}  # type: Dict[Status, Callable[[Cursor, Record], None]]


def _status(cur: Cursor, rec: Record) -> Status:
    status = token_value(cur, tok.STATUSES, EITHER, "Invalid status")
    rec.status = status
    if status is Status.COMPLETED or (
            rec.command is Command.QUIT and status is Status.OK):
        requires = NO_MORE
    elif status in (Status.PARSE_ERROR, Status.ERROR):
        requires = EITHER
    else:
        requires = MORE
    skip_white(cur, requires, "status")
    return status


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

def _plain_tag(text: str) -> int:
    if text == "*":
        return tok.WILDCARD
    try:
        return parse_number(text)
    except ValueError:
        raise GrammarError("Invalid tag", text)


def _request_tag(cur: Cursor, correlator: Optional[TagCorrelator]):
    """Consume a request tag.

    Returns ``(tag, mint_slot)``: *mint_slot* is None for a literal tag,
    "" for a bare ``$`` and the slot letter for ``$x``.  Minting is left
    to the caller so that a failed parse does not disturb the counter.
    """
    text = next_token(cur, MORE, "Invalid tag")
    if text.startswith("$"):
        letter = text[1:]
        if letter:
            _check_slot(letter, text)
        _require(correlator, text)
        return tok.WILDCARD, letter
    if len(text) == 1 and text.islower():
        _check_slot(text, text)
        _require(correlator, text)
        return correlator.load(text), None
    return _plain_tag(text), None


def _response_tag(cur: Cursor, correlator: Optional[TagCorrelator]) -> int:
    text = next_token(cur, MORE, "Invalid tag")
    if text.startswith("$"):
        _require(correlator, text)
        letter = text[1:]
        if not letter:
            return correlator.next(advance=False)
        _check_slot(letter, text)
        return correlator.load(letter)
    return _plain_tag(text)


def _check_slot(letter: str, text: str) -> None:
    try:
        TagCorrelator.slot_index(letter)
    except ValueError:
        raise GrammarError("Invalid tag", text)


def _require(correlator, text: str) -> None:
    if correlator is None:
        raise GrammarError("Tag reference needs a correlator", text)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def _failure(rec: Record, exc: GrammarError) -> ParseError:
    """Turn *rec* into a PARSE_ERROR diagnostic and wrap it."""
    rec.data = '{} {} ERRNO {} "{}" "{}" bad token "{}"'.format(
        rec.command.name, rec.tag, exc.errno, os.strerror(exc.errno),
        exc.detail, exc.token)
    rec.status = Status.PARSE_ERROR
    rec.errno = exc.errno
    rec.command = Command.UNKNOWN
    return ParseError(rec, exc.detail, exc.token, exc.errno)


def parse_request(line: str, correlator: Optional[TagCorrelator] = None,
                  tagged: bool = True,
                  lineno: Optional[int] = None) -> Record:
    """Parse a request line into a Record.

    With *tagged* false the line starts at the command and a tag is
    minted from *correlator*.  Raises ParseError.
    """
    rec = Record(original=line)
    cur = Cursor(line)
    mint = None  # type: Optional[str]
    try:
        if tagged:
            rec.tag, mint = _request_tag(cur, correlator)
        else:
            _require(correlator, line)
            mint = ""
        rec.command = _command(cur)
        _REQUEST_PARSERS[rec.command](cur, rec)
    except GrammarError as e:
        raise _failure(rec, e)

    if mint is not None:
        rec.tag = correlator.mint(mint or None, lineno)
    return rec


def parse_response(line: str,
                   correlator: Optional[TagCorrelator] = None) -> Record:
    """Parse a response (or expected response) line into a Record.

    Raises ParseError.
    """
    rec = Record(original=line)
    cur = Cursor(line)
    try:
        rec.tag = _response_tag(cur, correlator)
        rec.command = _command(cur, allow_unknown=True)
        _RESPONSE_PARSERS[_status(cur, rec)](cur, rec)
    except GrammarError as e:
        raise _failure(rec, e)
    return rec
