"""Record -> line conversion, the inverse of the parser.

Output always uses the canonical keyword spellings, never whatever alias
the original input used, and never exceeds ``limit - 1`` characters.
Lines are returned without the trailing newline.
"""

from typing import List, Optional

from . import tokens as tok
from .record import Record
from .tokens import Command, DEFAULT_OPEN_MODE, Status


def _quote(text: str) -> str:
    return '"{}"'.format(text)


def _fit(parts: List[str], limit: int) -> str:
    line = " ".join(str(p) for p in parts)
    return line[:max(limit - 1, 0)]


def _lead(lead: Optional[str], rec: Record) -> List[str]:
    if lead is None:
        return []
    return [lead, rec.client_name]


def _lock_range(rec: Record, with_type: bool = True) -> List[str]:
    parts = [rec.fpos]
    if with_type:
        parts.append(tok.lock_type_name(rec.lock_type))
    parts.extend([rec.start, rec.length])
    return parts


def _request_payload(rec: Record) -> List[str]:
    cmd = rec.command
    if cmd in tok.STRING_COMMANDS:
        return [_quote(rec.data)]
    if cmd in tok.LOCK_COMMANDS:
        return _lock_range(rec)
    if cmd in (Command.UNLOCK, Command.LIST, Command.UNHOP):
        return _lock_range(rec, with_type=False)
    if cmd is Command.ALARM:
        return [rec.secs]
    if cmd is Command.QUIT:
        return []
    if cmd is Command.OPEN:
        parts = [rec.fpos, tok.read_write_name(rec.flags)]
        parts.extend(tok.open_flag_names(rec.flags))
        if rec.mode != DEFAULT_OPEN_MODE:
            parts.extend(["mode", "0{:o}".format(rec.mode)])
        parts.append(tok.lock_mode_name(rec.lock_mode))
        parts.append(_quote(rec.data))
        return parts
    if cmd is Command.CLOSE:
        return [rec.fpos]
    if cmd is Command.SEEK:
        return [rec.fpos, rec.start]
    if cmd is Command.WRITE:
        return [rec.fpos, _quote(rec.data)]
    if cmd is Command.READ:
        if rec.data:
            return [rec.fpos, _quote(rec.data)]
        return [rec.fpos, rec.length]
    return ["Unexpected Command"]


def format_request(rec: Record, lead: Optional[str] = None,
                   limit: int = tok.MAX_XFER) -> str:
    """Serialize a request Record.

    *lead*, when given, prefixes the line with ``<lead> <client-name>``
    for reports.
    """
    parts = _lead(lead, rec)
    parts.extend([rec.tag, rec.command.name])
    parts.extend(_request_payload(rec))
    return _fit(parts, limit)


def _ok_payload(rec: Record) -> List[str]:
    cmd = rec.command
    if cmd in tok.STRING_COMMANDS:
        return [_quote(rec.data)]
    if cmd in tok.RANGE_COMMANDS or cmd is Command.UNKNOWN:
        return ["Unexpected Status"]
    if cmd is Command.ALARM:
        return [rec.secs]
    if cmd is Command.QUIT:
        return []
    if cmd is Command.OPEN:
        return [rec.fpos, rec.fno]
    if cmd in (Command.CLOSE, Command.SEEK):
        return [rec.fpos]
    if cmd is Command.WRITE:
        return [rec.fpos, rec.length]
    if cmd is Command.READ:
        return [rec.fpos, rec.length, _quote(rec.data)]
    return []


def _response_payload(rec: Record) -> List[str]:
    status = rec.status
    if status is None:
        return []
    if status is Status.OK:
        return _ok_payload(rec)
    if status in (Status.AVAILABLE, Status.GRANTED, Status.DENIED,
                  Status.DEADLOCK):
        return _lock_range(rec, with_type=rec.command is not Command.LIST)
    if status is Status.CONFLICT:
        return [rec.fpos, rec.pid, tok.lock_type_name(rec.lock_type),
                rec.start, rec.length]
    if status is Status.CANCELED:
        if rec.command is Command.LOCKW:
            return _lock_range(rec)
        if rec.command is Command.ALARM:
            return [rec.secs]
        return []
    if status is Status.ERRNO:
        # The detail is mandatory on the wire.
        return [rec.errno, rec.data or _quote("")]
    if rec.data:
        return [rec.data]
    return []


def format_response(rec: Record, lead: Optional[str] = None,
                    limit: int = tok.MAX_XFER) -> str:
    """Serialize a response Record.

    A relaxed expectation (no status) is written with ``*`` in the
    status position.
    """
    parts = _lead(lead, rec)
    status = rec.status.name if rec.status is not None else "*"
    parts.extend([rec.tag, rec.command.name, status])
    parts.extend(_response_payload(rec))
    return _fit(parts, limit)
