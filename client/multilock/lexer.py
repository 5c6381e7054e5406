"""Tokenizer for multilock protocol lines.

A Cursor walks a single line.  Fields are runs of characters delimited
by blanks or tabs; a ``#`` anywhere outside a quoted string ends the
effective line.  Every extraction takes a Requires constraint that is
checked against what is left once the field has been consumed.
"""

import enum
import errno
import string
from typing import Optional, Sequence

from . import tokens as tok
from .exceptions import MultilockError
from .tokens import Token


class GrammarError(MultilockError):
    """Raised when a line does not follow the protocol grammar.

    Attributes:
        detail: Human-readable description of what was expected.
        token: The offending text (``<NULL>`` when the line ended early).
        errno: Error number reported alongside the diagnostic.
    """

    def __init__(self, detail: str, token: str,
                 err: int = errno.EINVAL) -> None:
        self.detail = detail
        self.token = token
        self.errno = err
        super().__init__("{} (bad token {!r})".format(detail, token))


class Requires(enum.Enum):
    MORE = "more"
    NO_MORE = "no more"
    EITHER = "either"


_BLANKS = " \t"
_DELIMS = " \t#"


class Cursor:
    """Position within a protocol line."""

    def __init__(self, line: str, pos: int = 0) -> None:
        self.line = line
        self.pos = pos

    def __repr__(self) -> str:
        return "Cursor({!r}, pos={})".format(self.line, self.pos)

    @property
    def char(self) -> str:
        """Character under the cursor, or "" at the end of the line."""
        if self.pos < len(self.line):
            return self.line[self.pos]
        return ""

    def rest(self) -> str:
        return self.line[self.pos:]

    def at_end(self) -> bool:
        """True when only a comment (or nothing) remains."""
        c = self.char
        return c == "" or c == "#"


def skip_white(cur: Cursor, requires: Requires, who: str) -> Cursor:
    """Skip blanks and tabs, then enforce *requires*."""
    line = cur.line
    pos = cur.pos
    while pos < len(line) and line[pos] in _BLANKS:
        pos += 1
    cur.pos = pos

    if requires is Requires.MORE and cur.at_end():
        raise GrammarError(
            "Expected more characters on command {}".format(who),
            cur.rest() or "<NULL>")
    if requires is Requires.NO_MORE and not cur.at_end():
        raise GrammarError(
            "Extra characters on command {}".format(who), cur.rest())
    return cur


def _scan(cur: Cursor) -> int:
    end = cur.pos
    line = cur.line
    while end < len(line) and line[end] not in _DELIMS:
        end += 1
    return end


def peek_token(cur: Cursor) -> Optional[str]:
    """Return the next token without consuming it (None at end of line)."""
    ahead = Cursor(cur.line, cur.pos)
    skip_white(ahead, Requires.EITHER, "")
    if ahead.at_end():
        return None
    return ahead.line[ahead.pos:_scan(ahead)]


def next_token(cur: Cursor, requires: Requires, invalid: str) -> str:
    """Consume a required token and enforce *requires* on what follows."""
    skip_white(cur, Requires.MORE, invalid)
    end = _scan(cur)
    text = cur.line[cur.pos:end]
    cur.pos = end
    skip_white(cur, requires, invalid)
    return text


def token_value(cur: Cursor, tokens: Sequence[Token],
                requires: Requires, invalid: str):
    """Consume a token that must be one of *tokens*; return its value."""
    skip_white(cur, Requires.MORE, invalid)
    end = _scan(cur)
    text = cur.line[cur.pos:end]
    entry = tok.lookup(tokens, text)
    if entry is None:
        raise GrammarError(invalid, text)
    cur.pos = end
    skip_white(cur, requires, invalid)
    return entry.value


def optional_token_value(cur: Cursor, tokens: Sequence[Token],
                         requires: Requires, invalid: str):
    """Consume the next token only if it is one of *tokens*.

    When the next token is absent or not a keyword of the table the
    cursor is left where it was and the table default is returned, so a
    following required field is never mistaken for the optional one.
    """
    text = peek_token(cur)
    entry = tok.lookup(tokens, text) if text is not None else None
    if entry is None:
        return tok.default(tokens)
    next_token(cur, requires, invalid)
    return entry.value


def optional_keyword(cur: Cursor, keyword: str,
                     requires: Requires, invalid: str) -> bool:
    """Consume *keyword* if it is the next token; report whether it was."""
    text = peek_token(cur)
    if text is None or text.lower() != keyword.lower():
        return False
    next_token(cur, requires, invalid)
    return True


def parse_number(text: str) -> int:
    """Convert *text* the way strtol with base 0 does.

    Accepts an optional sign, ``0x`` hexadecimal and leading-zero octal.
    Raises ValueError on anything else.
    """
    body = text
    sign = 1
    if body[:1] in ("+", "-"):
        if body[0] == "-":
            sign = -1
        body = body[1:]
    if not body or body[0] in "+-":
        raise ValueError(text)
    lowered = body.lower()
    if lowered.startswith("0x"):
        digits, base, allowed = lowered[2:], 16, string.hexdigits
    elif len(body) > 1 and body[0] == "0":
        digits, base, allowed = body[1:], 8, string.octdigits
    else:
        digits, base, allowed = body, 10, string.digits
    # int() would also take underscores and non-ASCII digits.
    if not digits or any(c not in allowed for c in digits):
        raise ValueError(text)
    return sign * int(digits, base)


def integer(cur: Cursor, requires: Requires, invalid: str) -> int:
    """Consume a numeric field; ``*`` yields the wildcard value."""
    text = next_token(cur, requires, invalid)
    if text == "*":
        return tok.WILDCARD
    try:
        return parse_number(text)
    except ValueError:
        raise GrammarError(invalid, text)


def quoted_string(cur: Cursor, maximum: int, requires: Requires,
                  who: str) -> str:
    """Consume a double-quoted string of at most *maximum* characters.

    When nothing may follow, unquoted text running to the end of the line
    (or comment) is accepted as well.
    """
    skip_white(cur, Requires.MORE, who)
    line = cur.line
    start = cur.pos

    if cur.char == '"':
        close = line.find('"', start + 1)
        if close < 0:
            raise GrammarError("Unterminated string", line[start:])
        text = line[start + 1:close]
        after = close + 1
    elif requires is Requires.NO_MORE:
        hash_at = line.find("#", start)
        after = len(line) if hash_at < 0 else hash_at
        text = line[start:after].rstrip(_BLANKS)
        if '"' in text:
            raise GrammarError("Quote inside unquoted string", text)
    else:
        raise GrammarError("Expected string", line[start:])

    if len(text) > maximum:
        raise GrammarError(
            "String length {} longer than {}".format(len(text), maximum),
            line[start:])
    try:
        text.encode(tok.ENCODING)
    except UnicodeEncodeError:
        raise GrammarError("String not representable in " + tok.ENCODING,
                           text)

    cur.pos = after
    skip_white(cur, requires, who)
    return text
