"""Unit tests for Record serialization."""

import fcntl
import os

import pytest

from multilock import (
    ParseError, Record, format_request, format_response, parse_request,
    parse_response,
)
from multilock import tokens as tok
from multilock.tokens import Command, LockMode, Status


class TestFormatRequest:
    """Requests come out in canonical spelling."""

    def test_lock_canonical_type(self):
        rec = parse_request("7 lockw 1 exclusive 0 10")
        assert format_request(rec) == "7 LOCKW 1 write 0 10"

    def test_unlock_and_list(self):
        assert format_request(parse_request("3 UNLOCK 1 0 0")) == \
            "3 UNLOCK 1 0 0"
        assert format_request(parse_request("3 LIST 2 5 9")) == \
            "3 LIST 2 5 9"

    def test_open_default_mode_omitted(self):
        rec = parse_request("1 OPEN 1 O_RDWR O_CREAT /tmp/a")
        assert format_request(rec) == '1 OPEN 1 rw create POSIX "/tmp/a"'

    def test_open_mode_written_in_octal(self):
        rec = Record(Command.OPEN, tag=2, fpos=3,
                     flags=os.O_WRONLY | os.O_TRUNC, mode=0o644,
                     lock_mode=LockMode.OFD, data="/x")
        assert format_request(rec) == \
            '2 OPEN 3 wo truncate mode 0644 OFD "/x"'

    def test_write_data_quoted(self):
        rec = parse_request('4 WRITE 1 "two words"')
        assert format_request(rec) == '4 WRITE 1 "two words"'

    def test_misc(self):
        assert format_request(parse_request("1 READ 2 30")) == "1 READ 2 30"
        assert format_request(parse_request("1 SEEK 2 30")) == "1 SEEK 2 30"
        assert format_request(parse_request("1 ALARM 9")) == "1 ALARM 9"
        assert format_request(parse_request("1 QUIT")) == "1 QUIT"
        assert format_request(parse_request("1 COMMENT hi")) == \
            '1 COMMENT "hi"'

    def test_read_string_form_kept(self):
        rec = parse_request('1 READ 2 "abc"')
        assert format_request(rec) == '1 READ 2 "abc"'

    def test_reparse_is_stable(self):
        line = '9 OPEN 4 rw create exclusive mode 0640 OFD "/tmp/z"'
        once = format_request(parse_request(line))
        assert format_request(parse_request(once)) == once
        assert parse_request(once) == parse_request(line)

    def test_lead(self):
        rec = parse_request("1 CLOSE 2")
        assert format_request(rec, lead="SEND") == "SEND <NULL> 1 CLOSE 2"


class TestFormatResponse:
    """Responses, expectations and diagnostics."""

    def test_granted(self):
        rec = parse_response("1 LOCK GRANTED 1 F_RDLCK 0 5")
        assert format_response(rec) == "1 LOCK GRANTED 1 read 0 5"

    def test_list_available(self):
        rec = Record(Command.LIST, tag=2, status=Status.AVAILABLE,
                     fpos=1, lock_type=fcntl.F_WRLCK, start=0, length=4)
        assert format_response(rec) == "2 LIST AVAILABLE 1 0 4"

    def test_conflict(self):
        rec = parse_response("3 TEST CONFLICT 1 99 write 0 5")
        assert format_response(rec) == "3 TEST CONFLICT 1 99 write 0 5"

    def test_relaxed_status(self):
        rec = Record(Command.CLOSE, tag=4, status=None)
        assert format_response(rec) == "4 CLOSE *"

    def test_errno(self):
        rec = parse_response('5 OPEN ERRNO 2 "No such file"')
        assert format_response(rec) == '5 OPEN ERRNO 2 "No such file"'

    def test_read_ok(self):
        rec = parse_response('6 READ OK 1 2 "hi"')
        assert format_response(rec) == '6 READ OK 1 2 "hi"'

    def test_wildcards_kept(self):
        rec = parse_response("* LOCKW DENIED * * 0 *")
        assert format_response(rec) == "-1 LOCKW DENIED -1 * 0 -1"

    def test_parse_error_record(self):
        with pytest.raises(ParseError) as exc_info:
            parse_request("8 LOCK 1 sideways 0 10")
        line = format_response(exc_info.value.record)
        assert line.startswith("8 UNKNOWN PARSE_ERROR LOCK 8 ERRNO ")
        assert line.endswith('bad token "sideways"')
        # Diagnostics read back as UNKNOWN error responses.
        assert parse_response(line).status is Status.PARSE_ERROR

    def test_truncated_to_limit(self):
        rec = Record(Command.COMMENT, tag=1, status=Status.OK,
                     data="x" * (tok.MAX_STR))
        assert len(format_response(rec, limit=50)) == 49
        assert len(format_response(rec)) < tok.MAX_XFER

    def test_errno_without_detail(self):
        rec = Record(Command.OPEN, tag=5, status=Status.ERRNO, errno=2)
        line = format_response(rec)
        assert line == '5 OPEN ERRNO 2 ""'
        assert parse_response(line).errno == 2


# ---------------------------------------------------------------------------
# Parse / format round trip
# ---------------------------------------------------------------------------

REQUEST_LINES = [
    '1 OPEN 2 rw create exclusive mode 0644 OFD "/tmp/f"',
    '1 OPEN 1 ro "/tmp/x"',
    "2 CLOSE 3",
    "3 LOCKW 1 write 0 10",
    "3 LOCK 100 read 5 4096",
    "3 TEST 1 write 0 0",
    "3 HOP 1 read 0 1",
    "4 UNLOCK 1 0 10",
    "4 UNHOP 1 0 10",
    "4 LIST 1 0 100",
    "5 SEEK 1 64",
    "6 READ 1 20",
    '6 READ 2 "abc"',
    "7 WRITE 1 some data",
    '7 WRITE 1 "a # b"',
    '8 COMMENT "a comment"',
    "9 ALARM 5",
    '10 HELLO "c1"',
    '11 FORK "child"',
    "12 QUIT",
]

RESPONSE_LINES = [
    "1 OPEN OK 2 7",
    "1 CLOSE OK 2",
    "1 SEEK OK 2",
    "1 WRITE OK 1 5",
    '1 READ OK 1 3 "abc"',
    "1 ALARM OK 3",
    '1 HELLO OK "c1"',
    '1 COMMENT OK "x"',
    '1 FORK OK "child"',
    "1 QUIT OK",
    "2 LOCK GRANTED 1 write 0 10",
    "2 LOCKW DENIED 1 read 0 10",
    "2 LOCKW DEADLOCK 1 write 0 10",
    "2 HOP GRANTED 1 read 0 1",
    "2 UNLOCK GRANTED 1 unlock 0 10",
    "3 LIST AVAILABLE 1 0 100",
    "3 LIST COMPLETED",
    "4 TEST CONFLICT 1 4242 read 0 5",
    "5 LOCKW CANCELED 1 write 0 10",
    "5 ALARM CANCELED 2",
    '6 OPEN ERRNO 2 "No such file or directory"',
    "7 UNKNOWN ERROR something went wrong",
    "7 LOCK ERROR bad thing",
]


class TestRoundTrip:
    """Formatting a parsed line and parsing it again changes nothing."""

    @pytest.mark.parametrize("line", REQUEST_LINES)
    def test_request(self, line):
        rec = parse_request(line)
        assert parse_request(format_request(rec)) == rec

    @pytest.mark.parametrize("line", RESPONSE_LINES)
    def test_response(self, line):
        rec = parse_response(line)
        assert parse_response(format_response(rec)) == rec

    def test_parse_error_diagnostic(self):
        with pytest.raises(ParseError) as exc_info:
            parse_request("1 LOCK 100 sideways 0 10")
        line = format_response(exc_info.value.record)
        assert format_response(parse_response(line)) == line
