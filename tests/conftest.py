"""Shared fixtures and helpers for multilock tests.

No real lock responder is needed: every client the harness connects is
backed by a FakeTarget, a thread serving the far end of a socketpair.
Each FakeTarget answers requests through a handler function that maps a
request line to the response lines to send back.

Usage:
    pytest tests/ -v
"""

import io
import os
import socket
import sys
import threading

import pytest

# Add the client library to the path so tests can import multilock
_client_dir = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
    "client",
)
if _client_dir not in sys.path:
    sys.path.insert(0, _client_dir)

from multilock import Harness, Reporter, Settings, parse_request
from multilock.colors import ColorWriter
from multilock.protocol import ENCODING, Transport
from multilock.tokens import Command, lock_type_name


# ---------------------------------------------------------------------------
# Canned responder
# ---------------------------------------------------------------------------

def default_reply(line):
    """Answer a request line the way a cooperative responder would.

    Every lock is granted at once, except LOCKW which is never answered
    (tests decide when its completion arrives).
    """
    rec = parse_request(line)
    tag, cmd = rec.tag, rec.command
    name = cmd.name
    if cmd in (Command.HELLO, Command.COMMENT, Command.FORK):
        return ['{} {} OK "{}"'.format(tag, name, rec.data)]
    if cmd is Command.LOCKW:
        return []
    if cmd in (Command.LOCK, Command.TEST, Command.HOP):
        return ["{} {} GRANTED {} {} {} {}".format(
            tag, name, rec.fpos, lock_type_name(rec.lock_type),
            rec.start, rec.length)]
    if cmd in (Command.UNLOCK, Command.UNHOP):
        return ["{} {} GRANTED {} unlock {} {}".format(
            tag, name, rec.fpos, rec.start, rec.length)]
    if cmd is Command.LIST:
        return ["{} LIST AVAILABLE {} {} {}".format(
            tag, rec.fpos, rec.start, rec.length)]
    if cmd is Command.OPEN:
        return ["{} OPEN OK {} 3".format(tag, rec.fpos)]
    if cmd in (Command.CLOSE, Command.SEEK):
        return ["{} {} OK {}".format(tag, name, rec.fpos)]
    if cmd is Command.WRITE:
        return ["{} WRITE OK {} {}".format(tag, rec.fpos, rec.length)]
    if cmd is Command.READ:
        return ['{} READ OK {} 0 ""'.format(tag, rec.fpos)]
    if cmd is Command.ALARM:
        return ["{} ALARM OK {}".format(tag, rec.secs)]
    if cmd is Command.QUIT:
        return ["{} QUIT OK".format(tag)]
    return ["{} {} ERROR unsupported".format(tag, name)]


def replies(table, fallback=default_reply):
    """Build a handler that answers by request text, else *fallback*.

    *table* maps the command-and-payload part of a request (the text
    after the tag) to a list of lines, or to a callable producing them.
    """
    def handler(line):
        _, _, body = line.partition(" ")
        if body in table:
            answer = table[body]
            return answer(line) if callable(answer) else list(answer)
        return fallback(line)
    return handler


class FakeTarget:
    """A lock responder stand-in on the far end of a socketpair."""

    def __init__(self, name, handler=default_reply):
        self.name = name
        self.handler = handler
        self.requests = []
        ours, theirs = socket.socketpair()
        self.transport = Transport(ours, name)
        self._sock = theirs
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        reader = self._sock.makefile("r", encoding=ENCODING, newline="\n")
        try:
            for raw in reader:
                line = raw.rstrip("\n")
                self.requests.append(line)
                for answer in self.handler(line):
                    self._sock.sendall((answer + "\n").encode(ENCODING))
        except OSError:
            pass
        finally:
            reader.close()
            self._sock.close()

    def send(self, line):
        """Push an unsolicited line to the harness."""
        self._sock.sendall((line + "\n").encode(ENCODING))

    def join(self, timeout=5):
        self._thread.join(timeout)


class FakeNetwork:
    """Connect factory handing out one FakeTarget per client name.

    Names listed in *refuse* fail to connect.
    """

    def __init__(self, handlers=None, refuse=()):
        self.handlers = dict(handlers or {})
        self.refuse = set(refuse)
        self.targets = {}
        self._lock = threading.Lock()

    def __call__(self, name):
        if name in self.refuse:
            raise ConnectionRefusedError("refused {}".format(name))
        target = FakeTarget(name, self.handlers.get(name, default_reply))
        with self._lock:
            self.targets[name] = target
        return target.transport


def write_lock(tag, fpos=0, start=0, length=10, status="GRANTED"):
    """A LOCKW completion line for a write lock."""
    return "{} LOCKW {} {} write {} {}".format(
        tag, status, fpos, start, length)


# ---------------------------------------------------------------------------
# Harness fixture
# ---------------------------------------------------------------------------

class HarnessKit:
    """A Harness wired to a FakeNetwork and in-memory report streams."""

    def __init__(self, handlers=None, refuse=(), **settings):
        settings.setdefault("drain_timeout", 0.5)
        self.settings = Settings(**settings)
        self.out = io.StringIO()
        self.err = io.StringIO()
        self.reporter = Reporter(self.settings, self.out, self.err,
                                 ColorWriter(force_color=False))
        self.network = FakeNetwork(handlers, refuse)
        self.harness = Harness(self.network, self.settings, self.reporter)

    def run(self, text):
        """Run a script given as one string; return the failure count."""
        return self.harness.run_script(io.StringIO(text))

    @property
    def output(self):
        return self.out.getvalue()

    @property
    def errors(self):
        return self.err.getvalue()


@pytest.fixture
def kit():
    """Factory fixture: ``kit(handlers=..., strict=True)``."""
    made = []

    def factory(handlers=None, refuse=(), **settings):
        k = HarnessKit(handlers, refuse, **settings)
        made.append(k)
        return k

    yield factory
    for k in made:
        k.harness.close()
