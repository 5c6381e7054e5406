"""Script-driven orchestration of simulated lock clients.

A script is a sequence of lines, one directive each:

    <client> <tag> <COMMAND> <args>   send a request
    EXPECT <client> <response>        expected response
    {  ...  }                         fragment run by a FORK actor
    SLEEP <secs>                      pause this actor
    QUIET|STRICT|FATAL [on|off]       harness settings

EXPECT lines directly after a request declare what that request must
produce; elsewhere they are awaited on their own.  Blocking locks
(LOCKW) never wait inline: their expectations join the pending list and
are reconciled whenever a line is read from that client.

Usage::

    harness = Harness(lambda name: connect_tcp("lockhost", 7000, name))
    failures = harness.run_script(open("test.ml"))
"""

import sys
import threading
import time
from collections import namedtuple
from typing import Callable, Iterable, List, Optional

from . import tokens as tok
from .clients import Client, ClientRegistry
from .colors import ColorWriter, format_outcome
from .correlator import TagCorrelator
from .exceptions import (
    ClientNotFoundError, FatalFailure, MultilockError, ParseError,
    ScriptError,
)
from .lexer import (
    Cursor, GrammarError, Requires, integer, optional_token_value,
)
from .oracle import PendingList, compare
from .parser import parse_request, parse_response
from .protocol import ProtocolError, Transport, TransportTimeout
from .record import Record
from .serializer import format_request, format_response
from .tokens import Command, Status

ScriptLine = namedtuple("ScriptLine", ["lineno", "text"])

# Statuses that end a LIST reply.
_LIST_FINAL = frozenset([Status.AVAILABLE, Status.COMPLETED])

_SETTINGS = ("QUIET", "STRICT", "FATAL")


def load_script(lines: Iterable[str]) -> List[ScriptLine]:
    """Number *lines* from 1 and drop blank and comment-only lines."""
    script = []
    for lineno, raw in enumerate(lines, 1):
        text = raw.rstrip("\r\n")
        stripped = text.strip()
        if not stripped or stripped.startswith("#"):
            continue
        script.append(ScriptLine(lineno, text))
    return script


def split_first(text: str):
    """Split *text* into its first word and the rest."""
    parts = text.strip().split(None, 1)
    if not parts:
        return "", ""
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[1]


class Settings:
    """Run-time switches, adjustable from scripts."""

    def __init__(self, quiet: bool = False, strict: bool = False,
                 fatal: bool = False, drain_timeout: float = 5.0,
                 replay: bool = True) -> None:
        self.quiet = quiet
        self.strict = strict
        self.fatal = fatal
        self.drain_timeout = drain_timeout
        self.replay = replay

    def __repr__(self) -> str:
        return ("Settings(quiet={}, strict={}, fatal={}, "
                "drain_timeout={})".format(self.quiet, self.strict,
                                           self.fatal, self.drain_timeout))


class Reporter:
    """Writes outcomes: passes to *out*, failures and errors to *err*."""

    def __init__(self, settings: Settings, out=None, err=None,
                 cw: Optional[ColorWriter] = None) -> None:
        self.settings = settings
        self.out = out if out is not None else sys.stdout
        self.err = err if err is not None else sys.stderr
        self.cw = cw if cw is not None else ColorWriter(stream=self.out)
        self.passes = 0
        self.failures = 0
        self.warnings = 0
        self._lock = threading.Lock()

    def _write(self, stream, kind, client, text, lineno):
        line = format_outcome(kind, client, text, self.cw, lineno)
        with self._lock:
            stream.write(line + "\n")
            stream.flush()

    def info(self, client: str, text: str, lineno: int = 0) -> None:
        if not self.settings.quiet:
            self._write(self.out, "info", client, text, lineno)

    def sent(self, client: str, line: str, lineno: int = 0) -> None:
        if not self.settings.quiet:
            self._write(self.out, "send", client, line, lineno)

    def passed(self, client: str, line: str, lineno: int = 0) -> None:
        with self._lock:
            self.passes += 1
        if not self.settings.quiet:
            self._write(self.out, "pass", client, line, lineno)

    def canceled(self, client: str, line: str, lineno: int = 0) -> None:
        if not self.settings.quiet:
            self._write(self.out, "cancel", client, line, lineno)

    def warned(self, client: str, text: str, lineno: int = 0) -> None:
        with self._lock:
            self.warnings += 1
        self._write(self.err, "warn", client, text, lineno)

    def error_status(self, client: str, line: str, lineno: int = 0) -> None:
        self._write(self.err, "error", client, line, lineno)

    def failed(self, client: str, text: str, lineno: int = 0) -> None:
        with self._lock:
            self.failures += 1
        self._write(self.err, "fail", client, text, lineno)

    def summary(self) -> str:
        return "{} passed, {} failed, {} warnings".format(
            self.passes, self.failures, self.warnings)


class Harness:
    """Drives simulated clients against lock targets and checks replies.

    Args:
        connect: Factory called with a client name when HELLO first
            names that client; returns the client's Transport.
        settings: Run-time switches (defaults to Settings()).
        reporter: Result sink (defaults to stdout/stderr).
    """

    def __init__(self, connect: Callable[[str], Transport],
                 settings: Optional[Settings] = None,
                 reporter: Optional[Reporter] = None,
                 registry: Optional[ClientRegistry] = None,
                 correlator: Optional[TagCorrelator] = None) -> None:
        self.connect = connect
        self.settings = settings if settings is not None else Settings()
        self.reporter = (reporter if reporter is not None
                         else Reporter(self.settings))
        self.registry = registry if registry is not None else ClientRegistry()
        self.correlator = (correlator if correlator is not None
                           else TagCorrelator(replay=self.settings.replay))
        self.pending = PendingList()
        self._actors = []  # type: List[threading.Thread]
        self._actor_errors = []  # type: List[BaseException]
        self._actor_lock = threading.Lock()

    # -- Failure plumbing --------------------------------------------------

    def _fail(self, client: str, text: str, lineno: int = 0) -> None:
        self.reporter.failed(client, text, lineno)
        if self.settings.fatal:
            raise FatalFailure(text)

    def _unexpected(self, client: Client, received: Record,
                    lineno: int) -> None:
        line = format_response(received)
        if self.settings.strict:
            self._fail(client.name, "Unexpected response: " + line, lineno)
        else:
            self.reporter.warned(client.name,
                                 "Unexpected response: " + line, lineno)

    # -- Script execution --------------------------------------------------

    def run_script(self, lines: Iterable[str]) -> int:
        """Run a whole script; return the number of failures.

        Forked actors are joined, pending expectations drained and every
        client disconnected before returning.
        """
        script = load_script(lines)
        try:
            self.run_fragment(script)
            self._join_actors()
            self.drain()
        finally:
            self.close()
        return self.reporter.failures

    def run_fragment(self, script: List[ScriptLine]) -> None:
        i = 0
        while i < len(script):
            lineno, text = script[i]
            i += 1
            word, rest = split_first(text)
            upper = word.upper()
            if upper in ("{", "}"):
                raise ScriptError("Unexpected {}".format(word), lineno)
            if upper == "EXPECT":
                self.guard(lineno, self.expect, rest, lineno)
                continue
            if upper == "SLEEP":
                self.guard(lineno, self.sleep, rest, lineno)
                continue
            if upper in _SETTINGS:
                self.setting(upper, rest, lineno)
                continue

            declared = []  # type: List[ScriptLine]
            while i < len(script):
                nxt_word, nxt_rest = split_first(script[i].text)
                if nxt_word.upper() != "EXPECT":
                    break
                declared.append(ScriptLine(script[i].lineno, nxt_rest))
                i += 1

            fragment = None
            if i < len(script) and script[i].text.strip() == "{":
                fragment, i = self._collect_fragment(script, i)

            self.guard(lineno, self.request, word, rest, lineno, declared,
                       fragment)

    @staticmethod
    def _collect_fragment(script: List[ScriptLine], i: int):
        """Return the lines between the ``{`` at *i* and its ``}``."""
        open_lineno = script[i].lineno
        depth = 0
        body = []
        while i < len(script):
            text = script[i].text.strip()
            if text == "{":
                depth += 1
                if depth > 1:
                    body.append(script[i])
            elif text == "}":
                depth -= 1
                if depth == 0:
                    return body, i + 1
                body.append(script[i])
            else:
                body.append(script[i])
            i += 1
        raise ScriptError("Unterminated fragment", open_lineno)

    def guard(self, lineno: int, func, *args) -> None:
        """Run one directive, turning per-line errors into failures.

        FatalFailure and ScriptError propagate.
        """
        try:
            func(*args)
        except ParseError as e:
            self._fail("-", format_response(e.record), lineno)
        except ClientNotFoundError as e:
            self._fail(e.name, str(e), lineno)
        except ProtocolError as e:
            self._fail("-", "Transport error: {}".format(e), lineno)

    def run_line(self, text: str, lineno: int = 0,
                 tagged: bool = True) -> None:
        """Execute a single interactive line (no declared expectations)."""
        word, rest = split_first(text)
        upper = word.upper()
        if not word or word.startswith("#"):
            return
        if upper == "EXPECT":
            self.guard(lineno, self.expect, rest, lineno)
        elif upper == "SLEEP":
            self.guard(lineno, self.sleep, rest, lineno)
        elif upper in _SETTINGS:
            self.setting(upper, rest, lineno)
        else:
            self.guard(lineno, self.request, word, rest, lineno, [], None,
                       tagged)

    # -- Directives --------------------------------------------------------

    def setting(self, name: str, rest: str, lineno: int) -> None:
        try:
            cur = Cursor(rest)
            value = optional_token_value(cur, tok.ON_OFF, Requires.NO_MORE,
                                         "Invalid on/off")
            if not cur.at_end():
                raise GrammarError("Invalid on/off", cur.rest())
        except GrammarError as e:
            raise ScriptError("{}: {!r}".format(e.detail, e.token), lineno)
        setattr(self.settings, name.lower(), value)

    def sleep(self, rest: str, lineno: int) -> None:
        try:
            secs = integer(Cursor(rest), Requires.NO_MORE, "Invalid secs")
        except GrammarError as e:
            raise ScriptError("{}: {!r}".format(e.detail, e.token), lineno)
        time.sleep(max(secs, 0))

    def request(self, client_name: str, text: str, lineno: int,
                declared: List[ScriptLine],
                fragment: Optional[List[ScriptLine]] = None,
                tagged: bool = True) -> None:
        """Send one request and settle its declared expectations."""
        req = parse_request(text, self.correlator, tagged=tagged,
                            lineno=lineno)
        if fragment is not None and req.command is not Command.FORK:
            raise ScriptError("Fragment must follow a FORK request", lineno)

        client = self._client_for(client_name, req, lineno)
        if client is None:
            return
        req.attach(client)
        expectations = []  # type: List[Record]
        try:
            for exp_lineno, exp_text in declared:
                exp_name, exp_rest = split_first(exp_text)
                if exp_name != client_name:
                    raise ScriptError(
                        "EXPECT for {} after request to {}".format(
                            exp_name, client_name), exp_lineno)
                try:
                    exp = parse_response(exp_rest, self.correlator)
                except ParseError as e:
                    self._fail(client_name, format_response(e.record),
                               exp_lineno)
                    continue
                expectations.append(exp.attach(client))
            if not expectations:
                expectations.append(self._implicit(req).attach(client))

            line = format_request(req)
            client.transport.send_line(line)
            self.reporter.sent(client.name, line, lineno)

            if req.command is Command.LOCKW:
                while expectations:
                    self.pending.add(expectations.pop(0))
                return

            self.await_replies(client, expectations, lineno)
        except ProtocolError as e:
            self._lost(client, e, lineno)
            return
        finally:
            for exp in expectations:
                exp.release()
            req.release()

        self._after_reply(client, req, lineno, fragment)

    def _client_for(self, name: str, req: Record,
                    lineno: int) -> Optional[Client]:
        """Resolve the destination client; HELLO may create and connect."""
        hello = req.command is Command.HELLO
        client, created = self.registry.resolve(name, create=hello)
        if created:
            self.reporter.info(name, "Created client {}".format(name), lineno)
        if client.connected:
            return client
        if not hello:
            self._fail(name, "Client {} is not connected".format(name),
                       lineno)
            return None
        try:
            client.transport = self.connect(name)
        except (OSError, ProtocolError) as e:
            if created:
                self.registry.discard(name)
            self._fail(name, "Could not connect client {}: {}".format(
                name, e), lineno)
            return None
        client.connected = True
        client.acquire()
        return client

    @staticmethod
    def _implicit(req: Record) -> Record:
        """Relaxed expectation: same command and tag, any good status."""
        exp = Record(req.command, tag=req.tag, status=None)
        if req.command is Command.LOCKW:
            exp.fpos = req.fpos
            exp.lock_type = req.lock_type
            exp.start = req.start
            exp.length = req.length
        return exp

    def _after_reply(self, client: Client, req: Record, lineno: int,
                     fragment: Optional[List[ScriptLine]]) -> None:
        if req.command is Command.ALARM:
            if req.secs > 0:
                client.alarm_deadline = time.monotonic() + req.secs
            else:
                client.alarm_deadline = None
        elif req.command is Command.QUIT:
            self.disconnect(client)
        elif req.command is Command.FORK and fragment is not None:
            self.fork(fragment)

    def expect(self, text: str, lineno: int) -> None:
        """Register a standalone expectation and wait until it is met."""
        name, rest = split_first(text)
        client, _ = self.registry.resolve(name)
        exp = parse_response(rest, self.correlator)
        exp.attach(client)
        handle = self.pending.replace_relaxed(exp)
        if not client.connected:
            self.pending.remove(handle)
            exp.release()
            self._fail(name, "Client {} is not connected".format(name),
                       lineno)
            return

        try:
            while self.pending.get(handle) is not None:
                received = self._receive(client, lineno)
                if received is None:
                    continue
                try:
                    if self._reconcile(client, received, lineno):
                        continue
                    _, reason = compare(exp, received)
                    if self._related(exp, received):
                        if self.pending.remove(handle) is not None:
                            exp.release()
                        self._fail(name, "{}: {}".format(
                            reason, format_response(received)), lineno)
                    else:
                        self._unexpected(client, received, lineno)
                finally:
                    received.release()
        except ProtocolError as e:
            self._lost(client, e, lineno)

    # -- Reading and reconciliation ----------------------------------------

    def _receive(self, client: Client, lineno: int,
                 deadline: Optional[float] = None) -> Optional[Record]:
        """Read and parse one line from *client*.

        Returns None when a deadline passed instead (an expired alarm has
        then been applied).  A line that fails to parse comes back as its
        PARSE_ERROR diagnostic, so it is checked like any other reply.
        """
        limit = client.alarm_deadline
        if deadline is not None and (limit is None or deadline < limit):
            limit = deadline
        try:
            line = client.transport.read_line(limit)
        except TransportTimeout:
            if (client.alarm_deadline is not None
                    and time.monotonic() >= client.alarm_deadline):
                self.fire_alarm(client, lineno)
                return None
            raise
        try:
            received = parse_response(line, self.correlator)
        except ParseError as e:
            received = e.record
        received.attach(client)
        if received.status.is_error:
            self.reporter.error_status(client.name,
                                       format_response(received), lineno)
        return received

    def _reconcile(self, client: Client, received: Record,
                   lineno: int) -> bool:
        """Settle *received* against the pending list.

        Returns True when the line has been fully dealt with: it matched
        a pending expectation, or it is the late completion of a LOCKW an
        alarm already canceled.
        """
        exp = self.pending.take_match(received)
        if exp is not None:
            if (received.command is Command.LOCKW
                    and received.status is Status.CANCELED):
                # The target delivered the alarm itself.
                client.alarm_deadline = None
            self.reporter.passed(client.name, format_response(received),
                                 lineno)
            exp.release()
            return True
        if (received.command is Command.LOCKW
                and received.status in tok.COMPLETION_STATUSES
                and received.tag in client.canceled_tags):
            client.canceled_tags.discard(received.tag)
            return True
        return False

    @staticmethod
    def _related(expected: Record, received: Record) -> bool:
        """Whether *received* answers *expected*, matching or not.

        Asynchronous LOCKW completions for a different tag are not an
        answer to anything being waited on.
        """
        if (received.command is Command.LOCKW
                and received.status in tok.COMPLETION_STATUSES):
            return (expected.command is Command.LOCKW
                    and expected.tag in (tok.WILDCARD, received.tag))
        return True

    def await_replies(self, client: Client, expectations: List[Record],
                      lineno: int) -> None:
        """Read from *client* until *expectations* are settled in order.

        Every line is first offered to the pending list.  Matched and
        mismatched expectations are both consumed; the list is emptied.
        """
        while expectations:
            received = self._receive(client, lineno)
            if received is None:
                continue
            try:
                if self._reconcile(client, received, lineno):
                    continue
                expected = expectations[0]
                ok, reason = compare(expected, received)
                if ok:
                    self.reporter.passed(client.name,
                                         format_response(received), lineno)
                    if (expected.relaxed
                            and expected.command is Command.LIST
                            and received.status not in _LIST_FINAL):
                        continue
                elif self._related(expected, received):
                    self._fail(client.name, "{}: {}".format(
                        reason, format_response(received)), lineno)
                else:
                    self._unexpected(client, received, lineno)
                    continue
                expectations.pop(0).release()
            finally:
                received.release()

    def fire_alarm(self, client: Client, lineno: int = 0) -> Optional[Record]:
        """Apply an expired alarm on *client*.

        The oldest pending LOCKW expectation of the client is removed and
        turned into a CANCELED outcome, which is returned (already
        reported).  The alarm is disarmed, so this happens at most once
        per ALARM.
        """
        client.alarm_deadline = None
        exp = self.pending.take_oldest_blocking(client)
        if exp is None:
            return None
        canceled = exp.copy(status=Status.CANCELED)
        exp.release()
        client.canceled_tags.add(canceled.tag)
        line = format_response(canceled)
        if exp.relaxed or exp.status is Status.CANCELED:
            self.reporter.canceled(client.name, line, lineno)
        else:
            self._fail(client.name, "Unexpected status CANCELED: " + line,
                       lineno)
        canceled.release()
        return canceled

    def _lost(self, client: Client, exc: Exception, lineno: int) -> None:
        self._fail(client.name, "Transport error: {}".format(exc), lineno)
        self.disconnect(client)

    # -- Actors and lifecycle ----------------------------------------------

    def fork(self, fragment: List[ScriptLine]) -> threading.Thread:
        """Run *fragment* in a new concurrent actor."""
        actor = threading.Thread(target=self._actor, args=(fragment,),
                                 daemon=True)
        with self._actor_lock:
            self._actors.append(actor)
        actor.start()
        return actor

    def _actor(self, fragment: List[ScriptLine]) -> None:
        try:
            self.run_fragment(fragment)
        except FatalFailure as e:
            with self._actor_lock:
                self._actor_errors.append(e)
        except MultilockError as e:
            with self._actor_lock:
                self._actor_errors.append(e)
            self.reporter.failed("-", str(e))

    def _join_actors(self) -> None:
        while True:
            with self._actor_lock:
                actors = [a for a in self._actors if a.is_alive()]
                if not actors:
                    errors = list(self._actor_errors)
                    self._actor_errors = []
                    break
            for actor in actors:
                actor.join()
        for err in errors:
            if isinstance(err, FatalFailure):
                raise err

    def drain(self) -> None:
        """Wait for outstanding pending expectations, then fail leftovers."""
        for client in self.registry.clients():
            if not client.connected or not self.pending.for_client(client):
                continue
            deadline = time.monotonic() + self.settings.drain_timeout
            try:
                while self.pending.for_client(client):
                    try:
                        received = self._receive(client, 0, deadline)
                    except TransportTimeout:
                        break
                    if received is None:
                        continue
                    try:
                        if not self._reconcile(client, received, 0):
                            self._unexpected(client, received, 0)
                    finally:
                        received.release()
            except ProtocolError as e:
                self._lost(client, e, 0)

        for handle, exp in self.pending:
            if self.pending.remove(handle) is None:
                continue
            name = exp.client_name
            line = format_response(exp)
            exp.release()
            self._fail(name, "Expected response never received: " + line)

    def disconnect(self, client: Client) -> None:
        """Close *client*'s transport and drop the connection reference.

        The client stays registered while pending expectations still
        reference it.
        """
        if not client.connected:
            return
        client.alarm_deadline = None
        client.close_transport()
        client.release()

    def close(self) -> None:
        """Disconnect every client still connected."""
        for client in self.registry.clients():
            self.disconnect(client)
