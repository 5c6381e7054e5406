"""Line transport for multilock clients.

Every simulated client talks to its lock target over one bidirectional
byte stream.  The stream is always a socket: a TCP connection to a
remote responder, or one end of a socketpair whose other end is the
stdin/stdout of a local responder process.  Lines are LF-terminated and
ISO-8859-1 encoded, and are flushed as soon as they are written.
"""

import shlex
import socket
import subprocess
import time
from typing import List, Optional, Union

from .exceptions import MultilockError
from .tokens import ENCODING


class ProtocolError(MultilockError):
    """Raised on transport failures (unexpected EOF, socket errors)."""


class TransportTimeout(ProtocolError):
    """Raised when no complete line arrived before the deadline.

    Any partial line stays buffered for the next read.
    """


class Transport:
    """One client's line-oriented connection to its lock target."""

    def __init__(self, sock: socket.socket, name: str = "",
                 process: Optional[subprocess.Popen] = None) -> None:
        self.name = name
        self._sock = sock  # type: Optional[socket.socket]
        self._process = process
        self._buf = bytearray()

    def __repr__(self) -> str:
        state = "open" if self._sock is not None else "closed"
        return "Transport({!r}, {})".format(self.name, state)

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore
        self.close()
        return None

    @property
    def closed(self) -> bool:
        return self._sock is None

    def fileno(self) -> int:
        if self._sock is None:
            raise ProtocolError("Transport {} is closed".format(self.name))
        return self._sock.fileno()

    def send_line(self, line: str) -> None:
        """Send one line, appending LF."""
        if self._sock is None:
            raise ProtocolError("Transport {} is closed".format(self.name))
        try:
            data = (line + "\n").encode(ENCODING)
        except UnicodeEncodeError as e:
            raise ProtocolError("Cannot encode line: {}".format(e))
        try:
            self._sock.sendall(data)
        except OSError as e:
            raise ProtocolError("Socket error: {}".format(e))

    def read_line(self, deadline: Optional[float] = None) -> str:
        """Read a single line, byte-by-byte until LF.

        Strips trailing CR LF or bare LF.  *deadline* is a
        ``time.monotonic()`` value; when it passes before the line is
        complete TransportTimeout is raised.  Raises ProtocolError on EOF
        or socket errors.
        """
        if self._sock is None:
            raise ProtocolError("Transport {} is closed".format(self.name))
        while True:
            if deadline is None:
                self._sock.settimeout(None)
            else:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TransportTimeout(
                        "Timed out waiting for data from {}".format(
                            self.name))
                self._sock.settimeout(remaining)
            try:
                b = self._sock.recv(1)
            except socket.timeout:
                raise TransportTimeout(
                    "Timed out waiting for data from {}".format(self.name))
            except OSError as e:
                raise ProtocolError("Socket error: {}".format(e))

            if not b:
                if self._buf:
                    raise ProtocolError(
                        "Connection closed mid-line (partial data: {!r})"
                        .format(bytes(self._buf)))
                raise ProtocolError(
                    "Connection closed by {}".format(self.name or "peer"))

            if b == b"\n":
                break
            self._buf.extend(b)

        line = self._buf.decode(ENCODING)
        self._buf = bytearray()
        # Strip trailing CR (telnet compatibility)
        if line.endswith("\r"):
            line = line[:-1]
        return line

    def close(self) -> None:
        """Close the socket and reap the responder process, if any."""
        sock = self._sock
        self._sock = None
        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass
        process = self._process
        self._process = None
        if process is not None:
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()


def connect_tcp(host: str, port: int, name: str = "",
                timeout: Optional[float] = 30) -> Transport:
    """Open a TCP connection to a responder and wrap it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    try:
        sock.connect((host, port))
    except Exception:
        sock.close()
        raise
    sock.settimeout(None)
    return Transport(sock, name or "{}:{}".format(host, port))


def spawn_process(command: Union[str, List[str]],
                  name: str = "") -> Transport:
    """Start a local responder process talking on its stdin/stdout.

    *command* is an argument list or a shell-quoted string; the client
    name is appended as the last argument.
    """
    argv = shlex.split(command) if isinstance(command, str) else list(command)
    if name:
        argv.append(name)
    parent, child = socket.socketpair()
    try:
        process = subprocess.Popen(argv, stdin=child, stdout=child)
    except Exception:
        parent.close()
        raise
    finally:
        child.close()
    return Transport(parent, name or argv[0], process=process)
