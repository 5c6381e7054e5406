"""multilock -- distributed file-locking test harness.

Drives several simulated lock clients against one or more lock targets
over a line protocol, and checks every reply (including the delayed
GRANTED/DENIED/CANCELED of blocking locks) against what a script
expects.

Usage::

    from multilock import Harness, connect_tcp

    harness = Harness(lambda name: connect_tcp("lockhost", 7000, name))
    with open("overlap.ml") as script:
        failures = harness.run_script(script)
"""

from .clients import Client, ClientRegistry
from .correlator import TagCorrelator
from .exceptions import (
    ClientNotFoundError, FatalFailure, MultilockError, ParseError,
    ScriptError,
)
from .harness import Harness, Reporter, Settings, load_script
from .oracle import PendingList, compare
from .parser import parse_request, parse_response
from .protocol import (
    ProtocolError, Transport, TransportTimeout, connect_tcp, spawn_process,
)
from .record import Record
from .serializer import format_request, format_response
from .tokens import Command, LockMode, Status

__version__ = "0.1.0"

__all__ = [
    "Client",
    "ClientNotFoundError",
    "ClientRegistry",
    "Command",
    "FatalFailure",
    "Harness",
    "LockMode",
    "MultilockError",
    "ParseError",
    "PendingList",
    "ProtocolError",
    "Record",
    "Reporter",
    "ScriptError",
    "Settings",
    "Status",
    "TagCorrelator",
    "Transport",
    "TransportTimeout",
    "compare",
    "connect_tcp",
    "format_request",
    "format_response",
    "load_script",
    "parse_request",
    "parse_response",
    "spawn_process",
]
