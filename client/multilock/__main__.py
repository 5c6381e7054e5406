"""CLI entry point for the multilock harness.

Usage::

    multilock --host lockhost --port 7000 run tests/overlap.ml
    multilock --exec ./ml_posix_client run tests/overlap.ml
    multilock check tests/overlap.ml
    multilock --host lockhost shell
"""

import argparse
import configparser
import os
import sys

from . import (
    Harness, MultilockError, ParseError, ProtocolError, Reporter, Settings,
    connect_tcp, spawn_process,
)
from .colors import ColorWriter
from .correlator import TagCorrelator
from .harness import load_script, split_first
from .parser import parse_request, parse_response
from .serializer import format_response

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 7000
DEFAULT_DRAIN_TIMEOUT = 5.0


def _connector(args):
    """Build the transport factory the harness calls for each new client."""
    if args.exec_cmd:
        command = args.exec_cmd
        return lambda name: spawn_process(command, name)
    host, port = args.host, args.port
    return lambda name: connect_tcp(host, port, name)


def _settings(args):
    return Settings(
        quiet=args.quiet,
        strict=args.strict,
        fatal=args.fatal,
        drain_timeout=args.drain_timeout,
        replay=args.command != "shell",
    )


def cmd_run(args):
    """Handle the 'run' subcommand."""
    settings = _settings(args)
    reporter = Reporter(settings)
    harness = Harness(_connector(args), settings, reporter)
    with open(args.script, "r") as f:
        failures = harness.run_script(f)
    print(reporter.summary())
    if failures:
        sys.exit(1)


def cmd_check(args):
    """Handle the 'check' subcommand: parse a script, send nothing."""
    correlator = TagCorrelator(replay=True)
    cw = ColorWriter(stream=sys.stderr)
    errors = 0
    with open(args.script, "r") as f:
        script = load_script(f)
    for lineno, text in script:
        word, rest = split_first(text)
        upper = word.upper()
        if upper in ("{", "}", "SLEEP", "QUIET", "STRICT", "FATAL"):
            continue
        try:
            if upper == "EXPECT":
                _name, rest = split_first(rest)
                parse_response(rest, correlator)
            else:
                parse_request(rest, correlator, lineno=lineno)
        except ParseError as e:
            errors += 1
            print("{}: {}".format(
                cw.error("line {}".format(lineno)),
                format_response(e.record)), file=sys.stderr)
    if errors:
        print("{} lines failed to parse".format(errors), file=sys.stderr)
        sys.exit(1)
    print("{} lines OK".format(len(script)))


def cmd_shell(args):
    """Handle the 'shell' subcommand."""
    from .shell import MultilockShell
    harness = Harness(_connector(args), _settings(args))
    sh = MultilockShell(harness)
    try:
        sh.cmdloop()
    except KeyboardInterrupt:
        print()
        harness.close()


def _default_config_path():
    """Return the path to multilock.conf in the client directory.

    If the file does not exist but multilock.conf.example does, copy it
    to create a starter config.
    """
    client_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    conf = os.path.join(client_dir, "multilock.conf")
    if not os.path.exists(conf):
        example = os.path.join(client_dir, "multilock.conf.example")
        if os.path.exists(example):
            try:
                with open(example, "r") as src, open(conf, "w") as dst:
                    dst.write(src.read())
            except OSError:
                pass
    return conf


def _load_config(path, explicit):
    """Load settings from a config file.

    Args:
        path: File path to read.
        explicit: True if the user passed --config (errors are fatal).

    Returns a dict with keys 'host', 'port', 'command', 'quiet',
    'strict', 'fatal', 'drain_timeout' (any may be None).
    """
    if not os.path.exists(path):
        if explicit:
            print("Error: config file not found: {}".format(path),
                  file=sys.stderr)
            sys.exit(1)
        return {}

    config = configparser.ConfigParser()
    try:
        config.read(path)
    except configparser.Error as e:
        if explicit:
            print("Error: failed to parse config file: {}".format(e),
                  file=sys.stderr)
            sys.exit(1)
        print("Warning: failed to parse config file: {}".format(e),
              file=sys.stderr)
        return {}

    result = {}

    host = config.get("target", "host", fallback=None)
    if host is not None:
        host = host.strip() or None
    result["host"] = host

    command = config.get("target", "command", fallback=None)
    if command is not None:
        command = command.strip() or None
    result["command"] = command

    try:
        result["port"] = config.getint("target", "port", fallback=None)
        for key in ("quiet", "strict", "fatal"):
            result[key] = config.getboolean("harness", key, fallback=None)
        result["drain_timeout"] = config.getfloat(
            "harness", "drain_timeout", fallback=None)
    except ValueError as e:
        if explicit:
            print("Error: invalid value in config file: {}".format(e),
                  file=sys.stderr)
            sys.exit(1)
        print("Warning: invalid value in config file: {}".format(e),
              file=sys.stderr)
        return {"host": host, "command": command}

    return result


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def main() -> None:
    """Parse arguments and dispatch to the appropriate subcommand."""
    env_host = os.environ.get("MULTILOCK_HOST") or None
    env_port_str = os.environ.get("MULTILOCK_PORT")
    env_port = None
    if env_port_str:
        try:
            env_port = int(env_port_str)
        except ValueError:
            print(
                "Error: MULTILOCK_PORT must be an integer, got: {!r}".format(
                    env_port_str
                ),
                file=sys.stderr,
            )
            sys.exit(1)

    parser = argparse.ArgumentParser(
        prog="multilock",
        description="Distributed file-locking test harness",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Lock responder hostname (default: {})".format(
            env_host if env_host is not None else DEFAULT_HOST),
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Lock responder port (default: {})".format(
            env_port if env_port is not None else DEFAULT_PORT),
    )
    parser.add_argument(
        "--exec",
        dest="exec_cmd",
        default=None,
        metavar="CMD",
        help="Spawn CMD <client-name> per client instead of connecting",
    )
    parser.add_argument(
        "--config",
        default=None,
        metavar="PATH",
        help="Path to config file (default: client/multilock.conf)",
    )
    parser.add_argument("-q", "--quiet", action="store_true", default=None,
                        help="Only report failures and errors")
    parser.add_argument("--strict", action="store_true", default=None,
                        help="Treat unexpected asynchronous responses "
                             "as failures")
    parser.add_argument("--fatal", action="store_true", default=None,
                        help="Stop at the first failure")
    parser.add_argument("--drain-timeout", type=float, default=None,
                        metavar="SECS",
                        help="Seconds to wait for outstanding responses "
                             "at the end of a script (default: {})".format(
                                 DEFAULT_DRAIN_TIMEOUT))

    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = False

    p_run = subparsers.add_parser("run", help="Run a test script")
    p_run.add_argument("script", help="Script file")

    p_check = subparsers.add_parser("check",
                                    help="Check script syntax without "
                                         "sending anything")
    p_check.add_argument("script", help="Script file")

    subparsers.add_parser("shell", help="Interactive shell mode")

    args = parser.parse_args()

    # --- Load config file ---
    config_path = args.config if args.config else _default_config_path()
    cfg = _load_config(config_path, bool(args.config))

    # --- Resolve settings (CLI > env > config > default) ---
    args.host = _first(args.host, env_host, cfg.get("host"), DEFAULT_HOST)
    args.port = _first(args.port, env_port, cfg.get("port"), DEFAULT_PORT)
    args.exec_cmd = _first(args.exec_cmd, cfg.get("command"))
    args.quiet = bool(_first(args.quiet, cfg.get("quiet"), False))
    args.strict = bool(_first(args.strict, cfg.get("strict"), False))
    args.fatal = bool(_first(args.fatal, cfg.get("fatal"), False))
    args.drain_timeout = _first(args.drain_timeout, cfg.get("drain_timeout"),
                                DEFAULT_DRAIN_TIMEOUT)

    # Default to interactive shell when no subcommand is given
    if args.command is None:
        args.command = "shell"

    dispatch = {
        "check": cmd_check,
        "run": cmd_run,
        "shell": cmd_shell,
    }

    try:
        dispatch[args.command](args)
    except ConnectionRefusedError:
        print(
            "Error: could not connect to {}:{}".format(args.host, args.port),
            file=sys.stderr,
        )
        sys.exit(1)
    except OSError as e:
        print("Error: {}".format(e), file=sys.stderr)
        sys.exit(1)
    except ProtocolError as e:
        print("Error: {}".format(e), file=sys.stderr)
        sys.exit(1)
    except MultilockError as e:
        print("Error: {}".format(e), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
