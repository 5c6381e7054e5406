"""Interactive shell for multilock."""

import cmd
import os

from .harness import Harness
from .serializer import format_response


class MultilockShell(cmd.Cmd):
    """Type requests without tags; each one is sent and checked at once.

    Lines look like ``<client> <COMMAND> <args>``; a tag is minted for
    every request.  ``EXPECT``, ``SLEEP`` and the setting directives work
    as in scripts.
    """

    intro = ('Type "help" for a list of commands, "exit" to quit.\n'
             'Requests: <client> <COMMAND> <args>, e.g. '
             'c1 HELLO "c1"')
    prompt = "multilock> "

    def __init__(self, harness: Harness, stdin=None, stdout=None):
        super().__init__(stdin=stdin, stdout=stdout)
        self.harness = harness
        self.lineno = 0
        if stdin is not None:
            self.use_rawinput = False

    # -- Lifecycle ---------------------------------------------------------

    def preloop(self):
        """Configure readline history before the REPL."""
        try:
            import readline
            histfile = os.path.expanduser("~/.multilock_history")
            try:
                readline.read_history_file(histfile)
            except (FileNotFoundError, OSError):
                pass
            import atexit
            atexit.register(readline.write_history_file, histfile)
        except ImportError:
            pass

    def postloop(self):
        """Disconnect every client when the REPL exits."""
        self.harness.close()
        self.stdout.write(self.harness.reporter.summary() + "\n")

    def emptyline(self):
        return False

    def default(self, line):
        self.lineno += 1
        self.harness.run_line(line, lineno=self.lineno, tagged=False)
        return False

    # -- Commands ----------------------------------------------------------

    def do_clients(self, arg):
        """List registered clients.

    Usage: clients"""
        for client in self.harness.registry.clients():
            state = "connected" if client.connected else "disconnected"
            self.stdout.write("{}\t{}\trefs={}\n".format(
                client.name, state, client.refcount))

    def do_pending(self, arg):
        """List expectations still waiting for a response.

    Usage: pending"""
        for handle, rec in self.harness.pending:
            self.stdout.write("{}\t{}\n".format(
                handle, format_response(rec, lead="EXPECT")))

    def do_exit(self, arg):
        """Disconnect all clients and leave the shell.

    Usage: exit"""
        return True

    do_EOF = do_exit
