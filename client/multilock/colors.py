"""ANSI terminal color support for multilock result output."""

import os
import sys


def _supports_color(stream=None):
    """Detect whether *stream* (default stdout) supports ANSI color."""
    if stream is None:
        stream = sys.stdout
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("MULTILOCK_COLOR", "").lower() == "never":
        return False
    if os.environ.get("MULTILOCK_COLOR", "").lower() == "always":
        return True
    if not hasattr(stream, "isatty"):
        return False
    if not stream.isatty():
        return False
    return True


# ANSI escape sequences
RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
RED = "\033[31m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
CYAN = "\033[36m"


class ColorWriter:
    """Write colorized text, falling back to plain text if unsupported.

    Usage:
        cw = ColorWriter()
        cw.error("FAIL")        # red
        cw.success("PASS")      # green
        cw.warning("WARN")      # yellow
        cw.key("c1")            # cyan
    """

    def __init__(self, force_color=None, stream=None):
        if force_color is not None:
            self.enabled = force_color
        else:
            self.enabled = _supports_color(stream)

    def _wrap(self, code, text):
        if self.enabled:
            return "{}{}{}".format(code, text, RESET)
        return text

    def error(self, text):
        return self._wrap(RED, text)

    def success(self, text):
        return self._wrap(GREEN, text)

    def key(self, text):
        return self._wrap(CYAN, text)

    def bold(self, text):
        return self._wrap(BOLD, text)

    def warning(self, text):
        return self._wrap(YELLOW, text)

    def dim(self, text):
        return self._wrap(DIM, text)


# Outcome labels, padded to a common width.
OUTCOMES = {
    "info": ("INFO", "dim"),
    "send": ("SEND", "dim"),
    "pass": ("PASS", "success"),
    "fail": ("FAIL", "error"),
    "warn": ("WARN", "warning"),
    "error": ("ERROR", "error"),
    "cancel": ("CANCEL", "warning"),
}


def format_outcome(kind, client, text, cw, lineno=0):
    """Format one result line: ``<LABEL> <client> [line N] <text>``.

    *kind* is a key of OUTCOMES.  The label is padded before coloring so
    columns line up whether or not color is enabled.
    """
    label, style = OUTCOMES[kind]
    padded = "{:<6s}".format(label)
    parts = [getattr(cw, style)(padded), cw.key(client)]
    if lineno:
        parts.append(cw.dim("[line {}]".format(lineno)))
    parts.append(text)
    return " ".join(parts)
