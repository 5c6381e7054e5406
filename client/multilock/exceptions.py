"""Exception hierarchy for multilock."""


class MultilockError(Exception):
    """Base class for every error raised by multilock."""


class ParseError(MultilockError):
    """A line failed to parse or validate.

    Attributes:
        record: Diagnostic Record with status PARSE_ERROR whose data holds
            the full report (command, tag, errno, strerror, detail and bad
            token).
        detail: What the grammar expected.
        token: The offending token.
        errno: Error number recorded with the failure.
    """

    def __init__(self, record, detail: str, token: str, err: int) -> None:
        self.record = record
        self.detail = detail
        self.token = token
        self.errno = err
        super().__init__(record.data)


class ClientNotFoundError(MultilockError):
    """A client name did not resolve and creation was not permitted."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__("Could not find client {}".format(name))


class ScriptError(MultilockError):
    """A harness directive was malformed or used out of place.

    Attributes:
        lineno: Script line number, when known.
    """

    def __init__(self, message: str, lineno: int = 0) -> None:
        self.lineno = lineno
        if lineno:
            message = "line {}: {}".format(lineno, message)
        super().__init__(message)


class FatalFailure(MultilockError):
    """Raised on the first test failure when failures are fatal."""
