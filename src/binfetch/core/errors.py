"""Error types raised by binfetch core modules."""


class BinfetchError(Exception):
    """Base class for binfetch errors."""

    pass


class ConfigError(BinfetchError):
    """Configuration could not be loaded or written."""

    pass


class RepositoryIndexError(BinfetchError):
    """A repository index could not be fetched or decoded."""

    pass


class NotFoundError(BinfetchError):
    """Requested identifier is absent from the merged index."""

    def __init__(self, token: str, message: str | None = None):
        self.token = token
        super().__init__(message or f"'{token}' was not found in any repository index")


class BatchResolveError(BinfetchError):
    """Every request of a batch failed to resolve."""

    def __init__(self, failures: dict[str, Exception]):
        self.failures = failures
        super().__init__("\n".join(str(e) for e in failures.values()))


class TooManyResultsError(BinfetchError):
    """A search matched more entries than the configured limit."""

    def __init__(self, count: int, limit: int):
        self.count = count
        self.limit = limit
        super().__init__(f"Too many matching binaries ({count}, limit {limit}). Use --limit")


class ChecksumMismatchError(BinfetchError):
    """Downloaded content does not match the expected hash."""

    def __init__(self, name: str, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum mismatch for {name}:\n"
            f"  Expected: {expected}\n"
            f"  Got:      {actual}"
        )


class InvalidFileTypeError(BinfetchError):
    """Downloaded file is neither an ELF binary nor an acceptable script."""

    pass


class SignatureError(BinfetchError):
    """Base class for signature verification failures."""

    pass


class KeyParseError(SignatureError):
    """The repository public key could not be parsed."""

    pass


class SignatureParseError(SignatureError):
    """The detached signature could not be parsed."""

    pass


class SignatureInvalidError(SignatureError):
    """The signature does not match the file or the key."""

    pass


class InvalidReferenceError(BinfetchError):
    """An OCI image reference could not be parsed."""

    pass


class LayerNotFoundError(BinfetchError):
    """An OCI manifest has no layer titled after the requested file."""

    pass


class BusyError(BinfetchError):
    """Destination is in use by a running process or another operation."""

    pass


class NetworkError(BinfetchError):
    """Transport-level failure; retrying may succeed."""

    pass


class DownloadCancelledError(BinfetchError):
    """Download stopped on request; partial progress was kept."""

    pass


class HookError(BinfetchError):
    """An integration hook command failed."""

    pass
