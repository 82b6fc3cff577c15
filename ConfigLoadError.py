from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Reasons a configuration load did not end in plain success."""
    OPEN = "open"
    READ = "read"
    DEFAULT_NIL = "default_nil"
    DEFAULT_FAIL_MARSHAL = "default_fail_marshal"
    WRITE = "write"
    RESET = "reset"
    DEFAULT_APPLIED = "default_applied"


# Kinds where the output target still holds a usable configuration.
SOFT_KINDS = frozenset({ErrorKind.RESET, ErrorKind.DEFAULT_APPLIED})


class ConfigLoadError(Exception):
    """
    Exception describing why loading a JSON configuration file did not succeed.

    The loader returns instances of this class instead of raising them, so the
    caller can decide whether to raise, log, or ignore it. ``RESET`` and
    ``DEFAULT_APPLIED`` are soft outcomes: the output target was populated with
    the default value and is safe to use.

    :ivar kind: The :class:`ErrorKind` of this error. Always set.
    :ivar cause: The underlying exception (OS error, marshal error), if any.
    :ivar details: Extra context such as ``path`` or ``error``. Never None.
    :ivar message: Human readable description.
    """

    def __init__(self, kind: ErrorKind, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause
        self.details: Dict[str, Any] = {}
        if cause is not None:
            self.__cause__ = cause

    def add_detail(self, key: str, value: Any) -> None:
        """
        Attaches a piece of context to the error.

        :param key: Name of the detail, e.g. ``"path"``.
        :type key: str
        :param value: Any value describing the failure.
        :type value: Any
        """
        self.details[key] = value

    def is_kind(self, kind: ErrorKind) -> bool:
        return self.kind is kind

    @property
    def is_fatal(self) -> bool:
        """True unless the output target was recovered with the default value."""
        return self.kind not in SOFT_KINDS

    def __str__(self):
        return self.message

    def __repr__(self):
        return f"ConfigLoadError(kind={self.kind.name}, message={self.message!r}, details={self.details!r})"
