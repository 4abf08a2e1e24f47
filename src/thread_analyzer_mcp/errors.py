from typing import Optional


class IllegalRuntimeStateError(ValueError):
    """The threads reported do not form a consistent runtime."""


class ThreadDumpParseError(IllegalRuntimeStateError):

    def __init__(self, message: str, chunk: Optional[str] = None):
        if chunk is not None:
            message = f"{message}:\n{chunk}\n"
        super().__init__(message)
        self.chunk = chunk


class UnrecognizedChunkError(ThreadDumpParseError):
    """Raised instead of a warning when the parser runs with fail_on_errors."""


class LockOwnershipError(IllegalRuntimeStateError):

    def __init__(self, lock, existing, other):
        super().__init__(
            f"Multiple threads own the same lock '{lock}':\n"
            f"{existing.render()}\n\nAND\n\n{other.render()}\n"
        )
        self.lock = lock
        self.threads = (existing, other)
