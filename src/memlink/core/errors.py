"""Exception types raised by the memlink engines"""


class MemlinkError(Exception):
    """Base class for all memlink failures"""


class ValidationError(MemlinkError, ValueError):
    """Argument failed validation before any storage access"""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class MemoryNotFoundError(MemlinkError, LookupError):
    """One or more memory keys do not resolve to a live memory"""

    def __init__(self, keys: list[str]):
        self.keys = list(keys)
        super().__init__(f"No memory found with key: {', '.join(self.keys)}")


class StorageError(MemlinkError, RuntimeError):
    """Storage backend unavailable or a transaction was rolled back"""


class UnknownOperationError(MemlinkError, LookupError):
    """Operation name is not one of the store operations"""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Unknown operation: {operation}")
