"""
Shared error types for core services.
"""


class ValidationIssue(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


class CaptionProviderError(RuntimeError):
    """Raised when the caption provider is unavailable or returns nothing usable."""


class MemoryInitializationError(RuntimeError):
    """Raised when a memory instance cannot initialize its stores."""

    def __init__(self, instance_key: str, cause: BaseException):
        super().__init__(f"Memory instance {instance_key} failed to initialize: {cause}")
        self.instance_key = instance_key
        self.cause = cause
