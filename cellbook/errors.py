"""
Exceptions raised by cellbook.
"""


class NotebookError(Exception):
    """Base class for cellbook errors."""


class LoadParseError(NotebookError):
    """Stored notebook content could not be read or parsed."""


class SaveIOError(NotebookError):
    """Notebook content could not be written to storage."""


class KernelUnavailable(NotebookError):
    """No kernel specs were found, or no kernel provider could be used."""


class KernelCapabilityError(KernelUnavailable):
    """A kernel provider does not implement the methods a session requires."""

    def __init__(self, provider, missing: list[str]):
        self.provider = provider
        self.missing = list(missing)
        super().__init__(
            f"Kernel provider {type(provider).__name__} is missing required "
            f"capabilities: {', '.join(self.missing)}"
        )


class KernelConnectError(NotebookError):
    """Connecting a notebook to a kernel failed."""


class KernelDeadError(NotebookError):
    """The kernel session has been shut down."""


class ExecutionTimeout(NotebookError):
    """No terminal status arrived within the configured timeout."""

    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(f"Execution timed out after {timeout_ms}ms")
