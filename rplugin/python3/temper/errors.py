"""
Exception taxonomy for the Temper kernel process manager.

Every error raised by a supervisor or an execution queue derives from
KernelError and records the language of the kernel it concerns.
"""
from typing import Optional


class KernelError(RuntimeError):
    """Base class for all kernel related failures."""

    def __init__(self, message: str, language: Optional[str] = None):
        super().__init__(message)
        self.language = language


class SpawnError(KernelError):
    """The interpreter executable could not be launched or died while booting."""


class ReadinessTimeoutError(KernelError):
    """The interpreter did not print its readiness marker in time."""


class ProtocolError(KernelError):
    """A response frame could not be decoded."""


class ProcessClosedError(KernelError):
    """The interpreter exited while requests were still pending."""


class KernelRestartedError(KernelError):
    """The kernel was restarted while the request was pending."""


class CrossDocumentExecutionError(KernelError):
    """The kernel is bound to another document and must be restarted first."""

    def __init__(self, message: str, language: Optional[str] = None,
                 bound_document: Optional[str] = None, requested_document: Optional[str] = None):
        super().__init__(message, language)
        self.bound_document = bound_document
        self.requested_document = requested_document
