"""
Error kinds raised while importing certificates.

Every error is terminal for a run: the CLI prints it and exits non-zero.
"""


class CertImportError(Exception):
    """Base error type for certificate import operations."""


class LoadError(CertImportError):
    """Source file unreadable, wrong password, or no certificates found."""


class FetchError(LoadError):
    """Certificates could not be fetched from a live TLS endpoint."""


class NothingToImport(CertImportError):
    """Every candidate certificate was filtered out or declined."""

    def __init__(self, message: str = "No certificates to import"):
        super().__init__(message)


class BackendUnavailable(CertImportError):
    """The target certificate store could not be opened."""


class BackendRejected(CertImportError):
    """The target certificate store refused the import."""

    def __init__(self, reason: str):
        super().__init__(f"Certificate store rejected the import: {reason}")
        self.reason = reason


class UserCanceled(CertImportError):
    """The operator declined at a confirmation point."""

    def __init__(self, message: str = "User canceled"):
        super().__init__(message)


class UsageError(CertImportError):
    """Bad command line invocation."""
