"""Custom exceptions for MADO manifest conversion.

Only fatal preconditions raise. Structural findings in a manifest are
reported through ValidationReport and never raise.
"""

from typing import Any


class MadoBridgeError(Exception):
    """Base exception for manifest conversion operations.

    Attributes:
        message: Human-readable error description
        error_code: Optional error code for categorization
        context: Additional context information

    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}


class UnsupportedDocumentError(MadoBridgeError):
    """Raised when a DICOM object is not a Key Object Selection document."""

    pass


class InvalidBundleError(MadoBridgeError):
    """Raised when a FHIR bundle is not a convertible MADO document bundle."""

    pass


class ManifestReadError(MadoBridgeError):
    """Raised when a DICOM manifest file cannot be read."""

    pass


class BundleParseError(MadoBridgeError):
    """Raised when FHIR bundle JSON cannot be parsed."""

    pass


class SchemaValidationError(MadoBridgeError):
    """Raised when the FHIR resource models reject a bundle."""

    pass
