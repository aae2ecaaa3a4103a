"""
MADO Bridge - DICOM KOS manifest <-> FHIR document bundle converter.

This package translates IHE MADO Key Object Selection documents into FHIR
document bundles and back, and validates the KOS content tree and evidence
hierarchy against the TID 2010 profile rules.
"""

__version__ = "1.0.0"

from mado_bridge.core.forward import ForwardMapper, to_bundle
from mado_bridge.core.identity import IdentityGenerator
from mado_bridge.core.metadata import ManifestMetadata, extract_metadata
from mado_bridge.core.reverse import ReverseMapper, to_dataset
from mado_bridge.core.validator import (
    KOSValidator,
    ValidationIssue,
    ValidationReport,
    validate_manifest,
)

__all__ = [
    "__version__",
    "ForwardMapper",
    "IdentityGenerator",
    "KOSValidator",
    "ManifestMetadata",
    "ReverseMapper",
    "ValidationIssue",
    "ValidationReport",
    "extract_metadata",
    "to_bundle",
    "to_dataset",
    "validate_manifest",
]
